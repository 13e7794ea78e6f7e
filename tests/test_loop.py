import dns.message
import dns.rcode

from sdns.middleware.chain import Chain, Handler, ResponseWriter
from sdns.middleware.loop import Loop


class _Reply(Handler):
    name = "reply"

    def serve_dns(self, ctx, ch):
        ch.writer.write_msg(dns.message.make_response(ch.request))


def test_name():
    assert Loop().name == "loop"


def test_loop_detected():
    loop = Loop()
    ch = Chain([loop] * 11)
    writer = ResponseWriter("udp", "127.0.0.1:0")
    req = dns.message.make_query("example.com.", "A")
    ch.reset(writer, req)
    loop.serve_dns({}, ch)
    assert writer.written
    assert writer.msg.rcode() == dns.rcode.SERVFAIL


def test_empty_question_cancels():
    loop = Loop()
    ch = Chain([loop])
    writer = ResponseWriter("udp", "127.0.0.1:0")
    req = dns.message.make_query("example.com.", "A")
    req.question = []
    ch.reset(writer, req)
    loop.serve_dns({}, ch)
    assert writer.msg is None
    assert ch.remaining == 0


def test_short_chain_reaches_next_handler():
    loop = Loop()
    ch = Chain([loop] * 5 + [_Reply()])
    writer = ResponseWriter("udp", "127.0.0.1:0")
    ch.reset(writer, dns.message.make_query("example.com.", "A"))
    ch.next({})
    assert writer.written
    assert writer.msg.rcode() == dns.rcode.NOERROR


def test_context_not_mutated():
    loop = Loop()
    ch = Chain([_Reply()])
    ch.reset(ResponseWriter("udp", "127.0.0.1:0"), dns.message.make_query("example.com.", "A"))
    ctx = {}
    loop.serve_dns(ctx, ch)
    assert ctx == {}