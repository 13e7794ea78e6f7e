import socket
import threading

import dns.flags
import dns.message
import dns.rcode
import dns.rdatatype
import dns.rrset
import pytest

from sdns.middleware.chain import Chain, Handler, ResponseWriter
from sdns.middleware.failover import Failover


class ServFail(Handler):
    name = "dummy"

    def serve_dns(self, ctx, ch):
        m = dns.message.make_response(ch.request)
        m.set_rcode(dns.rcode.SERVFAIL)
        ch.writer.write_msg(m)


@pytest.fixture
def upstream():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(0.1)
    port = sock.getsockname()[1]
    stop = threading.Event()

    def serve():
        while not stop.is_set():
            try:
                data, peer = sock.recvfrom(65535)
            except socket.timeout:
                continue
            except OSError:
                return
            query = dns.message.from_wire(data)
            resp = dns.message.make_response(query)
            resp.answer.append(
                dns.rrset.from_text(query.question[0].name, 60, "IN", "A", "192.0.2.1")
            )
            sock.sendto(resp.to_wire(), peer)

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield f"127.0.0.1:{port}"
    stop.set()
    thread.join()
    sock.close()


@pytest.fixture
def dead_server():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"127.0.0.1:{port}"


def run(f, req):
    ch = Chain([f, ServFail()])
    mw = ResponseWriter("udp", "127.0.0.1:0")
    ch.reset(mw, req)
    ch.next({})
    return mw


def test_failover_filters_servers():
    f = Failover(["[::255]:53", "127.0.0.1:53", "1"])
    assert f.name == "failover"
    assert f.servers == ["[::255]:53", "127.0.0.1:53"]


def test_failover_no_recursion_keeps_servfail(upstream):
    f = Failover([upstream])
    req = dns.message.make_query("example.com.", dns.rdatatype.A)
    req.flags &= ~dns.flags.RD
    mw = run(f, req)
    assert mw.rcode == dns.rcode.SERVFAIL


def test_failover_uses_fallback(upstream):
    f = Failover([upstream])
    req = dns.message.make_query("example.com.", dns.rdatatype.A)
    mw = run(f, req)
    assert mw.rcode == dns.rcode.NOERROR
    assert mw.msg.id == req.id
    assert len(mw.msg.answer) == 1


def test_failover_without_servers():
    f = Failover([])
    req = dns.message.make_query("example.com.", dns.rdatatype.A)
    mw = run(f, req)
    assert mw.rcode == dns.rcode.SERVFAIL


def test_failover_unreachable_server(dead_server):
    f = Failover([dead_server])
    f.timeout = 0.3
    req = dns.message.make_query("example.com.", dns.rdatatype.A)
    mw = run(f, req)
    assert mw.rcode == dns.rcode.SERVFAIL


def test_failover_skips_dead_then_uses_live(dead_server, upstream):
    f = Failover([dead_server, upstream])
    f.timeout = 0.3
    req = dns.message.make_query("example.com.", dns.rdatatype.A)
    mw = run(f, req)
    assert mw.rcode == dns.rcode.NOERROR