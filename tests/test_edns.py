import dns.edns
import dns.flags
import dns.message
import dns.opcode
import dns.rcode
import dns.rrset

from sdns.dnsutil import generate_server_cookie
from sdns.middleware.chain import Chain, Handler, ResponseWriter
from sdns.middleware.edns import EDNS


class _Answer(Handler):
    name = "dummy"

    def __init__(self, ad=False):
        self.ad = ad
        self.called = False

    def serve_dns(self, ctx, ch):
        self.called = True
        m = dns.message.make_response(ch.request)
        if self.ad:
            m.flags |= dns.flags.AD
        m.answer.append(
            dns.rrset.from_text(
                ch.request.question[0].name,
                3600,
                "IN",
                "A",
                *[f"127.0.0.{i}" for i in range(1, 101)],
            )
        )
        ch.writer.write_msg(m)


def _run(edns, req, proto, answer=None):
    writer = ResponseWriter(proto, "127.0.0.1:0")
    ch = Chain([edns, answer or _Answer()])
    ch.reset(writer, req)
    ch.next({})
    assert ch.writer is writer
    return writer


def test_no_edns_over_tcp():
    req = dns.message.make_query("example.com.", "A")
    writer = _run(EDNS(), req, "tcp")
    assert writer.written
    assert writer.rcode == dns.rcode.NOERROR
    assert writer.msg.edns == -1
    assert len(writer.msg.answer[0]) == 100


def test_bad_version():
    req = dns.message.make_query("example.com.", "A", use_edns=100, want_dnssec=True)
    answer = _Answer()
    writer = _run(EDNS(), req, "udp", answer)
    assert writer.written
    assert writer.rcode == dns.rcode.BADVERS
    assert req.edns == 0
    assert not answer.called


def test_tcp_not_truncated():
    req = dns.message.make_query("example.com.", "A", use_edns=0, payload=512)
    writer = _run(EDNS(), req, "tcp")
    assert not writer.msg.flags & dns.flags.TC
    assert len(writer.msg.answer[0]) == 100


def test_udp_truncated():
    req = dns.message.make_query("example.com.", "A", use_edns=0, payload=512)
    writer = _run(EDNS(), req, "udp")
    assert writer.msg.flags & dns.flags.TC
    assert writer.msg.answer == []
    assert writer.msg.authority == []


def test_response_carries_opt_and_do():
    req = dns.message.make_query("example.com.", "A", use_edns=0, want_dnssec=True)
    writer = _run(EDNS(), req, "tcp")
    assert writer.msg.edns == 0
    assert writer.msg.ednsflags & dns.flags.DO
    assert writer.msg.payload == 1232


def test_server_cookie_added():
    client = bytes(range(1, 9))
    req = dns.message.make_query(
        "example.com.",
        "A",
        use_edns=0,
        options=[dns.edns.GenericOption(dns.edns.OptionType.COOKIE, client)],
    )
    writer = _run(EDNS(cookie_secret="secret"), req, "tcp")
    cookies = [o for o in writer.msg.options if o.otype == dns.edns.OptionType.COOKIE]
    assert len(cookies) == 1
    expected = bytes.fromhex(generate_server_cookie("secret", "127.0.0.1", client.hex()))
    data = cookies[0].to_wire()
    assert data == expected
    assert data[:8] == client
    assert len(data) == 40


def test_nsid_added_when_requested():
    req = dns.message.make_query(
        "example.com.",
        "A",
        use_edns=0,
        options=[dns.edns.GenericOption(dns.edns.OptionType.NSID, b"")],
    )
    writer = _run(EDNS(nsid="sdns-test"), req, "tcp")
    nsids = [o for o in writer.msg.options if o.otype == dns.edns.OptionType.NSID]
    assert [o.to_wire() for o in nsids] == [b"sdns-test"]


def test_nsid_not_added_without_request():
    req = dns.message.make_query("example.com.", "A", use_edns=0)
    writer = _run(EDNS(nsid="sdns-test"), req, "tcp")
    assert [o for o in writer.msg.options if o.otype == dns.edns.OptionType.NSID] == []


def test_ad_cleared_without_do_or_ad():
    req = dns.message.make_query("example.com.", "A", use_edns=0)
    req.flags &= ~dns.flags.AD
    writer = _run(EDNS(), req, "tcp", _Answer(ad=True))
    assert not writer.msg.flags & dns.flags.AD


def test_ad_kept_with_do():
    req = dns.message.make_query("example.com.", "A", use_edns=0, want_dnssec=True)
    writer = _run(EDNS(), req, "tcp", _Answer(ad=True))
    assert writer.msg.flags & dns.flags.AD


def test_opcode_not_supported():
    req = dns.message.make_query("example.com.", "A")
    req.set_opcode(dns.opcode.NOTIFY)
    answer = _Answer()
    writer = _run(EDNS(), req, "udp", answer)
    assert writer.rcode == dns.rcode.NOTIMP
    assert not answer.called