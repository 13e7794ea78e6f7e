import base64

import pytest
import dns.flags
import dns.message
import dns.rcode
import dns.rdatatype
import dns.rrset

from sdns.dnsutil import (
    clear_dnssec,
    clear_opt,
    exchange,
    exchange_internal,
    extract_address_from_reverse,
    generate_server_cookie,
    is_reverse,
    not_supported,
    parse_purge_question,
    set_edns0,
    set_rcode,
)
from sdns.middleware.chain import Handler, Registry, ResponseWriter

V6_NAME = "b.a.9.8.7.6.5.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.8.b.d.0.1.0.0.2"


@pytest.mark.parametrize(
    "name, expected",
    [
        ("54.119.58.176.in-addr.arpa.", "176.58.119.54"),
        (".58.176.in-addr.arpa.", ""),
        (V6_NAME + ".in-addr.arpa.", ""),
        (V6_NAME + ".ip6.arpa.", "2001:db8::567:89ab"),
        ("d.0.1.0.0.2.ip6.arpa.", ""),
        ("54.119.58.176.ip6.arpa.", ""),
        ("NONAME", ""),
        ("", ""),
    ],
)
def test_extract_address_from_reverse(name, expected):
    assert extract_address_from_reverse(name) == expected


@pytest.mark.parametrize(
    "name, expected",
    [
        (V6_NAME + ".ip6.arpa.", 2),
        ("d.0.1.0.0.2.in-addr.arpa.", 1),
        ("example.com.", 0),
        ("", 0),
        ("in-addr.arpa.example.com.", 0),
    ],
)
def test_is_reverse(name, expected):
    assert is_reverse(name) == expected


def test_set_rcode():
    req = dns.message.make_query("example.com.", "A")
    req.use_edns(0, 0, 4096)
    m = set_rcode(req, dns.rcode.SERVFAIL, True)
    assert m.rcode() == dns.rcode.SERVFAIL
    assert m.flags & dns.flags.RA
    assert m.ednsflags & dns.flags.DO


def test_set_edns0():
    req = dns.message.make_query("example.com.", "A")
    info = set_edns0(req)
    assert req.edns == 0 and info.size == 1232
    info = set_edns0(req)
    assert req.edns == 0 and info.do is True

    req.use_edns(0, req.ednsflags, 128)
    info = set_edns0(req)
    assert info.size == 512

    req.use_edns(100, req.ednsflags, req.payload)
    info = set_edns0(req)
    assert info.version == 100
    assert req.edns == 100

    req.additional.append(dns.rrset.from_text("example.com.", 300, "IN", "A", "127.0.0.1"))
    req = clear_opt(req)
    assert len(req.additional) == 1
    assert req.edns == -1


def test_generate_server_cookie_prefix():
    cookie = generate_server_cookie("secret", "127.0.0.1", "abcdef0123456789")
    assert cookie.startswith("abcdef0123456789")
    assert len(cookie) == 16 + 64


def test_clear_dnssec():
    msg = dns.message.make_query("miek.nl.", "NS")
    sig = (
        "NS 8 2 1800 20181217031301 20181117031301 12051 miek.nl. "
        "rzrfC1x56DO660O+w1fJAqL+u6OYjDWaBoS6ZKSrUOXJOIO1rV8vV3v4 "
        "O6FvKXtbyBB3KpUEpN044D5C+dv0fNfJ4g0MYCAzHygCXRSmCY7d4yHO "
        "73Im3jhQtxnlzSCSYHC4sMUc63TkOqftets+DmlE3VnWmlkq2qS3QNqW uto="
    )
    msg.answer.append(dns.rrset.from_text("miek.nl.", 1800, "IN", "NS", "linode.atoom.net."))
    msg.answer.append(dns.rrset.from_text("miek.nl.", 1800, "IN", "RRSIG", sig))
    msg.authority.append(dns.rrset.from_text("linode.atoom.net.", 1800, "IN", "A", "176.58.119.54"))
    msg.authority.append(dns.rrset.from_text("linode.atoom.net.", 1800, "IN", "RRSIG", sig))
    msg = clear_dnssec(msg)
    assert len(msg.answer) == 1
    assert len(msg.authority) == 1


def test_exchange_rejects_bad_address():
    req = dns.message.make_query(".", "NS")
    with pytest.raises(ValueError):
        exchange(req, "1", "udp")


def test_not_supported():
    req = dns.message.make_query("example.com.", "NS")
    mw = ResponseWriter("udp", "127.0.0.1:0")
    not_supported(mw, req)
    assert mw.msg.rcode() == dns.rcode.NOTIMP
    assert mw.msg.id == req.id


class _Blocker(Handler):
    name = "blocker"

    def serve_dns(self, ctx, ch):
        q = ch.request.question[0]
        if q.name.to_text() == "example.com.":
            resp = dns.message.make_response(ch.request)
            resp.answer.append(dns.rrset.from_text(q.name, 3600, "IN", "A", "0.0.0.0"))
            ch.writer.write_msg(resp)
            ch.cancel()
            return
        ch.next(ctx)


def test_exchange_internal():
    reg = Registry()
    reg.register("blocker", lambda cfg: _Blocker())
    reg.setup({})
    msg = exchange_internal(dns.message.make_query("example.com.", "A"), reg)
    assert len(msg.answer) == 1
    with pytest.raises(LookupError):
        exchange_internal(dns.message.make_query("www.example.com.", "A"), reg)


def _purge_query(text):
    return dns.message.make_query(text, "NULL")


def test_parse_purge_question():
    assert parse_purge_question(dns.message.Message()) is None
    assert parse_purge_question(_purge_query("test.com.")) is None
    for raw in ("test.com.", "ff:test.com."):
        encoded = base64.b64encode(raw.encode()).decode()
        assert parse_purge_question(_purge_query(encoded + ".")) is None
    encoded = base64.b64encode(b"A:test.com.").decode()
    assert parse_purge_question(_purge_query(encoded + ".")) == ("test.com.", dns.rdatatype.A)