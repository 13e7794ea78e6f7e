import dns.message
import dns.rcode
import dns.rdatatype

from sdns.middleware.chain import Chain, ResponseWriter
from sdns.middleware.chaos import Chaos, limit_txt_length


def _serve(c, qname, rdclass="CH"):
    req = dns.message.make_query(qname, "TXT", rdclass)
    writer = ResponseWriter("udp", "127.0.0.1:0")
    ch = Chain([])
    ch.reset(writer, req)
    c.serve_dns({}, ch)
    return writer


def test_name():
    assert Chaos(True).name == "chaos"


def test_internet_class_passes_through():
    assert not _serve(Chaos(True), "version.bind.", "IN").written


def test_version():
    writer = _serve(Chaos(True, "1.0.0"), "version.bind.")
    assert writer.written
    assert writer.rcode == dns.rcode.NOERROR
    rrset = writer.msg.answer[0]
    assert rrset.rdtype == dns.rdatatype.TXT
    assert [r.strings for r in rrset] == [(b"SDNS v1.0.0",)]


def test_version_server_alias():
    writer = _serve(Chaos(True, "1.0.0"), "version.server.")
    assert [r.strings for r in writer.msg.answer[0]] == [(b"SDNS v1.0.0",)]


def test_hostname():
    writer = _serve(Chaos(True), "hostname.bind.")
    assert writer.written
    assert writer.rcode == dns.rcode.NOERROR
    rrset = writer.msg.answer[0]
    assert rrset.name.to_text() == "hostname.bind."
    assert len(rrset[0].strings[0]) > 0


def test_unknown_name_passes_through():
    assert not _serve(Chaos(True), "unknown.bind.").written


def test_disabled_passes_through():
    assert not _serve(Chaos(False), "version.bind.").written


def test_limit_txt_length():
    assert limit_txt_length("a" * 300) == "a" * 255
    assert limit_txt_length("a" * 255) == "a" * 255
    assert limit_txt_length("host") == "host"