"""DNS message helpers shared by the middlewares."""

from __future__ import annotations

import base64
import binascii
import hashlib
import ipaddress
from dataclasses import dataclass

import dns.exception
import dns.flags
import dns.message
import dns.opcode
import dns.query
import dns.rcode
import dns.rdatatype

from sdns.middleware.chain import Chain, Registry, ResponseWriter

IP4ARPA = ".in-addr.arpa."
IP6ARPA = ".ip6.arpa."
DEFAULT_MSG_SIZE = 1232
MIN_MSG_SIZE = 512

_EDNS0_NSID = 3
_EDNS0_SUBNET = 8
_EDNS0_COOKIE = 10

_DNSSEC_TYPES = {dns.rdatatype.RRSIG, dns.rdatatype.NSEC, dns.rdatatype.NSEC3}


@dataclass
class EdnsInfo:
    """What ``set_edns0`` learned from a request's OPT record."""

    size: int
    cookie: str
    nsid: bool
    do: bool
    version: int


def extract_address_from_reverse(reverse_name: str) -> str:
    """Turn a PTR name into an IP address string, or "" if it is not one."""
    if reverse_name.endswith(IP4ARPA):
        labels = reverse_name[: -len(IP4ARPA)].split(".")[::-1]
        try:
            return str(ipaddress.IPv4Address(".".join(labels)))
        except ValueError:
            return ""
    if reverse_name.endswith(IP6ARPA):
        labels = reverse_name[: -len(IP6ARPA)].split(".")[::-1]
        groups = ["".join(labels[i : i + 4]) for i in range(0, len(labels) - len(labels) % 4, 4)]
        try:
            return str(ipaddress.IPv6Address(":".join(groups)))
        except ValueError:
            return ""
    return ""


def is_reverse(name: str) -> int:
    """Return 1 for in-addr.arpa names, 2 for ip6.arpa names, else 0."""
    if name.endswith(IP4ARPA):
        return 1
    if name.endswith(IP6ARPA):
        return 2
    return 0


def set_rcode(req: dns.message.Message, rcode: int, do: bool) -> dns.message.Message:
    """Return a reply to ``req`` carrying ``rcode``."""
    m = dns.message.make_response(req)
    m.set_rcode(rcode)
    m.flags |= dns.flags.RA | dns.flags.RD
    if m.edns >= 0:
        m.want_dnssec(do)
    return m


def set_edns0(req: dns.message.Message) -> EdnsInfo:
    """Normalise or add the request's OPT record and report what it asked for."""
    if req.edns < 0:
        req.use_edns(0, dns.flags.DO, DEFAULT_MSG_SIZE, options=[])
        return EdnsInfo(DEFAULT_MSG_SIZE, "", False, False, 0)

    size = max(MIN_MSG_SIZE, min(req.payload, DEFAULT_MSG_SIZE))
    cookie = ""
    nsid = False
    for option in req.options:
        code = int(option.otype)
        if code == _EDNS0_COOKIE:
            text = option.to_wire().hex()
            if len(text) >= 16:
                cookie = text[:16]
        elif code == _EDNS0_NSID:
            nsid = True

    version = req.edns
    if version != 0:
        req.use_edns(version, req.ednsflags, DEFAULT_MSG_SIZE, options=[])
        return EdnsInfo(size, cookie, nsid, False, version)

    do = bool(req.ednsflags & dns.flags.DO)
    req.use_edns(0, dns.flags.DO, DEFAULT_MSG_SIZE, options=[])
    return EdnsInfo(size, cookie, nsid, do, 0)


def generate_server_cookie(secret: str, remote_ip: str, cookie: str) -> str:
    """Return the client cookie followed by a hash binding it to the client."""
    digest = hashlib.sha256()
    digest.update(remote_ip.encode())
    digest.update(cookie.encode())
    digest.update(secret.encode())
    return cookie + digest.hexdigest()


def clear_opt(msg: dns.message.Message) -> dns.message.Message:
    """Strip the OPT record from ``msg``."""
    msg.use_edns(False)
    msg.additional = [rr for rr in msg.additional if rr.rdtype != dns.rdatatype.OPT]
    return msg


def clear_dnssec(msg: dns.message.Message) -> dns.message.Message:
    """Strip RRSIG and NSEC/NSEC3 records unless RRSIG was asked for."""
    if msg.question and msg.question[0].rdtype == dns.rdatatype.RRSIG:
        return msg
    msg.answer = [rr for rr in msg.answer if rr.rdtype not in _DNSSEC_TYPES]
    msg.authority = [rr for rr in msg.authority if rr.rdtype not in _DNSSEC_TYPES]
    return msg


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"invalid server address: {addr!r}")
    return host.strip("[]"), int(port)


def exchange(
    req: dns.message.Message, addr: str, net: str = "udp", timeout: float = 5.0
) -> dns.message.Message:
    """Send ``req`` to ``addr``, retrying over TCP when a UDP reply is truncated."""
    host, port = _split_addr(addr)
    if net == "udp":
        resp = dns.query.udp(req, host, timeout=timeout, port=port)
        if resp.flags & dns.flags.TC:
            return exchange(req, addr, "tcp", timeout)
        return resp
    if net == "tcp":
        return dns.query.tcp(req, host, timeout=timeout, port=port)
    if net == "tcp-tls":
        return dns.query.tls(req, host, timeout=timeout, port=port)
    raise ValueError(f"unsupported network: {net!r}")


def exchange_internal(req: dns.message.Message, registry: Registry) -> dns.message.Message:
    """Run ``req`` through the registry's handler chain as an internal query."""
    writer = ResponseWriter("tcp", "127.0.0.255:0")
    ch = Chain(registry.handlers())
    ch.reset(writer, req)
    ch.next({})
    if not writer.written:
        raise LookupError("no replied any message")
    return writer.msg


def parse_purge_question(req: dns.message.Message) -> tuple[str, int] | None:
    """Decode a purge query name into ``(qname, qtype)``, or None."""
    if not req.question:
        return None
    encoded = req.question[0].name.to_text().removesuffix(".")
    try:
        decoded = base64.b64decode(encoded, validate=True).decode()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    parts = decoded.split(":")
    if len(parts) != 2:
        return None
    try:
        qtype = dns.rdatatype.from_text(parts[0])
    except dns.exception.DNSException:
        return None
    return parts[1], int(qtype)


def not_supported(writer, req: dns.message.Message) -> None:
    """Reply with an empty NOTIMP message."""
    m = dns.message.Message(id=req.id)
    m.flags = dns.flags.QR | dns.flags.RD | dns.flags.AD
    m.set_opcode(req.opcode())
    m.set_rcode(dns.rcode.NOTIMP)
    writer.write_msg(m)