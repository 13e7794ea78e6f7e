"""Middleware answering locally for AS112 empty reverse zones."""

from __future__ import annotations

import contextlib
import logging
from typing import Iterable

import dns.flags
import dns.message
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from sdns.middleware.chain import AlreadyWrittenError, Chain, Handler

log = logging.getLogger(__name__)

ROOT_ZONE = "."

DEFAULT_ZONES = frozenset(
    [
        "10.in-addr.arpa.",
        *(f"{n}.172.in-addr.arpa." for n in range(16, 32)),
        "168.192.in-addr.arpa.",
        *(f"{n}.100.in-addr.arpa." for n in range(64, 128)),
        "0.in-addr.arpa.",
        "127.in-addr.arpa.",
        "254.169.in-addr.arpa.",
        "2.0.192.in-addr.arpa.",
        "100.51.198.in-addr.arpa.",
        "113.0.203.in-addr.arpa.",
        "255.255.255.255.in-addr.arpa.",
        "0." * 32 + "ip6.arpa.",
        "1." + "0." * 31 + "ip6.arpa.",
        "d.f.ip6.arpa.",
        "8.e.f.ip6.arpa.",
        "9.e.f.ip6.arpa.",
        "a.e.f.ip6.arpa.",
        "b.e.f.ip6.arpa.",
        "8.b.d.0.1.0.0.2.ip6.arpa.",
        "empty.as112.arpa.",
        "home.arpa.",
    ]
)


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else name + "."


def _next_label(s: str, offset: int) -> tuple[int, bool]:
    """Return the start of the label after ``offset`` and whether it is the last."""
    if not s:
        return 0, True
    i = offset
    while i < len(s) - 1:
        if s[i] == ".":
            j = i - 1
            while j >= 0 and s[j] == "\\":
                j -= 1
            if (j - i) % 2 != 0:
                return i + 1, False
        i += 1
    return i + 1, True


class AS112(Handler):
    """Serves NXDOMAIN/SOA replies for private and special-use reverse zones."""

    name = "as112"

    def __init__(self, empty_zones: Iterable[str] | None = None) -> None:
        self.zones: frozenset[str] = DEFAULT_ZONES
        zones = set()
        for zone in empty_zones or ():
            if self.match(zone, dns.rdatatype.SOA) == ROOT_ZONE:
                log.error(
                    "Empty zone doesn't match in default empty zones, check your config! zone=%s",
                    zone,
                )
                continue
            zones.add(_fqdn(zone))
        if zones:
            self.zones = frozenset(zones)
        log.info("Empty zones loaded zones=%d", len(self.zones))

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        req = ch.request
        q = req.question[0]
        qname_text = q.name.to_text()

        if not qname_text.endswith("arpa."):
            ch.next(ctx)
            return

        zone = self.match(qname_text, q.rdtype)
        if zone == ROOT_ZONE:
            ch.next(ctx)
            return

        qname = qname_text.lower()

        msg = dns.message.make_response(req)
        msg.flags |= dns.flags.AA | dns.flags.RA

        soa = dns.rrset.from_text(
            q.name,
            86400,
            dns.rdataclass.IN,
            dns.rdatatype.SOA,
            f"{zone} {ROOT_ZONE} 0 28800 7200 604800 86400",
        )

        if q.rdtype == dns.rdatatype.NS and zone == qname:
            msg.answer.append(
                dns.rrset.from_text(q.name, 0, dns.rdataclass.IN, dns.rdatatype.NS, zone)
            )
        elif q.rdtype == dns.rdatatype.SOA and zone == qname:
            msg.answer.append(soa)
        else:
            msg.authority.append(soa)

        if zone != qname:
            msg.set_rcode(dns.rcode.NXDOMAIN)

        with contextlib.suppress(AlreadyWrittenError):
            ch.writer.write_msg(msg)
        ch.cancel()

    def match(self, name: str, qtype: int) -> str:
        """Return the empty zone containing ``name``, or the root zone if none."""
        name = _fqdn(name.lower())

        if qtype == dns.rdatatype.DS:
            off, end = _next_label(name, 0)
            name = name[off:]
            if end:
                return ROOT_ZONE

        off, end = 0, False
        while not end:
            suffix = name[off:]
            if suffix in self.zones:
                return suffix
            off, end = _next_label(name, off)

        return ROOT_ZONE