"""Middleware that sends queries to configured upstream resolvers."""

from __future__ import annotations

import contextlib
import ipaddress
import logging
from dataclasses import dataclass
from typing import Iterable

import dns.exception
import dns.flags
import dns.rcode
import dns.rdataclass
import dns.rdatatype

from sdns.dnsutil import exchange
from sdns.middleware.chain import AlreadyWrittenError, Chain, Handler

log = logging.getLogger(__name__)

_TLS_PREFIX = "tls://"
_EXCHANGE_ERRORS = (OSError, EOFError, ValueError, dns.exception.DNSException)


@dataclass
class _Server:
    addr: str
    proto: str = "udp"


def _valid_address(addr: str) -> bool:
    host, sep, _ = addr.rpartition(":")
    if not sep:
        return False
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def _format_question(q) -> str:
    return (
        f"{q.name.to_text().lower()} {dns.rdataclass.to_text(q.rdclass)} "
        f"{dns.rdatatype.to_text(q.rdtype)}"
    )


class Forwarder(Handler):
    """Forwards each query to the first upstream server that answers."""

    name = "forwarder"
    timeout = 2.0

    def __init__(self, servers: Iterable[str] = (), dnssec: bool = False) -> None:
        self.servers: list[_Server] = []
        for spec in servers:
            proto = "udp"
            if spec.startswith(_TLS_PREFIX):
                spec = spec[len(_TLS_PREFIX):]
                proto = "tcp-tls"
            if _valid_address(spec):
                self.servers.append(_Server(spec, proto))
            else:
                log.error("Forwarder server is not correct. Check your config. server=%s", spec)
        self.dnssec = dnssec

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        w, req = ch.writer, ch.request

        if not req.question or not self.servers:
            ch.cancel_with_rcode(dns.rcode.SERVFAIL, True)
            return

        if not self.dnssec:
            req.flags |= dns.flags.CD

        for server in self.servers:
            try:
                resp = exchange(req, server.addr, server.proto, self.timeout)
            except _EXCHANGE_ERRORS as exc:
                log.info(
                    "forwarder query failed query=%s error=%s",
                    _format_question(req.question[0]),
                    exc,
                )
                continue
            if resp is None:
                continue

            resp.id = req.id
            if not self.dnssec:
                resp.flags &= ~dns.flags.CD

            with contextlib.suppress(AlreadyWrittenError):
                w.write_msg(resp)
            return

        ch.cancel_with_rcode(dns.rcode.SERVFAIL, True)