"""Middleware that retries SERVFAIL answers against fallback servers."""

from __future__ import annotations

import ipaddress
import logging
from typing import Any, Iterable

import dns.exception
import dns.flags
import dns.message
import dns.rcode
import dns.rdataclass
import dns.rdatatype

from sdns.dnsutil import DEFAULT_MSG_SIZE, exchange
from sdns.middleware.chain import Chain, Handler, WriterWrapper

log = logging.getLogger(__name__)

_EXCHANGE_ERRORS = (OSError, EOFError, ValueError, dns.exception.DNSException)


def _valid_server(server: str) -> bool:
    host, sep, _ = server.rpartition(":")
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


class Failover(Handler):
    """Holds the fallback servers used when the resolver answers SERVFAIL."""

    name = "failover"
    timeout = 5.0

    def __init__(self, servers: Iterable[str] = ()) -> None:
        self.servers: list[str] = []
        for server in servers:
            if _valid_server(server):
                self.servers.append(server)
            else:
                log.error("Fallback server is not correct. Check your config. server=%s", server)

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        w = ch.writer
        ch.writer = FailoverWriter(w, self)
        try:
            ch.next(ctx)
        finally:
            ch.writer = w


class FailoverWriter(WriterWrapper):
    """Writer that replaces recursive SERVFAIL replies with a fallback server's answer."""

    def __init__(self, inner: Any, failover: Failover) -> None:
        super().__init__(inner)
        self.failover = failover

    def write_msg(self, msg: dns.message.Message) -> None:
        if not msg.question or not self.failover.servers:
            self.inner.write_msg(msg)
            return

        if msg.rcode() != dns.rcode.SERVFAIL or not msg.flags & dns.flags.RD:
            self.inner.write_msg(msg)
            return

        q = msg.question[0]
        req = dns.message.make_query(
            q.name,
            q.rdtype,
            q.rdclass,
            use_edns=0,
            want_dnssec=True,
            payload=DEFAULT_MSG_SIZE,
        )
        if msg.flags & dns.flags.CD:
            req.flags |= dns.flags.CD

        for server in self.failover.servers:
            try:
                resp = exchange(req, server, "udp", self.failover.timeout)
            except _EXCHANGE_ERRORS as exc:
                log.info("Failover query failed query=%s error=%s", _format_question(q), exc)
                continue
            if resp is None:
                continue
            resp.id = msg.id
            self.inner.write_msg(resp)
            return

        self.inner.write_msg(msg)