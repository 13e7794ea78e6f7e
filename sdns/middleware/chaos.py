"""Middleware answering CHAOS-class version and hostname queries."""

from __future__ import annotations

import contextlib
import socket

import dns.message
import dns.rdataclass
import dns.rdatatype
import dns.rrset
from dns.rdtypes.ANY.TXT import TXT

from sdns.middleware.chain import AlreadyWrittenError, Chain, Handler

_VERSION_NAMES = {"version.bind.", "version.server."}
_HOSTNAME_NAMES = {"hostname.bind.", "id.server."}


def limit_txt_length(s: str) -> str:
    """Cut ``s`` to fit into a single TXT character string."""
    if len(s) < 256:
        return s
    return s[:255]


class Chaos(Handler):
    """Replies to version.bind, hostname.bind and their RFC 4892 aliases."""

    name = "chaos"

    def __init__(self, enabled: bool = False, version: str = "") -> None:
        self.enabled = enabled
        self.version = f"SDNS v{version}" if version else "SDNS"

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        req = ch.request
        q = req.question[0]

        if (
            q.rdclass != dns.rdataclass.CH
            or q.rdtype != dns.rdatatype.TXT
            or not self.enabled
        ):
            ch.next(ctx)
            return

        qname = q.name.to_text()
        if qname in _VERSION_NAMES:
            text = self.version
        elif qname in _HOSTNAME_NAMES:
            try:
                hostname = socket.gethostname() or "unknown"
            except OSError:
                hostname = "unknown"
            text = limit_txt_length(hostname)
        else:
            ch.next(ctx)
            return

        rrset = dns.rrset.RRset(q.name, q.rdclass, dns.rdatatype.TXT)
        rrset.add(TXT(q.rdclass, dns.rdatatype.TXT, [text.encode()[:255]]), 0)

        resp = dns.message.make_response(req)
        resp.answer = [rrset]

        with contextlib.suppress(AlreadyWrittenError):
            ch.writer.write_msg(resp)
        ch.cancel()