"""Middleware that stops queries recursing into themselves."""

from __future__ import annotations

import logging

import dns.rcode
import dns.rdatatype

from sdns.middleware.chain import Chain, Handler

log = logging.getLogger(__name__)

MAX_DEPTH = 10


class Loop(Handler):
    """Counts how often a question passes through and fails it after ten times."""

    name = "loop"

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        req = ch.request
        if not req.question:
            ch.cancel()
            return

        q = req.question[0]
        query = f"{q.name.to_text()}:{dns.rdatatype.to_text(q.rdtype)}"
        key = f"loopcheck:{query}"

        count = ctx.get(key)
        if count is not None and count > MAX_DEPTH:
            log.warning("Loop detected query=%s", query)
            ch.cancel_with_rcode(dns.rcode.SERVFAIL, False)
            return

        ch.next({**ctx, key: 1 if count is None else count + 1})