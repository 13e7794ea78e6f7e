"""Middleware that turns errors in later handlers into SERVFAIL replies."""

from __future__ import annotations

import logging

import dns.rcode

from sdns.middleware.chain import Chain, Handler

log = logging.getLogger(__name__)


class Recovery(Handler):
    """Catches exceptions raised further down the chain."""

    name = "recovery"

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        try:
            ch.next(ctx)
        except Exception:
            ch.cancel_with_rcode(dns.rcode.SERVFAIL, False)
            log.exception("Recovered in serve_dns")