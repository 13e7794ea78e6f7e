"""Middleware limiting how fast each client may query, with DNS cookie support."""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass
from typing import Callable

import dns.edns
import dns.flags
import dns.message
import dns.rcode

from sdns.cache import Cache, CacheNotFoundError, xxhash64
from sdns.dnsutil import generate_server_cookie
from sdns.middleware.chain import AlreadyWrittenError, Chain, Handler

CACHE_SIZE = 256 * 100
COOKIE_SIZE = 16


class TokenBucket:
    """Allows up to ``burst`` events at once, refilled at ``rate`` events per second."""

    def __init__(
        self,
        rate: float,
        burst: int,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.rate = float(rate)
        self.burst = int(burst)
        self.clock = clock or time.monotonic
        self._tokens = float(self.burst)
        self._last = self.clock()

    def allow(self) -> bool:
        """Take one token if available; returns whether the event may happen."""
        now = self.clock()
        elapsed = max(0.0, now - self._last)
        self._last = now
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False


@dataclass
class _Limiter:
    bucket: TokenBucket
    cookie: str = ""


def _cookie_hex(option: dns.edns.Option) -> str:
    return option.to_wire().hex()


class RateLimit(Handler):
    """Per-client query rate limit; clients with a valid server cookie bypass it."""

    name = "ratelimit"

    def __init__(self, cookie_secret: str = "", rate: int = 0) -> None:
        self.cookie_secret = cookie_secret
        self.rate = rate
        self._cache = Cache(CACHE_SIZE)

    def _limiter(self, ip) -> _Limiter:
        key = xxhash64(ip.packed, 0)
        try:
            return self._cache.get(key)
        except CacheNotFoundError:
            pass
        per_second = self.rate / 60.0 if self.rate > 0 else 0.0
        limiter = _Limiter(TokenBucket(per_second, self.rate))
        self._cache.add(key, limiter)
        return limiter

    def _reply_bad_cookie(self, ch: Chain, server_cookie: str) -> None:
        req = ch.request
        options = [
            dns.edns.GenericOption(dns.edns.OptionType.COOKIE, bytes.fromhex(server_cookie))
            if opt.otype == dns.edns.OptionType.COOKIE
            else opt
            for opt in req.options
        ]
        req.use_edns(req.edns, req.ednsflags, req.payload, options=options)

        m = dns.message.make_response(req)
        m.use_edns(0, 0, req.payload, options=options)
        m.set_rcode(dns.rcode.BADCOOKIE)
        m.flags |= dns.flags.RA | dns.flags.RD
        with contextlib.suppress(AlreadyWrittenError):
            ch.writer.write_msg(m)
        ch.cancel()

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        w, req = ch.writer, ch.request

        if w.internal or self.rate == 0:
            ch.next(ctx)
            return

        ip = w.remote_ip
        if ip is None or ip.is_loopback:
            ch.next(ctx)
            return

        limiter = self._limiter(ip)
        cached = limiter.cookie
        server_cookie = ""

        if req.edns >= 0:
            for option in req.options:
                if option.otype != dns.edns.OptionType.COOKIE:
                    continue
                text = _cookie_hex(option)
                if len(text) < COOKIE_SIZE:
                    continue
                client_cookie = text[:COOKIE_SIZE]
                server_cookie = generate_server_cookie(
                    self.cookie_secret, str(ip), client_cookie
                )

                if not cached or cached == text:
                    ch.next(ctx)
                    limiter.cookie = server_cookie
                    return

                if w.proto == "udp":
                    if not limiter.bucket.allow():
                        ch.cancel()
                        return
                    limiter.cookie = server_cookie
                    self._reply_bad_cookie(ch, server_cookie)
                    return

        if not limiter.bucket.allow():
            ch.cancel()
            return

        ch.next(ctx)

        if server_cookie:
            limiter.cookie = server_cookie