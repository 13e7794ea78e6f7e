"""Authoritative server bookkeeping and a TTL-bounded nameserver cache."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sdns.cache import Cache, CacheExpiredError, CacheNotFoundError

MAXIMUM_TTL = timedelta(hours=12)
MINIMUM_TTL = timedelta(hours=1)
DEFAULT_CAPACITY = 1024 * 256

_NS_PER_MS = 1_000_000
_NS_PER_S = 1_000_000_000


class Version(enum.IntEnum):
    """IP family of an authoritative server."""

    IPv4 = 0x1
    IPv6 = 0x2

    def __str__(self) -> str:
        return self.name


def _format_duration(ns: int) -> str:
    """Format nanoseconds the way a human-readable duration is usually shown."""
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)
    if ns < _NS_PER_S:
        if ns % _NS_PER_MS == 0:
            return f"{sign}{ns // _NS_PER_MS}ms"
        return f"{sign}{ns / _NS_PER_MS:g}ms"
    hours, rest = divmod(ns, 3600 * _NS_PER_S)
    minutes, rest = divmod(rest, 60 * _NS_PER_S)
    secs, frac = divmod(rest, _NS_PER_S)
    sec_text = str(secs)
    if frac:
        sec_text += "." + f"{frac:09d}".rstrip("0")
    text = sec_text + "s"
    if hours:
        text = f"{hours}h{minutes}m" + text
    elif minutes:
        text = f"{minutes}m" + text
    return sign + text


class AuthServer:
    """An authoritative server with accumulated round-trip statistics."""

    def __init__(self, addr: str, version: Version) -> None:
        self.addr = addr
        self.version = Version(version)
        self.rtt = 0  # accumulated round-trip time in nanoseconds
        self.count = 0

    def __str__(self) -> str:
        count = self.count or 1
        rtt = self.rtt
        if rtt >= _NS_PER_S:
            health = "POOR"
        elif rtt > 0:
            health = "GOOD"
        else:
            health = "UNKNOWN"
        average = rtt // count
        rounded = ((average + _NS_PER_MS // 2) // _NS_PER_MS) * _NS_PER_MS
        return f"{self.version}:{self.addr} rtt:{_format_duration(rounded)} health:[{health}]"

    def __repr__(self) -> str:
        return f"AuthServer({self.addr!r}, {self.version!s})"


@dataclass
class AuthServers:
    """The set of servers responsible for a zone."""

    servers: list[AuthServer] = field(default_factory=list)
    nss: list[str] = field(default_factory=list)
    zone: str = ""
    called: int = 0
    error_count: int = 0
    checking_disable: bool = False
    checked: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)


def sort_servers(servers: list[AuthServer], called: int) -> None:
    """Average each server's rtt (or reset every 1000 calls) and sort by it in place."""
    for server in servers:
        if called % 1000 == 0:
            server.rtt = 0
            server.count = 0
            continue
        if server.count > 0:
            server.rtt = server.rtt // server.count
            server.count = 1
    servers.sort(key=lambda s: s.rtt)


@dataclass
class NS:
    """A cached delegation entry."""

    servers: AuthServers
    ds_rr: list[Any] | None
    ttl: timedelta
    stored: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NSCache:
    """Cache of delegations whose lifetime is clamped between one and twelve hours."""

    def __init__(self, now: Callable[[], datetime] | None = None) -> None:
        self._cache = Cache(DEFAULT_CAPACITY)
        self.now = now or _utcnow

    def _utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)

    def get(self, key: int) -> NS:
        """Return the entry or raise CacheNotFoundError / CacheExpiredError."""
        entry: NS = self._cache.get(key)
        if self._utc() - entry.stored >= entry.ttl:
            raise CacheExpiredError()
        return entry

    def set(
        self,
        key: int,
        ds_rr: list[Any] | None,
        servers: AuthServers,
        ttl: timedelta,
    ) -> None:
        """Store a delegation; ``ttl`` is clamped to the allowed range."""
        ttl = max(MINIMUM_TTL, min(ttl, MAXIMUM_TTL))
        stamp = datetime.fromtimestamp(round(self._utc().timestamp()), tz=timezone.utc)
        self._cache.add(key, NS(servers=servers, ds_rr=ds_rr, ttl=ttl, stored=stamp))

    def remove(self, key: int) -> None:
        """Drop the entry for ``key``."""
        self._cache.remove(key)


__all__ = [
    "AuthServer",
    "AuthServers",
    "CacheExpiredError",
    "CacheNotFoundError",
    "NS",
    "NSCache",
    "Version",
    "sort_servers",
]