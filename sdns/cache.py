"""Sharded in-memory cache with random eviction and question hashing."""

from __future__ import annotations

import struct
import threading
from typing import Any

SHARD_COUNT = 256

_MASK64 = (1 << 64) - 1
_P1 = 0x9E3779B185EBCA87
_P2 = 0xC2B2AE3D27D4EB4F
_P3 = 0x165667B19E3779F9
_P4 = 0x85EBCA77C2B2AE63
_P5 = 0x27D4EB2F165667C5


class CacheError(Exception):
    """Base error for cache lookups."""

    default_message = "cache error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    def __str__(self) -> str:
        return str(self.args[0])


class CacheNotFoundError(CacheError, KeyError):
    """Raised when a key is not present in the cache."""

    default_message = "cache not found"


class CacheExpiredError(CacheError):
    """Raised when a cached entry has outlived its TTL."""

    default_message = "cache expired"


class Shard:
    """A bounded dictionary that evicts an arbitrary entry when full."""

    def __init__(self, size: int) -> None:
        self.size = size
        self._items: dict[int, Any] = {}
        self._lock = threading.Lock()

    def add(self, key: int, el: Any) -> None:
        """Store ``el`` under ``key``, evicting one entry first if full."""
        with self._lock:
            if len(self._items) + 1 > self.size:
                self._evict_locked()
            self._items[key] = el

    def remove(self, key: int) -> None:
        """Drop ``key`` if present."""
        with self._lock:
            self._items.pop(key, None)

    def evict(self) -> None:
        """Remove one entry; does nothing on an empty shard."""
        with self._lock:
            self._evict_locked()

    def _evict_locked(self) -> None:
        victim = next(iter(self._items), None)
        if victim is not None or self._items:
            self._items.pop(victim, None)

    def get(self, key: int) -> Any:
        """Return the element under ``key`` or raise CacheNotFoundError."""
        with self._lock:
            try:
                return self._items[key]
            except KeyError:
                raise CacheNotFoundError() from None

    def __contains__(self, key: int) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class Cache:
    """A cache split into 256 shards selected by the low byte of the key."""

    def __init__(self, size: int) -> None:
        shard_size = max(size // SHARD_COUNT, 4)
        self._shards = [Shard(shard_size) for _ in range(SHARD_COUNT)]

    def _shard(self, key: int) -> Shard:
        return self._shards[key & (SHARD_COUNT - 1)]

    def get(self, key: int) -> Any:
        """Return the element under ``key`` or raise CacheNotFoundError."""
        return self._shard(key).get(key)

    def add(self, key: int, el: Any) -> None:
        """Store ``el`` under ``key``, overwriting any existing element."""
        self._shard(key).add(key, el)

    def remove(self, key: int) -> None:
        """Drop ``key`` if present."""
        self._shard(key).remove(key)

    def __contains__(self, key: int) -> bool:
        return key in self._shard(key)

    def __len__(self) -> int:
        return sum(len(shard) for shard in self._shards)


def _rotl(x: int, r: int) -> int:
    return ((x << r) | (x >> (64 - r))) & _MASK64


def _round(acc: int, lane: int) -> int:
    acc = (acc + lane * _P2) & _MASK64
    acc = _rotl(acc, 31)
    return (acc * _P1) & _MASK64


def _merge_round(acc: int, val: int) -> int:
    acc ^= _round(0, val)
    return (acc * _P1 + _P4) & _MASK64


def xxhash64(data: bytes, seed: int = 0) -> int:
    """Return the 64-bit XXH64 digest of ``data``."""
    data = bytes(data)
    n = len(data)
    seed &= _MASK64
    stripe_end = n - n % 32

    if n >= 32:
        v1 = (seed + _P1 + _P2) & _MASK64
        v2 = (seed + _P2) & _MASK64
        v3 = seed
        v4 = (seed - _P1) & _MASK64
        for a, b, c, d in struct.iter_unpack("<4Q", data[:stripe_end]):
            v1 = _round(v1, a)
            v2 = _round(v2, b)
            v3 = _round(v3, c)
            v4 = _round(v4, d)
        h = (_rotl(v1, 1) + _rotl(v2, 7) + _rotl(v3, 12) + _rotl(v4, 18)) & _MASK64
        for v in (v1, v2, v3, v4):
            h = _merge_round(h, v)
    else:
        stripe_end = 0
        h = (seed + _P5) & _MASK64

    h = (h + n) & _MASK64

    tail = data[stripe_end:]
    lanes_end = len(tail) - len(tail) % 8
    for (lane,) in struct.iter_unpack("<Q", tail[:lanes_end]):
        h ^= _round(0, lane)
        h = (_rotl(h, 27) * _P1 + _P4) & _MASK64

    rest = tail[lanes_end:]
    if len(rest) >= 4:
        (word,) = struct.unpack("<I", rest[:4])
        h ^= (word * _P1) & _MASK64
        h = (_rotl(h, 23) * _P2 + _P3) & _MASK64
        rest = rest[4:]

    for byte in rest:
        h ^= (byte * _P5) & _MASK64
        h = (_rotl(h, 11) * _P1) & _MASK64

    h ^= h >> 33
    h = (h * _P2) & _MASK64
    h ^= h >> 29
    h = (h * _P3) & _MASK64
    h ^= h >> 32
    return h


def question_hash(qname: str, qtype: int, qclass: int = 1, cd: bool = False) -> int:
    """Return the cache key for a DNS question; the name is case-insensitive."""
    buf = bytearray(struct.pack(">HH", qclass & 0xFFFF, qtype & 0xFFFF))
    if cd:
        buf.append(1)
    buf += qname.encode("utf-8").lower()
    return xxhash64(bytes(buf))