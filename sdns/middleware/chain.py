"""Request handler chain, response writers and the middleware registry."""

from __future__ import annotations

import abc
import ipaddress
import logging
import threading
from typing import Any, Callable

import dns.exception
import dns.flags
import dns.message
import dns.rcode

log = logging.getLogger(__name__)

INTERNAL_IP = ipaddress.ip_address("127.0.0.255")


class AlreadyWrittenError(Exception):
    """Raised when a response is written twice for one request."""

    def __init__(self) -> None:
        super().__init__("msg already written")


def _parse_remote(remote_addr: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    host, sep, _ = remote_addr.rpartition(":")
    if not sep:
        host = remote_addr
    host = host.strip("[]")
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        return None


class ResponseWriter:
    """Collects the single response sent back for a request."""

    def __init__(self, proto: str, remote_addr: str) -> None:
        self.proto = proto
        self.remote_ip = _parse_remote(remote_addr)
        self.msg: dns.message.Message | None = None

    @property
    def internal(self) -> bool:
        return self.remote_ip == INTERNAL_IP

    @property
    def written(self) -> bool:
        return self.msg is not None

    @property
    def rcode(self) -> int:
        if self.msg is None:
            return dns.rcode.SERVFAIL
        return self.msg.rcode()

    def clear(self) -> None:
        """Forget any response written so far."""
        self.msg = None

    def write_msg(self, msg: dns.message.Message) -> None:
        """Record ``msg`` as the response."""
        if self.msg is not None:
            raise AlreadyWrittenError()
        self.msg = msg

    def write(self, data: bytes) -> int:
        """Record a response given in wire format; returns its length."""
        if self.msg is not None:
            raise AlreadyWrittenError()
        try:
            msg = dns.message.from_wire(data)
        except dns.exception.DNSException as exc:
            raise ValueError(f"bad DNS message: {exc}") from exc
        self.msg = msg
        return len(data)


class WriterWrapper:
    """A writer that forwards to an inner writer; subclasses override write_msg."""

    def __init__(self, inner: Any) -> None:
        self.inner = inner

    @property
    def proto(self) -> str:
        return self.inner.proto

    @property
    def remote_ip(self):
        return self.inner.remote_ip

    @property
    def internal(self) -> bool:
        return self.inner.internal

    @property
    def written(self) -> bool:
        return self.inner.written

    @property
    def msg(self) -> dns.message.Message | None:
        return self.inner.msg

    @property
    def rcode(self) -> int:
        return self.inner.rcode

    def write(self, data: bytes) -> int:
        return self.inner.write(data)

    def write_msg(self, msg: dns.message.Message) -> None:
        self.inner.write_msg(msg)


class Handler(abc.ABC):
    """A middleware step in the DNS handler chain."""

    name: str = ""

    @abc.abstractmethod
    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        """Handle the chain's request, usually calling ``ch.next``."""


class Chain:
    """Runs handlers in order for a single request."""

    def __init__(self, handlers: list[Handler]) -> None:
        self.handlers = list(handlers)
        self.writer: Any = None
        self.request: dns.message.Message | None = None
        self.head = 0
        self.remaining = len(self.handlers)

    def next(self, ctx: dict | None = None) -> None:
        """Call the next handler, if any remain."""
        if self.remaining == 0:
            return
        handler = self.handlers[self.head]
        self.head = (self.head + 1) % len(self.handlers)
        self.remaining -= 1
        handler.serve_dns({} if ctx is None else ctx, self)

    def cancel(self) -> None:
        """Stop calling further handlers."""
        self.remaining = 0

    def cancel_with_rcode(self, rcode: int, do: bool) -> None:
        """Reply with ``rcode`` and stop the chain."""
        m = dns.message.make_response(self.request)
        m.set_rcode(rcode)
        m.flags |= dns.flags.RA | dns.flags.RD
        if m.edns >= 0:
            m.want_dnssec(do)
        try:
            self.writer.write_msg(m)
        except AlreadyWrittenError:
            pass
        self.remaining = 0

    def reset(self, writer: Any, request: dns.message.Message) -> None:
        """Prepare the chain for a new request."""
        if isinstance(writer, ResponseWriter):
            writer.clear()
        self.writer = writer
        self.request = request
        self.remaining = len(self.handlers)
        self.head = 0


Factory = Callable[[Any], Handler]


class Registry:
    """Ordered list of middleware factories and the handlers built from them."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: list[tuple[str, Factory]] = []
        self._handlers: list[Handler] = []
        self.ready = False
        self.cfg: Any = None

    def register(self, name: str, factory: Factory) -> None:
        """Append a middleware."""
        with self._lock:
            self.register_at(name, factory, len(self._entries))

    def register_at(self, name: str, factory: Factory, idx: int) -> None:
        """Insert a middleware at position ``idx``."""
        log.debug("Register middleware name=%s index=%d", name, idx)
        with self._lock:
            if idx < 0 or idx > len(self._entries):
                raise IndexError(f"middleware index {idx} out of range")
            self._entries.insert(idx, (name, factory))

    def register_before(self, name: str, factory: Factory, before: str) -> None:
        """Insert a middleware just before the one named ``before``."""
        with self._lock:
            for idx, (existing, _) in enumerate(self._entries):
                if existing == before:
                    self._entries.insert(idx, (name, factory))
                    return
        raise KeyError(f"Middleware {before} not found")

    def setup(self, cfg: Any) -> None:
        """Build every registered handler once."""
        with self._lock:
            if self.ready:
                raise RuntimeError("middleware setup already done")
            self.cfg = cfg
            self._handlers = [factory(cfg) for _, factory in self._entries]
            self.ready = True

    def handlers(self) -> list[Handler]:
        return list(self._handlers)

    def names(self) -> list[str]:
        with self._lock:
            return [name for name, _ in self._entries]

    def get(self, name: str) -> Handler | None:
        """Return the built handler named ``name``, or None."""
        if not self.ready:
            return None
        with self._lock:
            for i, (existing, _) in enumerate(self._entries):
                if existing == name:
                    return self._handlers[i] if i < len(self._handlers) else None
        return None