"""Middleware answering A, AAAA and PTR queries from a hosts file."""

from __future__ import annotations

import contextlib
import ipaddress
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Iterable, Union

import dns.flags
import dns.message
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from sdns.dnsutil import extract_address_from_reverse
from sdns.middleware.chain import AlreadyWrittenError, Chain, Handler

log = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_TTL = 3600


def _parse_literal_ip(addr: str) -> IPAddress | None:
    addr = addr.split("%", 1)[0]  # discard an IPv6 zone
    try:
        return ipaddress.ip_address(addr)
    except ValueError:
        return None


def abs_domain_name(name: str) -> str:
    """Return ``name`` lower-cased and fully qualified."""
    name = name.lower()
    return name if name.endswith(".") else name + "."


def ip_version(s: str) -> int:
    """Return 4 or 6 from the first '.' or ':' in ``s``, or 0 if neither occurs."""
    for char in s:
        if char == ".":
            return 4
        if char == ":":
            return 6
    return 0


@dataclass
class HostsMap:
    """Forward and reverse lookup tables built from a hosts file."""

    by_name_v4: dict[str, list[IPAddress]] = field(default_factory=dict)
    by_name_v6: dict[str, list[IPAddress]] = field(default_factory=dict)
    by_addr: dict[str, list[str]] = field(default_factory=dict)

    def copy(self) -> HostsMap:
        return HostsMap(
            {k: list(v) for k, v in self.by_name_v4.items()},
            {k: list(v) for k, v in self.by_name_v6.items()},
            {k: list(v) for k, v in self.by_addr.items()},
        )

    def __len__(self) -> int:
        """Total number of addresses and reverse names held."""
        return (
            sum(len(v) for v in self.by_name_v4.values())
            + sum(len(v) for v in self.by_name_v6.values())
            + sum(len(v) for v in self.by_addr.values())
        )


def _parse(lines: Iterable[str], override: HostsMap | None) -> HostsMap:
    hmap = HostsMap()
    for line in lines:
        fields = line.split("#", 1)[0].split()
        if len(fields) < 2:
            continue
        addr = _parse_literal_ip(fields[0])
        if addr is None:
            continue
        version = ip_version(fields[0])
        if version == 4:
            table = hmap.by_name_v4
        elif version == 6:
            table = hmap.by_name_v6
        else:
            continue
        for host in fields[1:]:
            name = abs_domain_name(host)
            table.setdefault(name, []).append(addr)
            hmap.by_addr.setdefault(str(addr), []).append(name)

    if override is None:
        return hmap

    for name, addrs in override.by_name_v4.items():
        hmap.by_name_v4.setdefault(name, []).extend(addrs)
    for name, addrs in override.by_name_v6.items():
        hmap.by_name_v6.setdefault(name, []).extend(addrs)
    for addr, names in override.by_addr.items():
        hmap.by_addr.setdefault(addr, []).extend(names)
    return hmap


class Hostsfile(Handler):
    """Known host entries, reloaded from disk when the file changes."""

    name = "hostsfile"
    interval = 5.0

    def __init__(self, path: str = "") -> None:
        self.path = path
        self.hmap = HostsMap()
        self.inline: HostsMap | None = None
        self._lock = threading.RLock()
        self._mtime: int | None = None
        self._size: int | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.read_hosts()

    def read_hosts(self) -> None:
        """Reparse the hosts file if its size or modification time changed."""
        try:
            with open(self.path, encoding="utf-8", errors="replace") as fh:
                st = os.fstat(fh.fileno())
                if st.st_mtime_ns == self._mtime and st.st_size == self._size:
                    return
                new_map = _parse(fh, self.inline)
        except OSError:
            return

        log.debug("Parsed hosts file into entries=%d", len(new_map))
        with self._lock:
            self.hmap = new_map
            self._mtime = st.st_mtime_ns
            self._size = st.st_size

    def start(self) -> threading.Thread:
        """Poll the hosts file for changes in a background thread."""
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="hostsfile", daemon=True)
        self._thread.start()
        return self._thread

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.read_hosts()

    def stop(self) -> None:
        """Stop the polling thread."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def init_inline(self, inline: Iterable[str]) -> None:
        """Use ``inline`` host lines as entries that survive every reload."""
        lines = list(inline)
        if not lines:
            return
        self.inline = _parse(lines, HostsMap())
        with self._lock:
            self.hmap = self.inline.copy()

    def parse_text(self, text: str) -> None:
        """Replace the current entries with those parsed from ``text``."""
        new_map = _parse(text.splitlines(), self.inline)
        with self._lock:
            self.hmap = new_map

    def lookup_static_host_v4(self, host: str) -> list[IPAddress]:
        """Return the IPv4 addresses for ``host``."""
        with self._lock:
            return list(self.hmap.by_name_v4.get(abs_domain_name(host), ()))

    def lookup_static_host_v6(self, host: str) -> list[IPAddress]:
        """Return the IPv6 addresses for ``host``."""
        with self._lock:
            return list(self.hmap.by_name_v6.get(abs_domain_name(host), ()))

    def lookup_static_addr(self, addr: str) -> list[str]:
        """Return the host names for the literal address ``addr``."""
        ip = _parse_literal_ip(addr)
        if ip is None:
            return []
        with self._lock:
            return list(self.hmap.by_addr.get(str(ip), ()))

    def _other_records_exist(self, qtype: int, qname: str) -> bool:
        if qtype == dns.rdatatype.A:
            return bool(self.lookup_static_host_v6(qname))
        if qtype == dns.rdatatype.AAAA:
            return bool(self.lookup_static_host_v4(qname))
        return bool(self.lookup_static_host_v4(qname) or self.lookup_static_host_v6(qname))

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        req = ch.request
        q = req.question[0]
        qname = q.name.to_text()

        answers: list[dns.rrset.RRset] = []
        if q.rdtype == dns.rdatatype.PTR:
            names = self.lookup_static_addr(extract_address_from_reverse(qname))
            if not names:
                ch.next(ctx)
                return
            answers.append(
                dns.rrset.from_text(
                    q.name,
                    _TTL,
                    dns.rdataclass.IN,
                    dns.rdatatype.PTR,
                    *(abs_domain_name(n) for n in names),
                )
            )
        elif q.rdtype in (dns.rdatatype.A, dns.rdatatype.AAAA):
            if q.rdtype == dns.rdatatype.A:
                ips = self.lookup_static_host_v4(qname)
            else:
                ips = self.lookup_static_host_v6(qname)
            if ips:
                answers.append(
                    dns.rrset.from_text(
                        q.name, _TTL, dns.rdataclass.IN, q.rdtype, *(str(ip) for ip in ips)
                    )
                )

        if not answers and not self._other_records_exist(q.rdtype, qname):
            ch.next(ctx)
            return

        m = dns.message.make_response(req)
        m.flags |= dns.flags.AA | dns.flags.RA
        m.answer = answers

        with contextlib.suppress(AlreadyWrittenError):
            ch.writer.write_msg(m)
        ch.cancel()