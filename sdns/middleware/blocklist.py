"""Middleware that answers queries for blocked names with null routes."""

from __future__ import annotations

import contextlib
import ipaddress
import logging
import os
import shutil
import threading
import time
import urllib.request
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable
from urllib.parse import urlparse

import dns.flags
import dns.message
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from sdns.middleware.chain import AlreadyWrittenError, Chain, Handler

log = logging.getLogger(__name__)

_LOCAL_FILE = "local"
_LOCAL_HEADER = "# The file generated by auto. DO NOT EDIT\n"


def _canonical(name: str) -> str:
    name = name.lower()
    return name if name.endswith(".") else name + "."


class BlockList(Handler):
    """A set of blocked domains, fed from config, local edits and downloaded lists."""

    name = "blocklist"
    startup_delay = 1.0
    download_timeout = 30.0

    def __init__(
        self,
        nullroute: str = "0.0.0.0",
        nullroute_v6: str = "::0",
        blocklist_dir: str = "",
        whitelist: Iterable[str] = (),
        blocklist: Iterable[str] = (),
        sources: Iterable[str] = (),
        directory: str = "",
    ) -> None:
        self.nullroute = ipaddress.IPv4Address(nullroute)
        self.nullroute_v6 = ipaddress.IPv6Address(nullroute_v6)
        self.blocklist_dir = blocklist_dir or os.path.join(directory, "blacklists")
        self.whitelist = list(whitelist)
        self.blocklist = list(blocklist)
        self.sources = list(sources)
        self._lock = threading.RLock()
        self._blocked: set[str] = set()
        self._allowed: set[str] = set()
        self._times_seen: Counter[str] = Counter()

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        req = ch.request
        q = req.question[0]

        if not self.exists(q.name.to_text()):
            ch.next(ctx)
            return

        msg = dns.message.make_response(req)
        msg.flags |= dns.flags.AA | dns.flags.RA

        if q.rdtype == dns.rdatatype.A:
            msg.answer.append(
                dns.rrset.from_text(
                    q.name, 3600, dns.rdataclass.IN, dns.rdatatype.A, str(self.nullroute)
                )
            )
        elif q.rdtype == dns.rdatatype.AAAA:
            msg.answer.append(
                dns.rrset.from_text(
                    q.name, 3600, dns.rdataclass.IN, dns.rdatatype.AAAA, str(self.nullroute_v6)
                )
            )
        else:
            soa = f"{q.name.to_text()} . 0 28800 7200 604800 86400"
            msg.additional.append(
                dns.rrset.from_text(q.name, 86400, dns.rdataclass.IN, dns.rdatatype.SOA, soa)
            )

        with contextlib.suppress(AlreadyWrittenError):
            ch.writer.write_msg(msg)
        ch.cancel()

    def get(self, key: str) -> bool:
        """Return True for a blocked name; raise KeyError when it is not blocked."""
        with self._lock:
            if _canonical(key) not in self._blocked:
                raise KeyError("block not found")
            return True

    def remove(self, key: str) -> bool:
        """Unblock ``key``; returns False when it was not blocked."""
        with self._lock:
            key = _canonical(key)
            if key not in self._blocked:
                return False
            self._blocked.discard(key)
            self._save()
            return True

    def set(self, key: str) -> bool:
        """Block ``key`` and persist it; returns False for whitelisted names."""
        with self._lock:
            if not self._set(key):
                return False
            self._save()
            return True

    def _set(self, key: str) -> bool:
        with self._lock:
            key = _canonical(key)
            if key in self._allowed:
                return False
            self._blocked.add(key)
            return True

    def exists(self, key: str) -> bool:
        """Return whether ``key`` is blocked; matching is case-insensitive."""
        with self._lock:
            return _canonical(key) in self._blocked

    def __contains__(self, key: str) -> bool:
        return self.exists(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._blocked)

    def _save(self) -> None:
        path = os.path.join(self.blocklist_dir, _LOCAL_FILE)
        try:
            with open(path, "w", encoding="utf-8") as fh:
                fh.write(_LOCAL_HEADER)
                fh.writelines(f"{domain}\n" for domain in sorted(self._blocked))
        except OSError:
            pass

    def start(self) -> threading.Thread:
        """Load blocklists in a background thread after a short delay."""
        thread = threading.Thread(target=self._fetch_blocklists, name="blocklist", daemon=True)
        thread.start()
        return thread

    def _fetch_blocklists(self) -> None:
        time.sleep(self.startup_delay)
        try:
            self.update_blocklists()
        except OSError as exc:
            log.error("Update blocklists failed: %s", exc)
        try:
            self.read_blocklists()
        except OSError as exc:
            log.error("Read blocklists failed dir=%s: %s", self.blocklist_dir, exc)

    def update_blocklists(self) -> None:
        """Apply configured white/block entries and download the remote lists."""
        if not os.path.exists(self.blocklist_dir):
            try:
                os.mkdir(self.blocklist_dir, 0o750)
            except OSError as exc:
                raise OSError(f"error creating blacklist directory: {exc}") from exc

        with self._lock:
            self._allowed.update(_canonical(entry) for entry in self.whitelist)

        for entry in self.blocklist:
            self._set(entry)

        self._fetch_sources()

    def _fetch_sources(self) -> None:
        jobs = []
        for uri in self.sources:
            host = urlparse(uri).netloc
            self._times_seen[host] += 1
            jobs.append((uri, f"{host}.{self._times_seen[host]}.tmp"))

        if not jobs:
            return

        with ThreadPoolExecutor(max_workers=len(jobs)) as pool:
            for uri, file_name in jobs:
                pool.submit(self._download_logged, uri, file_name)

    def _download_logged(self, uri: str, file_name: str) -> None:
        log.info("Fetching blacklist uri=%s", uri)
        try:
            self._download(uri, file_name)
        except OSError as exc:
            log.error("Fetching blacklist uri=%s: %s", uri, exc)

    def _download(self, uri: str, file_name: str) -> None:
        path = os.path.join(self.blocklist_dir, file_name)
        try:
            output = open(path, "wb")
        except OSError as exc:
            raise OSError(f"error creating file: {exc}") from exc
        with output:
            try:
                response = urllib.request.urlopen(uri, timeout=self.download_timeout)
            except (OSError, ValueError) as exc:
                raise OSError(f"error downloading source: {exc}") from exc
            with response:
                try:
                    shutil.copyfileobj(response, output)
                except OSError as exc:
                    raise OSError(f"error copying output: {exc}") from exc

    def read_blocklists(self) -> None:
        """Parse every file in the blocklist directory, deleting downloaded ones."""
        log.info("Loading blocked domains... path=%s", self.blocklist_dir)

        if not os.path.exists(self.blocklist_dir):
            log.warning("Path not found, skipping... path=%s", self.blocklist_dir)
            return

        for root, dirs, files in os.walk(self.blocklist_dir):
            dirs.sort()
            for file_name in sorted(files):
                path = os.path.join(root, file_name)
                try:
                    fh = open(path, encoding="utf-8", errors="replace")
                except OSError as exc:
                    raise OSError(f"error opening file: {exc}") from exc
                with fh:
                    self.parse_host_file(fh)
                if os.path.splitext(path)[1] == ".tmp":
                    with contextlib.suppress(OSError):
                        os.remove(path)

        log.info("Blocked domains loaded total=%d", len(self))

    def parse_host_file(self, lines: Iterable[str]) -> None:
        """Block the host named on each hosts-file or plain-list line."""
        for raw in lines:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            fields = line.split()
            if len(fields) > 1 and not fields[1].startswith("#"):
                entry = fields[1]
            else:
                entry = fields[0]
            entry = _canonical(entry)
            if not self.exists(entry):
                self._set(entry)