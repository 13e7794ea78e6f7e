"""Middleware that counts processed queries by type and response code."""

from __future__ import annotations

import threading
from collections import Counter

import dns.rcode
import dns.rdatatype

from sdns.middleware.chain import Chain, Handler

METRIC_NAME = "dns_queries_total"
METRIC_HELP = "How many DNS queries processed"


class QueryCounter:
    """Thread-safe counter of queries keyed by (qtype, rcode)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[tuple[str, str]] = Counter()

    def inc(self, qtype: str, rcode: str) -> None:
        """Count one query with the given labels."""
        with self._lock:
            self._counts[(qtype, rcode)] += 1

    def get(self, qtype: str, rcode: str) -> int:
        """Return how many queries carried these labels."""
        with self._lock:
            return self._counts[(qtype, rcode)]

    def render(self) -> str:
        """Return the counts in the Prometheus text exposition format."""
        lines = [f"# HELP {METRIC_NAME} {METRIC_HELP}", f"# TYPE {METRIC_NAME} counter"]
        with self._lock:
            items = sorted(self._counts.items())
        lines.extend(
            f'{METRIC_NAME}{{qtype="{qtype}",rcode="{rcode}"}} {count}'
            for (qtype, rcode), count in items
        )
        return "\n".join(lines) + "\n"


class Metrics(Handler):
    """Counts every answered query once the rest of the chain has run."""

    name = "metrics"

    def __init__(self, counter: QueryCounter | None = None) -> None:
        self.counter = counter if counter is not None else QueryCounter()

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        ch.next(ctx)

        if not ch.writer.written:
            return

        qtype = dns.rdatatype.to_text(ch.request.question[0].rdtype)
        rcode = dns.rcode.to_text(ch.writer.rcode)
        self.counter.inc(qtype, rcode)