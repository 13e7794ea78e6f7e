"""Middleware writing one line per answered client query to a log file."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import TextIO

import dns.flags
import dns.rcode
import dns.rdataclass
import dns.rdatatype

from sdns.middleware.chain import Chain, Handler

log = logging.getLogger(__name__)

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_question(question) -> str:
    """Return a quoted ``"name CLASS TYPE"`` string for a question entry."""
    name = question.name.to_text().lower()
    rdclass = dns.rdataclass.to_text(question.rdclass)
    rdtype = dns.rdatatype.to_text(question.rdtype)
    return f'"{name} {rdclass} {rdtype}"'


def _timestamp() -> str:
    now = datetime.now().astimezone()
    return f"{now:%d}/{_MONTHS[now.month - 1]}/{now:%Y:%H:%M:%S %z}"


class AccessLog(Handler):
    """Appends answered external queries to a file in a common-log-like format."""

    name = "accesslog"

    def __init__(self, path: str = "") -> None:
        self.path = path
        self.file: TextIO | None = None
        if path:
            try:
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
                self.file = os.fdopen(fd, "a", encoding="utf-8")
            except OSError as exc:
                log.error("Access log file open failed: %s", str(exc).strip())

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        ch.next(ctx)

        w = ch.writer
        if self.file is None or not w.written or w.internal:
            return

        resp = w.msg
        if not resp.question:
            return

        cd = "+cd" if resp.flags & dns.flags.CD else "-cd"
        record = [
            f"{w.remote_ip} -",
            f"[{_timestamp()}]",
            format_question(resp.question[0]),
            w.proto,
            cd,
            dns.rcode.to_text(resp.rcode()),
            str(len(resp.to_wire())),
        ]

        try:
            self.file.write(" ".join(record) + "\n")
            self.file.flush()
        except (OSError, ValueError) as exc:
            log.error("Access log write failed: %s", str(exc).strip())

    def close(self) -> None:
        """Close the log file; later queries are no longer logged."""
        if self.file is not None:
            self.file.close()
            self.file = None