"""Middleware that drops queries from clients outside the allowed networks."""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, Union

from sdns.middleware.chain import Chain, Handler

log = logging.getLogger(__name__)

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

DEFAULT_NETWORKS = ("0.0.0.0/0", "::0/0")


class AccessList(Handler):
    """Allows only clients whose address lies in one of the configured CIDRs."""

    name = "accesslist"

    def __init__(self, networks: Iterable[str] = ()) -> None:
        cidrs = list(networks) or list(DEFAULT_NETWORKS)
        self.networks: list[Network] = []
        for cidr in cidrs:
            try:
                if "/" not in cidr:
                    raise ValueError(f"invalid CIDR address: {cidr}")
                self.networks.append(ipaddress.ip_network(cidr, strict=False))
            except ValueError as exc:
                log.error("Access list parse cidr failed: %s", exc)

    def allowed(self, ip) -> bool:
        """Return whether ``ip`` (an address or its text) is in an allowed network."""
        if ip is None:
            return False
        if isinstance(ip, str):
            try:
                ip = ipaddress.ip_address(ip)
            except ValueError:
                return False
        return any(ip.version == net.version and ip in net for net in self.networks)

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        if ch.writer.internal:
            ch.next(ctx)
            return

        if not self.allowed(ch.writer.remote_ip):
            ch.cancel()
            return

        ch.next(ctx)