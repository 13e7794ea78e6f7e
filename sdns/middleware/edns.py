"""Middleware that normalises EDNS0 on requests and responses."""

from __future__ import annotations

import contextlib
from typing import Any

import dns.edns
import dns.flags
import dns.message
import dns.rcode

from sdns.dnsutil import (
    DEFAULT_MSG_SIZE,
    MIN_MSG_SIZE,
    clear_dnssec,
    clear_opt,
    generate_server_cookie,
    not_supported,
    set_edns0,
)
from sdns.middleware.chain import AlreadyWrittenError, Chain, Handler, WriterWrapper

MAX_MSG_SIZE = 65535

_STREAM_PROTOS = {"tcp", "doq", "doh"}


class EDNS(Handler):
    """Rewrites OPT records, cookies and NSID and truncates oversize UDP replies."""

    name = "edns"

    def __init__(self, cookie_secret: str = "", nsid: str = "") -> None:
        self.cookie_secret = cookie_secret
        self.nsid = nsid

    def serve_dns(self, ctx: dict, ch: Chain) -> None:
        w, req = ch.writer, ch.request

        if req.opcode() > 0:
            with contextlib.suppress(AlreadyWrittenError):
                not_supported(w, req)
            ch.cancel()
            return

        noedns = req.edns < 0
        info = set_edns0(req)
        if info.version != 0:
            req.use_edns(0, req.ednsflags, req.payload, options=req.options)
            ch.cancel_with_rcode(dns.rcode.BADVERS, info.do)
            return

        size = info.size
        if w.proto in _STREAM_PROTOS:
            size = MAX_MSG_SIZE
        if noedns:
            size = MIN_MSG_SIZE

        ch.writer = EDNSWriter(
            w,
            self,
            size=size,
            do=info.do,
            cookie=info.cookie,
            nsid=info.nsid,
            noedns=noedns,
            noad=not (req.flags & dns.flags.AD) and not info.do,
        )
        try:
            ch.next(ctx)
        finally:
            ch.writer = w


class EDNSWriter(WriterWrapper):
    """Writer that applies the request's EDNS settings to the reply."""

    def __init__(
        self,
        inner: Any,
        edns: EDNS,
        *,
        size: int,
        do: bool,
        cookie: str,
        nsid: bool,
        noedns: bool,
        noad: bool,
    ) -> None:
        super().__init__(inner)
        self.edns = edns
        self.size = size
        self.do = do
        self.cookie = cookie
        self.nsid = nsid
        self.noedns = noedns
        self.noad = noad

    def _options(self) -> list[dns.edns.Option]:
        options: list[dns.edns.Option] = []
        if self.cookie:
            remote = "" if self.remote_ip is None else str(self.remote_ip)
            server = generate_server_cookie(self.edns.cookie_secret, remote, self.cookie)
            options.append(dns.edns.GenericOption(dns.edns.OptionType.COOKIE, bytes.fromhex(server)))
        if self.edns.nsid and self.nsid:
            options.append(
                dns.edns.GenericOption(dns.edns.OptionType.NSID, self.edns.nsid.encode())
            )
        return options

    def write_msg(self, msg: dns.message.Message) -> None:
        if not self.do:
            msg = clear_dnssec(msg)
        msg = clear_opt(msg)

        if not self.noedns:
            msg.use_edns(
                0,
                dns.flags.DO if self.do else 0,
                DEFAULT_MSG_SIZE,
                options=self._options(),
            )

        if self.noad:
            msg.flags &= ~dns.flags.AD

        if self.proto == "udp" and len(msg.to_wire()) > self.size:
            msg.flags |= dns.flags.TC
            msg.flags &= ~dns.flags.AD
            msg.answer = []
            msg.authority = []

        self.inner.write_msg(msg)