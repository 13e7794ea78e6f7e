"""HTTP management API: blocklist editing, cache purging and metrics."""

from __future__ import annotations

import base64
import json
import logging
import threading
from dataclasses import dataclass, field
from http import HTTPStatus
from socketserver import ThreadingMixIn
from typing import Any, Callable
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

import dns.exception
import dns.message
import dns.rdataclass
import dns.rdatatype

from sdns.dnsutil import exchange_internal
from sdns.middleware.metrics import Metrics, QueryCounter
from sdns.tree import Tree

log = logging.getLogger(__name__)

EXTRA_HEADERS = {
    "Server": "sdns",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,POST",
    "Cache-Control": "no-cache, no-store, no-transform, must-revalidate, private, max-age=0",
    "Pragma": "no-cache",
}

METHODS = ("GET", "POST", "DELETE", "PUT", "PATCH", "HEAD", "CONNECT", "TRACE", "OPTIONS")
MAX_PATH_LENGTH = 2048

_TEXT = "text/plain; charset=utf-8"
_METRICS_TYPE = "text/plain; version=0.0.4; charset=utf-8"


@dataclass
class Context:
    """One HTTP request being handled and the response built for it."""

    environ: dict
    params: list[tuple[str, str]] = field(default_factory=list)
    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def method(self) -> str:
        return self.environ.get("REQUEST_METHOD", "GET")

    @property
    def path(self) -> str:
        return self.environ.get("PATH_INFO") or "/"

    def header(self, name: str) -> str:
        """Return a request header, or "" when it is absent."""
        return self.environ.get("HTTP_" + name.upper().replace("-", "_"), "")

    def send(self, code: int, body: bytes = b"", content_type: str | None = None) -> None:
        """Set the response status, body and content type."""
        self.status = code
        self.body = body
        if content_type:
            self.headers["Content-Type"] = content_type

    def json(self, code: int, data: Any) -> None:
        """Reply with ``data`` encoded as JSON, or 500 if it cannot be encoded."""
        try:
            payload = json.dumps(data, separators=(",", ":")).encode()
        except (TypeError, ValueError):
            self.send(HTTPStatus.INTERNAL_SERVER_ERROR)
            return
        self.send(code, payload, "application/json")

    def param(self, key: str) -> str:
        """Return the route parameter ``key``, or "" when it is absent."""
        return next((value for name, value in self.params if name == key), "")


RouteHandler = Callable[[Context], None]


def _status_line(code: int) -> str:
    try:
        return f"{code} {HTTPStatus(code).phrase}"
    except ValueError:
        return f"{code} Unknown"


def _route(tree: Tree, path: str) -> tuple[RouteHandler | None, list[tuple[str, str]]]:
    try:
        found = tree.lookup(path)
    except LookupError:
        return None, []
    if found is None:
        return None, []
    if isinstance(found, tuple) and len(found) == 2:
        handler, params = found
    else:
        handler, params = found, []
    if isinstance(params, dict):
        params = params.items()
    return handler, list(params or [])


@dataclass
class Group:
    """Routes registered under a common path prefix."""

    parent: Router
    path: str

    def handle(self, method: str, path: str, handler: RouteHandler) -> None:
        self.parent.handle(method, self.path + path, handler)

    def get(self, path: str, handler: RouteHandler) -> None:
        self.parent.get(self.path + path, handler)

    def post(self, path: str, handler: RouteHandler) -> None:
        self.parent.post(self.path + path, handler)


class Router:
    """A WSGI application dispatching requests through per-method route trees."""

    def __init__(self) -> None:
        self._trees = {method: Tree() for method in METHODS}

    def handle(self, method: str, path: str, handler: RouteHandler) -> None:
        """Register ``handler`` for ``method`` and ``path``."""
        try:
            tree = self._trees[method]
        except KeyError:
            raise ValueError(f"unsupported method: {method}") from None
        tree.add(path, handler)

    def get(self, path: str, handler: RouteHandler) -> None:
        self.handle("GET", path, handler)

    def post(self, path: str, handler: RouteHandler) -> None:
        self.handle("POST", path, handler)

    def group(self, prefix: str) -> Group:
        return Group(self, prefix)

    def _respond(self, environ: dict) -> tuple[int, dict[str, str], bytes]:
        headers = dict(EXTRA_HEADERS)
        ctx = Context(environ)

        if len(ctx.path) > MAX_PATH_LENGTH:
            headers["Content-Type"] = _TEXT
            return HTTPStatus.BAD_REQUEST, headers, b"Bad Request\n"

        tree = self._trees.get(ctx.method)
        handler, params = _route(tree, ctx.path) if tree is not None else (None, [])
        if handler is None:
            headers["Content-Type"] = _TEXT
            return HTTPStatus.NOT_FOUND, headers, b"404 page not found\n"

        ctx.params = params
        try:
            handler(ctx)
        except Exception:
            log.exception("Recovered in API")
            headers["Content-Type"] = _TEXT
            return HTTPStatus.INTERNAL_SERVER_ERROR, headers, b"Internal Server Error\n"

        headers.update(ctx.headers)
        return ctx.status, headers, ctx.body

    def __call__(self, environ: dict, start_response: Callable) -> list[bytes]:
        status, headers, body = self._respond(environ)
        headers["Content-Length"] = str(len(body))
        start_response(_status_line(int(status)), list(headers.items()))
        return [body]


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:
        log.debug("API request: " + format, *args)


class API:
    """The management API server."""

    def __init__(
        self,
        addr: str = "",
        bearer_token: str = "",
        blocklist=None,
        registry=None,
        counter: QueryCounter | None = None,
    ) -> None:
        if blocklist is None and registry is not None:
            blocklist = registry.get("blocklist")
        if counter is None and registry is not None:
            metrics = registry.get("metrics")
            if isinstance(metrics, Metrics):
                counter = metrics.counter

        self.addr = addr
        self.bearer_token = bearer_token
        self.blocklist = blocklist
        self.registry = registry
        self.counter = counter if counter is not None else QueryCounter()
        self.router = Router()
        self.server: WSGIServer | None = None
        self._thread: threading.Thread | None = None

    def _check_token(self, ctx: Context) -> bool:
        if not self.bearer_token:
            return True
        parts = ctx.header("Authorization").split(" ")
        if len(parts) == 2 and parts[0] == "Bearer" and parts[1] == self.bearer_token:
            return True
        ctx.json(HTTPStatus.UNAUTHORIZED, {"error": "unauthorized"})
        return False

    def _exists_block(self, ctx: Context) -> None:
        if self._check_token(ctx):
            ctx.json(HTTPStatus.OK, {"exists": self.blocklist.exists(ctx.param("key"))})

    def _get_block(self, ctx: Context) -> None:
        if not self._check_token(ctx):
            return
        key = ctx.param("key")
        try:
            found = self.blocklist.get(key)
        except KeyError:
            ctx.json(HTTPStatus.NOT_FOUND, {"error": f"{key} not found"})
            return
        ctx.json(HTTPStatus.OK, {"success": found})

    def _remove_block(self, ctx: Context) -> None:
        if self._check_token(ctx):
            ctx.json(HTTPStatus.OK, {"success": self.blocklist.remove(ctx.param("key"))})

    def _set_block(self, ctx: Context) -> None:
        if self._check_token(ctx):
            ctx.json(HTTPStatus.OK, {"success": self.blocklist.set(ctx.param("key"))})

    def _metrics(self, ctx: Context) -> None:
        if self._check_token(ctx):
            ctx.send(HTTPStatus.OK, self.counter.render().encode(), _METRICS_TYPE)

    def _purge(self, ctx: Context) -> None:
        if not self._check_token(ctx):
            return

        qtype = ctx.param("qtype").upper()
        qname = ctx.param("qname")
        if not qname.endswith("."):
            qname += "."
        encoded = base64.b64encode(f"{qtype}:{qname}".encode()).decode()

        if self.registry is not None:
            try:
                req = dns.message.make_query(
                    encoded + ".", dns.rdatatype.NULL, dns.rdataclass.CH
                )
                exchange_internal(req, self.registry)
            except (LookupError, dns.exception.DNSException) as exc:
                log.debug("Purge query failed: %s", exc)

        ctx.json(HTTPStatus.OK, {"success": True})

    def register_routes(self) -> None:
        """Install the API routes on the router."""
        if self.blocklist is not None:
            block = self.router.group("/api/v1/block")
            block.get("/exists/:key", self._exists_block)
            block.get("/get/:key", self._get_block)
            block.get("/remove/:key", self._remove_block)
            block.get("/set/:key", self._set_block)

        self.router.get("/api/v1/purge/:qname/:qtype", self._purge)
        self.router.get("/metrics", self._metrics)

    def run(self) -> threading.Thread | None:
        """Serve the API in a background thread; does nothing without an address."""
        if not self.addr:
            return None

        self.register_routes()

        host, _, port = self.addr.rpartition(":")
        self.server = make_server(
            host.strip("[]"),
            int(port),
            self.router,
            server_class=_ThreadingWSGIServer,
            handler_class=_QuietHandler,
        )
        self._thread = threading.Thread(
            target=self.server.serve_forever, name="api", daemon=True
        )
        self._thread.start()

        log.info("API server listening... addr=%s", self.addr)
        if self.bearer_token:
            log.info("API authorization bearer token required")
        return self._thread

    def stop(self) -> None:
        """Shut the server down and wait for it to finish."""
        if self.server is None:
            return
        log.info("API server stopping... addr=%s", self.addr)
        self.server.shutdown()
        self.server.server_close()
        if self._thread is not None:
            self._thread.join()
        self.server = None
        self._thread = None