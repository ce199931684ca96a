from __future__ import annotations

import contextlib
import logging
import socket
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable

import httpx

from ..config import SharedConfig
from ..errors import MalformedRequestError, PayloadMismatchError, SetupError
from .base import MARKER, Incoming, Listener, Submitter, Transport, format_address

LOGGER = logging.getLogger("netfoolery.transports.http1")

MAX_BODY_BYTES = 64 * 1024


class HttpRequest(Incoming):
    def __init__(self, body: bytes) -> None:
        self.body = body

    def read_payload(self) -> bytes:
        return self.body


class _BenchmarkServer(ThreadingHTTPServer):
    """HTTP/1.1 server whose handler threads are joined on close."""

    daemon_threads = False
    block_on_close = True
    allow_reuse_port = False

    def __init__(self, address: tuple[str, int], listener: HttpListener) -> None:
        self.address_family = socket.AF_INET6 if ":" in address[0] else socket.AF_INET
        self.listener = listener
        self._connections: set[socket.socket] = set()
        self._connections_lock = threading.Lock()
        self.closing = False
        super().__init__(address, _BenchmarkHandler)

    def process_request_thread(self, request, client_address) -> None:
        with self._connections_lock:
            self._connections.add(request)
        try:
            super().process_request_thread(request, client_address)
        finally:
            with self._connections_lock:
                self._connections.discard(request)

    def wake_idle_connections(self) -> None:
        # Idle keep-alive handlers are blocked reading the next request line.
        with self._connections_lock:
            connections = list(self._connections)
        for conn in connections:
            with contextlib.suppress(OSError):
                conn.shutdown(socket.SHUT_RD)

    def drop_connections(self) -> None:
        with self._connections_lock:
            connections = list(self._connections)
        for conn in connections:
            with contextlib.suppress(OSError):
                conn.shutdown(socket.SHUT_RDWR)

    def handle_error(self, request, client_address) -> None:
        LOGGER.exception("unhandled error serving %s", client_address)


class _BenchmarkHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"
    server: _BenchmarkServer

    def setup(self) -> None:
        self.timeout = self.server.listener.config.timeout
        super().setup()

    def do_POST(self) -> None:
        listener = self.server.listener
        try:
            length = content_length(self.headers.get("Content-Length"))
        except MalformedRequestError as exc:
            listener.on_error(exc)
            self.close_connection = True
            self._reply(HTTPStatus.BAD_REQUEST)
            return
        if length > MAX_BODY_BYTES:
            self.close_connection = True
            self._reply(HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
            return
        body = self.rfile.read(length) if length else b""
        if self.server.closing and len(body) < length:
            self.close_connection = True
            return

        try:
            listener.handle(HttpRequest(body))
        except Exception as exc:  # noqa: BLE001
            listener.on_error(exc)
            status = (
                HTTPStatus.BAD_REQUEST
                if isinstance(exc, PayloadMismatchError)
                else HTTPStatus.INTERNAL_SERVER_ERROR
            )
            self._reply(status)
            return
        self._reply(HTTPStatus.OK)

    def _reply(self, status: HTTPStatus) -> None:
        body = f"{status.phrase}\n".encode()
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        keep_alive = self.server.listener.config.keep_alives and not self.server.closing
        if self.close_connection or not keep_alive:
            self.send_header("Connection", "close")
            self.close_connection = True
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args) -> None:
        LOGGER.debug("%s - %s", self.address_string(), format % args)


class HttpListener(Listener):
    """Stdlib threading HTTP server with a graceful, bounded close."""

    concurrent = True

    def __init__(self, config: SharedConfig) -> None:
        self.config = config
        self._lock = threading.Lock()
        self._serving = False
        self._closed = False
        self.handle: Callable[[Incoming], object] = _unset_handler
        self.on_error: Callable[[BaseException], object] = _unset_handler
        self._server = _BenchmarkServer(config.endpoint(), self)
        host, port = self._server.server_address[:2]
        self._address = format_address(host, port)

    @property
    def address(self) -> str:
        return self._address

    def serve(
        self,
        handle: Callable[[Incoming], object],
        on_error: Callable[[BaseException], object],
    ) -> None:
        self.handle = handle
        self.on_error = on_error
        with self._lock:
            if self._closed:
                return
            self._serving = True
        self._server.serve_forever()

    def close(self) -> None:
        """Stop accepting, let in-flight requests finish, then release the socket."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            serving = self._serving
        self._server.closing = True
        if serving:
            self._server.shutdown()
        self._server.wake_idle_connections()
        self._server.server_close()

    def force_close(self) -> None:
        self._server.drop_connections()


def content_length(value: str | None) -> int:
    """Parse a request's Content-Length header, treating a missing one as 0."""
    if value is None:
        return 0
    try:
        length = int(value)
    except ValueError:
        raise MalformedRequestError(f"invalid Content-Length {value!r}") from None
    if length < 0:
        raise MalformedRequestError(f"invalid Content-Length {value!r}")
    return length


def _unset_handler(_: object) -> None:
    raise RuntimeError("listener is not serving")


class HttpSubmitter(Submitter):
    """POSTs the marker through one pooled client shared by all workers."""

    def __init__(self, config: SharedConfig) -> None:
        limits = httpx.Limits(
            max_connections=None,
            max_keepalive_connections=None if config.keep_alives else 0,
        )
        self._client = httpx.Client(timeout=config.timeout, limits=limits)
        self.target = config.url()

    def submit(self, payload: bytes = MARKER) -> None:
        response = self._client.post(self.target, content=payload)
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


class Http1Transport(Transport):
    name = "http1"
    label = "HTTP"
    summary = "Test/Benchmark HTTP/1.x connection rates"
    serve_command = "serve"
    serve_summary = "Start serving HTTP/1.x"
    submit_summary = "Start submitting HTTP/1.x"
    defaults = SharedConfig(host="localhost", port=58085)
    supports_keep_alives = True

    def dial(self, config: SharedConfig) -> HttpSubmitter:
        return HttpSubmitter(config)

    def listen(self, config: SharedConfig) -> HttpListener:
        try:
            return HttpListener(config)
        except OSError as exc:
            raise SetupError(
                f"failed to listen on {format_address(config.host, config.port)}: {exc}"
            ) from exc


__all__ = ["Http1Transport", "HttpListener", "HttpRequest", "HttpSubmitter", "content_length"]
