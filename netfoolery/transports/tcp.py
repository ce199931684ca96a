from __future__ import annotations

import contextlib
import logging
import socket
import threading
from typing import Callable

from ..config import SharedConfig
from ..errors import PayloadMismatchError, SetupError
from .base import MARKER, Incoming, SocketListener, Submitter, Transport, format_address

LOGGER = logging.getLogger("netfoolery.transports.tcp")

MAX_PAYLOAD_BYTES = 64 * 1024
LISTEN_BACKLOG = 4096


def enable_keep_alives(sock: socket.socket, idle_seconds: float) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
    idle = max(int(idle_seconds), 1)
    if hasattr(socket, "TCP_KEEPIDLE"):
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, idle)
    if hasattr(socket, "TCP_KEEPINTVL"):
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, idle)


class TcpConnection(Incoming):
    """An accepted connection, read until the peer half-closes."""

    def __init__(
        self,
        sock: socket.socket,
        on_close: Callable[[socket.socket], object] | None = None,
    ) -> None:
        self._sock = sock
        self._on_close = on_close

    def read_payload(self) -> bytes:
        chunks: list[bytes] = []
        received = 0
        while True:
            chunk = self._sock.recv(4096)
            if not chunk:
                return b"".join(chunks)
            chunks.append(chunk)
            received += len(chunk)
            if received > MAX_PAYLOAD_BYTES:
                raise PayloadMismatchError(b"".join(chunks)[:64])

    def close(self) -> None:
        try:
            self._sock.close()
        finally:
            if self._on_close is not None:
                self._on_close(self._sock)


class TcpListener(SocketListener):
    """Closing waits for open connections; forcing shuts them down."""

    concurrent = True

    def __init__(self, sock: socket.socket, config: SharedConfig) -> None:
        super().__init__(sock)
        self._config = config
        self._connections: set[socket.socket] = set()
        self._idle = threading.Condition()

    @property
    def open_connections(self) -> int:
        with self._idle:
            return len(self._connections)

    def close(self) -> None:
        super().close()
        with self._idle:
            if self._connections:
                LOGGER.debug("waiting for %d open connection(s)", len(self._connections))
            while self._connections:
                self._idle.wait()

    def force_close(self) -> None:
        with self._idle:
            connections = list(self._connections)
        LOGGER.debug("dropping %d open connection(s)", len(connections))
        for conn in connections:
            with contextlib.suppress(OSError):
                conn.shutdown(socket.SHUT_RDWR)

    def _accept_one(self) -> Incoming:
        conn, _ = self._sock.accept()
        with self._idle:
            self._connections.add(conn)
        try:
            conn.settimeout(self._config.timeout)
            if self._config.keep_alives:
                enable_keep_alives(conn, self._config.timeout)
        except OSError:
            self._release(conn)
            conn.close()
            raise
        return TcpConnection(conn, on_close=self._release)

    def _release(self, conn: socket.socket) -> None:
        with self._idle:
            self._connections.discard(conn)
            self._idle.notify_all()


class TcpSubmitter(Submitter):
    """Opens a fresh connection per unit of work and sends the marker."""

    def __init__(self, config: SharedConfig) -> None:
        self._config = config
        self.target = config.address()

    def submit(self, payload: bytes = MARKER) -> None:
        with contextlib.closing(
            socket.create_connection(self._config.endpoint(), timeout=self._config.timeout)
        ) as conn:
            if self._config.keep_alives:
                enable_keep_alives(conn, self._config.timeout)
            conn.sendall(payload)


class TcpTransport(Transport):
    name = "tcp"
    label = "TCP"
    summary = "Test/Benchmark TCP connection rates"
    serve_command = "serve"
    serve_summary = "Start serving TCP"
    submit_summary = "Start submitting TCP"
    defaults = SharedConfig(host="127.0.0.1", port=58086)
    supports_keep_alives = True

    def dial(self, config: SharedConfig) -> Submitter:
        return TcpSubmitter(config)

    def listen(self, config: SharedConfig) -> TcpListener:
        try:
            sock = socket.create_server(
                config.endpoint(),
                family=_family_for(config.host),
                backlog=LISTEN_BACKLOG,
                reuse_port=False,
            )
        except OSError as exc:
            raise SetupError(
                f"failed to listen on {format_address(config.host, config.port)}: {exc}"
            ) from exc
        return TcpListener(sock, config)


def _family_for(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


__all__ = ["TcpConnection", "TcpListener", "TcpSubmitter", "TcpTransport"]
