from __future__ import annotations

import socket
import threading

from ..config import SharedConfig
from ..errors import SetupError
from .base import MARKER, Incoming, SocketListener, Submitter, Transport, format_address

MAX_DATAGRAM_BYTES = 65535


class Datagram(Incoming):
    def __init__(self, payload: bytes) -> None:
        self.payload = payload

    def read_payload(self) -> bytes:
        return self.payload


class UdpListener(SocketListener):
    """Receives datagrams and handles each one inline, in arrival order."""

    concurrent = False

    def _accept_one(self) -> Incoming:
        payload, _ = self._sock.recvfrom(MAX_DATAGRAM_BYTES)
        return Datagram(payload)


class UdpSubmitter(Submitter):
    """Sends the marker over one connected datagram socket shared by all workers."""

    def __init__(self, sock: socket.socket, target: str) -> None:
        self._sock = sock
        self._closed = threading.Event()
        self.target = target

    def submit(self, payload: bytes = MARKER) -> None:
        self._sock.send(payload)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._sock.close()


class UdpTransport(Transport):
    name = "udp"
    label = "UDP"
    summary = "Test/Benchmark UDP connection rates"
    serve_command = "listen"
    serve_summary = "Start listening UDP"
    submit_summary = "Start submitting UDP"
    defaults = SharedConfig(host="127.0.0.1", port=58087)
    supports_keep_alives = False

    def dial(self, config: SharedConfig) -> UdpSubmitter:
        try:
            family, type_, proto, _, address = socket.getaddrinfo(
                config.host, config.port, type=socket.SOCK_DGRAM
            )[0]
            sock = socket.socket(family, type_, proto)
        except OSError as exc:
            raise SetupError(f"failed to dial {config.address()}: {exc}") from exc
        try:
            sock.settimeout(config.timeout)
            sock.connect(address)
        except OSError as exc:
            sock.close()
            raise SetupError(f"failed to dial {config.address()}: {exc}") from exc
        return UdpSubmitter(sock, config.address())

    def listen(self, config: SharedConfig) -> UdpListener:
        family = socket.AF_INET6 if ":" in config.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.bind(config.endpoint())
        except OSError as exc:
            sock.close()
            raise SetupError(
                f"failed to listen on {format_address(config.host, config.port)}: {exc}"
            ) from exc
        return UdpListener(sock)


__all__ = ["Datagram", "UdpListener", "UdpSubmitter", "UdpTransport"]
