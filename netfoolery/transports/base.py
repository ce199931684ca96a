from __future__ import annotations

import abc
import contextlib
import logging
import selectors
import socket
import threading
from typing import Callable

from ..config import SharedConfig
from ..errors import ListenerClosedError, PayloadMismatchError
from ..scheduler import accept_loop

LOGGER = logging.getLogger("netfoolery.transports")

MARKER = b"Ping!\n"


def check_payload(payload: bytes) -> None:
    if payload != MARKER:
        raise PayloadMismatchError(payload)


class Incoming(abc.ABC):
    """A single accepted unit of work: a connection, datagram or request."""

    @abc.abstractmethod
    def read_payload(self) -> bytes:
        ...

    def close(self) -> None:
        return None


class Submitter(abc.ABC):
    """Performs one unit of work against a target per ``submit`` call."""

    target: str

    @abc.abstractmethod
    def submit(self, payload: bytes = MARKER) -> None:
        ...

    def close(self) -> None:
        return None

    def __enter__(self) -> Submitter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class Listener(abc.ABC):
    """A bound endpoint that hands every accepted unit to a handler."""

    # Whether accepted units are handled on their own threads.
    concurrent = True

    @property
    @abc.abstractmethod
    def address(self) -> str:
        ...

    @abc.abstractmethod
    def serve(
        self,
        handle: Callable[[Incoming], object],
        on_error: Callable[[BaseException], object],
    ) -> None:
        """Block until the listener is closed or fails."""

    @abc.abstractmethod
    def close(self) -> None:
        ...

    def force_close(self) -> None:
        """Drop whatever a graceful ``close`` left behind after its grace period."""
        return None


class SocketListener(Listener):
    """Listener over a raw socket that can be closed from another thread.

    A blocked ``accept`` waits on both the socket and a wake-up pair, so
    ``close`` returns it promptly with ``ListenerClosedError``.
    """

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._sock.setblocking(False)
        self._waker_r, self._waker_w = socket.socketpair()
        self._selector = selectors.DefaultSelector()
        self._selector.register(sock, selectors.EVENT_READ)
        self._selector.register(self._waker_r, selectors.EVENT_READ)
        self._closed = threading.Event()
        self._close_lock = threading.Lock()
        self._accept_lock = threading.Lock()
        self._released = False
        host, port = sock.getsockname()[:2]
        self._address = format_address(host, port)

    @property
    def address(self) -> str:
        return self._address

    def serve(
        self,
        handle: Callable[[Incoming], object],
        on_error: Callable[[BaseException], object],
    ) -> None:
        accept_loop(
            self.accept,
            handle,
            on_error,
            concurrent=self.concurrent,
            discard=lambda incoming: incoming.close(),
        )

    def accept(self) -> Incoming:
        with self._accept_lock:
            try:
                while True:
                    if not self._closed.is_set():
                        self._selector.select()
                    if self._closed.is_set():
                        raise ListenerClosedError("listener closed")
                    try:
                        return self._accept_one()
                    except BlockingIOError:
                        continue
            except (OSError, ValueError) as exc:
                if self._closed.is_set():
                    raise ListenerClosedError("listener closed") from exc
                raise
            finally:
                if self._closed.is_set():
                    self._release_wakeup()

    def close(self) -> None:
        with self._close_lock:
            if self._closed.is_set():
                return
            self._closed.set()
        with contextlib.suppress(OSError):
            self._waker_w.send(b"\0")
        self._sock.close()
        LOGGER.debug("closed listener at %s", self._address)
        # A thread blocked in accept releases the wake-up pair itself.
        if self._accept_lock.acquire(blocking=False):
            try:
                self._release_wakeup()
            finally:
                self._accept_lock.release()

    def _release_wakeup(self) -> None:
        if self._released:
            return
        self._released = True
        self._selector.close()
        self._waker_r.close()
        self._waker_w.close()

    @abc.abstractmethod
    def _accept_one(self) -> Incoming:
        ...


class Transport(abc.ABC):
    """Protocol adapter: how to submit units of work and how to receive them."""

    name: str
    label: str
    summary: str
    serve_command = "serve"
    serve_summary: str
    submit_summary: str
    defaults: SharedConfig
    supports_keep_alives = False

    @abc.abstractmethod
    def dial(self, config: SharedConfig) -> Submitter:
        ...

    @abc.abstractmethod
    def listen(self, config: SharedConfig) -> Listener:
        """Bind a listener, raising ``SetupError`` when that is impossible."""


def format_address(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


__all__ = [
    "Incoming",
    "Listener",
    "MARKER",
    "SocketListener",
    "Submitter",
    "Transport",
    "check_payload",
    "format_address",
]
