"""Listener lifecycles and submitters for each protocol."""

from __future__ import annotations

import socket
import time

import httpx
import pytest

from netfoolery.config import SharedConfig
from netfoolery.errors import (
    ListenerClosedError,
    MalformedRequestError,
    PayloadMismatchError,
    SetupError,
)
from netfoolery.transports import MARKER, TRANSPORTS, check_payload, get_transport
from netfoolery.transports.http1 import content_length
from netfoolery.transports.tcp import TcpTransport
from netfoolery.transports.udp import UdpTransport


def _local(port: int = 0, **changes) -> SharedConfig:
    return SharedConfig(host="127.0.0.1", port=port, timeout=changes.pop("timeout", 2.0), **changes)


def _port_of(address: str) -> int:
    return int(address.rsplit(":", 1)[1])


def test_registry_lists_every_protocol() -> None:
    assert sorted(TRANSPORTS) == ["http1", "tcp", "udp"]
    assert get_transport("udp").serve_command == "listen"
    assert get_transport("tcp").defaults.port == 58086
    assert get_transport("http1").defaults.address() == "localhost:58085"
    with pytest.raises(KeyError):
        get_transport("quic")


def test_check_payload_accepts_only_the_marker() -> None:
    check_payload(b"Ping!\n")
    with pytest.raises(PayloadMismatchError) as info:
        check_payload(b"Pong!\n")
    assert info.value.payload == b"Pong!\n"


@pytest.mark.parametrize("name", ["tcp", "udp", "http1"])
def test_listeners_report_their_bound_port(name: str) -> None:
    listener = get_transport(name).listen(_local())
    try:
        assert listener.address.startswith("127.0.0.1:")
        assert _port_of(listener.address) > 0
    finally:
        listener.close()


@pytest.mark.parametrize("transport", [TcpTransport(), UdpTransport()])
def test_close_wakes_a_blocked_accept(transport, background) -> None:
    listener = transport.listen(_local())
    blocked = background(listener.accept)
    time.sleep(0.05)
    assert blocked.alive

    listener.close()

    with pytest.raises(ListenerClosedError):
        blocked.join()
    listener.close()


@pytest.mark.parametrize("transport", [TcpTransport(), UdpTransport()])
def test_accept_after_close_fails_immediately(transport) -> None:
    listener = transport.listen(_local())
    listener.close()

    with pytest.raises(ListenerClosedError):
        listener.accept()


@pytest.mark.parametrize("name", ["tcp", "udp", "http1"])
def test_binding_a_used_port_is_a_setup_error(name: str) -> None:
    transport = get_transport(name)
    first = transport.listen(_local())
    try:
        with pytest.raises(SetupError, match="failed to listen"):
            transport.listen(_local(_port_of(first.address)))
    finally:
        first.close()


def test_tcp_connection_reads_until_the_peer_closes() -> None:
    transport = TcpTransport()
    listener = transport.listen(_local())
    try:
        with transport.dial(_local(_port_of(listener.address))) as submitter:
            submitter.submit()
        incoming = listener.accept()
        try:
            assert incoming.read_payload() == MARKER
        finally:
            incoming.close()
    finally:
        listener.close()


def test_udp_datagrams_arrive_in_order() -> None:
    transport = UdpTransport()
    listener = transport.listen(_local())
    try:
        with transport.dial(_local(_port_of(listener.address))) as submitter:
            submitter.submit(b"one")
            submitter.submit(MARKER)
        assert listener.accept().read_payload() == b"one"
        assert listener.accept().read_payload() == MARKER
    finally:
        listener.close()


def test_http_close_before_serve_does_not_hang(background) -> None:
    listener = get_transport("http1").listen(_local())
    listener.close()

    run = background(lambda: listener.serve(lambda incoming: None, lambda exc: None))
    assert run.join(timeout=2.0) is None


def test_http_mismatched_body_is_rejected(background) -> None:
    transport = get_transport("http1")
    listener = transport.listen(_local())
    errors: list[BaseException] = []

    def handle(incoming) -> None:
        check_payload(incoming.read_payload())

    run = background(lambda: listener.serve(handle, errors.append))
    try:
        with transport.dial(_local(_port_of(listener.address))) as submitter:
            submitter.submit()
            with pytest.raises(httpx.HTTPStatusError) as info:
                submitter.submit(b"not the marker")
        assert info.value.response.status_code == 400
    finally:
        listener.close()
    run.join()

    assert len(errors) == 1
    assert isinstance(errors[0], PayloadMismatchError)


def test_http_close_waits_for_idle_keep_alive_connections(background) -> None:
    transport = get_transport("http1")
    listener = transport.listen(_local())
    handled: list[bytes] = []

    run = background(
        lambda: listener.serve(lambda incoming: handled.append(incoming.read_payload()), lambda exc: None)
    )
    submitter = transport.dial(_local(_port_of(listener.address), keep_alives=True))
    try:
        for _ in range(3):
            submitter.submit()
        closing = background(listener.close)
        closing.join(timeout=5.0)
        run.join()
    finally:
        submitter.close()

    assert handled == [MARKER] * 3


def test_tcp_submit_to_a_closed_port_is_refused(closed_port: int) -> None:
    with TcpTransport().dial(_local(closed_port)) as submitter:
        with pytest.raises(OSError):
            submitter.submit()


def test_tcp_listener_accepts_with_keep_alives_enabled() -> None:
    transport = TcpTransport()
    listener = transport.listen(_local(keep_alives=True))
    try:
        with socket.create_connection(("127.0.0.1", _port_of(listener.address))) as conn:
            conn.sendall(MARKER)
        incoming = listener.accept()
        try:
            assert incoming.read_payload() == MARKER
        finally:
            incoming.close()
    finally:
        listener.close()


def test_tcp_close_waits_for_open_connections(background) -> None:
    listener = TcpTransport().listen(_local())
    with socket.create_connection(("127.0.0.1", _port_of(listener.address))) as conn:
        conn.sendall(MARKER)
    incoming = listener.accept()
    assert listener.open_connections == 1

    closing = background(listener.close)
    time.sleep(0.05)
    assert closing.alive

    assert incoming.read_payload() == MARKER
    incoming.close()
    closing.join()
    assert listener.open_connections == 0


def test_tcp_force_close_unblocks_a_slow_reader(background) -> None:
    listener = TcpTransport().listen(_local())
    conn = socket.create_connection(("127.0.0.1", _port_of(listener.address)))
    try:
        conn.sendall(b"Pi")
        incoming = listener.accept()
        reading = background(incoming.read_payload)
        time.sleep(0.05)
        assert reading.alive

        listener.force_close()

        assert b"Pi".startswith(reading.join())
        incoming.close()
        listener.close()
    finally:
        conn.close()


class HttpServing:
    """An HTTP listener served in the background that checks every body."""

    def __init__(self, background, **changes) -> None:
        self.listener = get_transport("http1").listen(_local(**changes))
        self.port = _port_of(self.listener.address)
        self.handled: list[bytes] = []
        self.errors: list[BaseException] = []
        self.run = background(lambda: self.listener.serve(self._handle, self.errors.append))

    def _handle(self, incoming) -> None:
        payload = incoming.read_payload()
        check_payload(payload)
        self.handled.append(payload)

    def exchange(self, request: bytes) -> bytes:
        """Send a raw request and read until the server closes the connection."""
        with socket.create_connection(("127.0.0.1", self.port), timeout=2.0) as conn:
            conn.sendall(request)
            chunks = []
            while True:
                chunk = conn.recv(4096)
                if not chunk:
                    return b"".join(chunks)
                chunks.append(chunk)

    def stop(self) -> None:
        self.listener.close()
        self.run.join()


def _post(content_length_header: str, body: bytes = b"") -> bytes:
    return (
        b"POST / HTTP/1.1\r\nHost: localhost\r\n"
        + f"Content-Length: {content_length_header}\r\n\r\n".encode()
        + body
    )


def test_http_without_keep_alives_closes_after_each_response(background) -> None:
    server = HttpServing(background, keep_alives=False)
    try:
        response = server.exchange(_post("6", MARKER))
    finally:
        server.stop()

    assert response.startswith(b"HTTP/1.1 200")
    assert b"Connection: close" in response
    assert server.handled == [MARKER]


def test_http_idle_connection_is_closed_after_the_timeout(background) -> None:
    server = HttpServing(background, timeout=0.2)
    try:
        started = time.monotonic()
        assert server.exchange(b"") == b""
        assert time.monotonic() - started < 2.0
    finally:
        server.stop()


@pytest.mark.parametrize("header", ["-1", "six", ""])
def test_http_invalid_content_length_is_rejected(header: str, background) -> None:
    server = HttpServing(background)
    try:
        response = server.exchange(_post(header))
    finally:
        server.stop()

    assert response.startswith(b"HTTP/1.1 400")
    assert server.handled == []
    assert len(server.errors) == 1
    assert isinstance(server.errors[0], MalformedRequestError)


def test_content_length_parsing() -> None:
    assert content_length(None) == 0
    assert content_length("6") == 6
    with pytest.raises(MalformedRequestError, match="invalid Content-Length '-3'"):
        content_length("-3")
