"""Protocol adapters the harness drives: HTTP/1.x, TCP and UDP."""

from __future__ import annotations

from .base import MARKER, Incoming, Listener, Submitter, Transport, check_payload
from .http1 import Http1Transport
from .tcp import TcpTransport
from .udp import UdpTransport

TRANSPORTS: dict[str, Transport] = {
    transport.name: transport
    for transport in (Http1Transport(), TcpTransport(), UdpTransport())
}


def get_transport(name: str) -> Transport:
    try:
        return TRANSPORTS[name]
    except KeyError:
        raise KeyError(f"unknown transport {name!r}") from None


__all__ = [
    "Incoming",
    "Listener",
    "MARKER",
    "Submitter",
    "TRANSPORTS",
    "Transport",
    "check_payload",
    "get_transport",
]
