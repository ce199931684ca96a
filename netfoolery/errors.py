from __future__ import annotations


class NetfooleryError(Exception):
    """Base class for errors raised by the benchmarking harness."""


class ConfigError(NetfooleryError, ValueError):
    """Raised when a run configuration is invalid, before anything is opened."""


class SetupError(NetfooleryError):
    """Raised when a listener cannot be bound or a target cannot be dialed."""


class PayloadMismatchError(NetfooleryError):
    """Raised when a received unit of work does not carry the expected marker."""

    def __init__(self, payload: bytes) -> None:
        super().__init__(f"msg contained unexpected data {payload!r}")
        self.payload = payload


class MalformedRequestError(NetfooleryError, ValueError):
    """Raised when a received HTTP request cannot be read as a unit of work."""


class ListenerClosedError(NetfooleryError):
    """Raised by a blocked accept when its listener has been closed."""


class ShutdownTimeoutError(NetfooleryError, TimeoutError):
    """Raised when a graceful close did not finish within its grace period."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"graceful shutdown did not finish within {timeout:g}s")
        self.timeout = timeout


__all__ = [
    "ConfigError",
    "ListenerClosedError",
    "MalformedRequestError",
    "NetfooleryError",
    "PayloadMismatchError",
    "SetupError",
    "ShutdownTimeoutError",
]
