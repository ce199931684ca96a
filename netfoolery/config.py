from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field

from .errors import ConfigError

UNLIMITED_WORKERS = -1
DEFAULT_WORKERS = 3
DEFAULT_TIMEOUT = 10.0
DEFAULT_STATUS_INTERVAL = 1.0

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_SECONDS = re.compile(r"[+-]?(\d+(?:\.\d*)?|\.\d+)")


@dataclass(frozen=True)
class SharedConfig:
    """Endpoint and connection settings shared by both sides of a benchmark."""

    host: str
    port: int
    timeout: float = DEFAULT_TIMEOUT
    keep_alives: bool = True

    def endpoint(self) -> tuple[str, int]:
        return (self.host, self.port)

    def address(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    def url(self) -> str:
        return f"http://{self.address()}"


@dataclass(frozen=True)
class SubmitConfig:
    workers: int = DEFAULT_WORKERS
    fail_fast: bool = True

    @property
    def unlimited(self) -> bool:
        return self.workers == UNLIMITED_WORKERS


@dataclass(frozen=True)
class RunConfig:
    """Complete, immutable configuration for a single serve or submit run."""

    shared: SharedConfig
    submit: SubmitConfig = field(default_factory=SubmitConfig)
    duration: float | None = None
    status_interval: float = DEFAULT_STATUS_INTERVAL

    def replace(self, **changes) -> RunConfig:
        return dataclasses.replace(self, **changes)


def validate_config(config: RunConfig) -> RunConfig:
    workers = config.submit.workers
    if workers == 0 or workers < UNLIMITED_WORKERS:
        raise ConfigError(f"invalid worker count '{workers}'")
    if not 0 <= config.shared.port <= 65535:
        raise ConfigError(f"invalid port '{config.shared.port}'")
    if not config.shared.host:
        raise ConfigError("host must not be empty")
    if config.shared.timeout <= 0:
        raise ConfigError(f"invalid timeout '{config.shared.timeout:g}s'")
    if config.duration is not None and config.duration <= 0:
        raise ConfigError(f"invalid duration '{config.duration:g}s'")
    if config.status_interval <= 0:
        raise ConfigError(f"invalid status interval '{config.status_interval:g}s'")
    return config


def parse_duration(text: str) -> float:
    """Parse ``"10"``, ``"10s"``, ``"500ms"`` or ``"1m30s"`` into seconds."""
    value = text.strip()
    if not value:
        raise ValueError("empty duration")
    if _SECONDS.fullmatch(value):
        return float(value)

    sign = 1.0
    if value[0] in "+-":
        sign = -1.0 if value[0] == "-" else 1.0
        value = value[1:]

    total = 0.0
    position = 0
    while position < len(value):
        match = _DURATION_PART.match(value, position)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    return sign * total


__all__ = [
    "DEFAULT_STATUS_INTERVAL",
    "DEFAULT_TIMEOUT",
    "DEFAULT_WORKERS",
    "RunConfig",
    "SharedConfig",
    "SubmitConfig",
    "UNLIMITED_WORKERS",
    "parse_duration",
    "validate_config",
]
