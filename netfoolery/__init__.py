"""
Connection-rate benchmarking harness.

Drives or receives a continuous stream of short-lived HTTP/1.x requests, TCP
connections or UDP datagrams and reports how many succeeded, in total and per
second, until the run is cancelled.
"""

__version__ = "0.1.0"

from .analytics import RateCounter
from .config import RunConfig, SharedConfig, SubmitConfig
from .run import RunSignal

__all__ = [
    "RateCounter",
    "RunConfig",
    "RunSignal",
    "SharedConfig",
    "SubmitConfig",
    "__version__",
]
