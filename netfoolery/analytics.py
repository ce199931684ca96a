from __future__ import annotations

import contextlib
import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class TimeCount:
    timestamp: int
    count: int = 0


class RateCounter:
    """Running total plus a two-bucket, one-second sliding window of counts.

    The oldest bucket is the last fully elapsed second, so it is the value
    reported as the rate; the newest one is still accumulating.
    """

    def __init__(
        self,
        concurrency_safe: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._total = 0
        self._window = [TimeCount(0), TimeCount(0)]
        self._clock = clock
        self.concurrency_safe = concurrency_safe
        self._lock: contextlib.AbstractContextManager = (
            threading.Lock() if concurrency_safe else contextlib.nullcontext()
        )

    @property
    def total_count(self) -> int:
        with self._lock:
            return self._total

    @property
    def count_per_second(self) -> int:
        """Last known complete per-second count."""
        with self._lock:
            return self._window[0].count

    def window(self) -> list[tuple[int, int]]:
        with self._lock:
            return [(bucket.timestamp, bucket.count) for bucket in self._window]

    def incr_for_time(self, timestamp: int) -> tuple[int, int]:
        """Count one completion at ``timestamp`` and return ``(total, rate)``."""
        with self._lock:
            self._total += 1
            if self._window[-1].timestamp != timestamp:
                self._window = [self._window[-1], TimeCount(timestamp)]
            self._window[-1].count += 1
            return self._total, self._window[0].count

    def incr(self) -> tuple[int, int]:
        return self.incr_for_time(int(self._clock()))


__all__ = ["RateCounter", "TimeCount"]
