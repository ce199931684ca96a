from __future__ import annotations

import queue
import sys
import threading
import time
from typing import TextIO

from .analytics import RateCounter
from .harness import RunResult
from .run import RunSignal
from .status import Console

_DONE = object()


def queue_loop(
    signal: RunSignal,
    out: TextIO | None = None,
    counter: RateCounter | None = None,
) -> RunResult:
    """Measure raw hand-off rates through a one-slot in-process queue."""
    console = Console(out or sys.stdout)
    counter = counter or RateCounter(concurrency_safe=False)
    items: queue.Queue[object] = queue.Queue(maxsize=1)

    def produce() -> None:
        while not signal.cancelled:
            items.put(None)
        items.put(_DONE)

    console.line("Starting to loop...")
    started_at = time.time()
    producer = threading.Thread(target=produce, name="netfoolery-queue-producer", daemon=True)
    producer.start()

    while items.get() is not _DONE:
        total, rate = counter.incr()
        console.progress("Looped", total, rate)

    producer.join()
    console.line("\nStopping...")
    return RunResult(counter.total_count, counter.count_per_second, started_at, time.time())


__all__ = ["queue_loop"]
