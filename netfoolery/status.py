from __future__ import annotations

import logging
import threading
from typing import TextIO

from .config import DEFAULT_STATUS_INTERVAL
from .run import RunSignal

LOGGER = logging.getLogger("netfoolery.status")


class Console:
    """Serialises the interactive progress line written by concurrent workers."""

    def __init__(self, out: TextIO) -> None:
        self._out = out
        self._lock = threading.Lock()

    def line(self, text: str) -> None:
        self._write(f"{text}\n")

    def progress(self, verb: str, total: int, rate: int) -> None:
        self._write(f"\r{verb}. Total: {total}. Rate: {rate}/second")

    def waiting(self) -> None:
        self._write("\r\x1b[2KWaiting...")

    def _write(self, text: str) -> None:
        with self._lock:
            try:
                self._out.write(text)
                self._out.flush()
            except (OSError, ValueError) as exc:
                LOGGER.debug("dropping console output: %s", exc)


class StatusReporter:
    """Prints a waiting indicator while no unit of work has completed lately."""

    def __init__(
        self,
        console: Console,
        signal: RunSignal,
        interval: float = DEFAULT_STATUS_INTERVAL,
    ) -> None:
        self._console = console
        self._signal = signal.child()
        self._interval = interval
        self._activity = threading.Event()
        self._thread: threading.Thread | None = None
        self.ticks = 0
        self._signal.add_callback(self._activity.set)

    def start(self) -> None:
        thread = threading.Thread(target=self._run, name="netfoolery-status", daemon=True)
        thread.start()
        self._thread = thread

    def reset(self) -> None:
        self._activity.set()

    def stop(self) -> None:
        self._signal.cancel("reporter stopped")
        if self._thread is not None:
            self._thread.join(timeout=self._interval + 1.0)

    def _run(self) -> None:
        while True:
            active = self._activity.wait(self._interval)
            if self._signal.cancelled:
                return
            if active:
                self._activity.clear()
                continue
            self.ticks += 1
            self._console.waiting()


__all__ = ["Console", "DEFAULT_STATUS_INTERVAL", "StatusReporter"]
