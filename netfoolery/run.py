from __future__ import annotations

import contextlib
import logging
import signal
import threading
from typing import Callable, Iterable, Iterator

LOGGER = logging.getLogger("netfoolery.run")


class RunSignal:
    """One-shot cancellation signal shared by every component of a run.

    Cancelling is irreversible and idempotent. A child signal is cancelled
    whenever its parent is, but can also be cancelled on its own without
    affecting the parent.
    """

    def __init__(self, parent: RunSignal | None = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._reason: str | None = None
        if parent is not None:
            parent.add_callback(lambda: self.cancel(parent.reason))

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> bool:
        """Cancel the run. Returns True only for the call that cancelled it."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            try:
                callback()
            except Exception:  # noqa: BLE001
                LOGGER.exception("cancellation callback failed")
        return True

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once on cancellation, immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def child(self) -> RunSignal:
        return RunSignal(parent=self)

    def cancel_after(self, seconds: float, reason: str = "duration elapsed") -> threading.Timer:
        timer = threading.Timer(seconds, self.cancel, args=(reason,))
        timer.daemon = True
        timer.start()
        self.add_callback(timer.cancel)
        return timer


@contextlib.contextmanager
def interrupt_on_signals(
    run_signal: RunSignal,
    signals: Iterable[signal.Signals] = (signal.SIGINT, signal.SIGTERM),
) -> Iterator[RunSignal]:
    """Cancel ``run_signal`` when the process receives one of ``signals``."""

    def handler(signum: int, frame: object) -> None:
        # Handlers run on the main thread between bytecodes; cancel off-thread
        # so no lock held by the interrupted frame is re-entered.
        name = signal.Signals(signum).name
        threading.Thread(
            target=run_signal.cancel,
            args=(f"received {name}",),
            name="netfoolery-interrupt",
            daemon=True,
        ).start()

    previous = {}
    for signum in signals:
        previous[signum] = signal.signal(signum, handler)
    try:
        yield run_signal
    finally:
        for signum, old in previous.items():
            signal.signal(signum, old)


__all__ = ["RunSignal", "interrupt_on_signals"]
