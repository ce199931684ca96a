from __future__ import annotations

import enum
import logging
import threading
from typing import Callable

from .errors import ListenerClosedError, ShutdownTimeoutError
from .run import RunSignal
from .status import Console

LOGGER = logging.getLogger("netfoolery.shutdown")

DEFAULT_SHUTDOWN_TIMEOUT = 10.0


class ErrorSlot:
    """Single-assignment slot: the first error written wins."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._error: BaseException | None = None

    @property
    def is_set(self) -> bool:
        with self._lock:
            return self._error is not None

    def set(self, error: BaseException) -> bool:
        with self._lock:
            if self._error is not None:
                return False
            self._error = error
            return True

    def get(self) -> BaseException | None:
        with self._lock:
            return self._error


class ShutdownState(enum.Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    STOPPED = "stopped"
    FAILED = "failed"


class ShutdownCoordinator:
    """Closes a run's listener once cancelled and reconciles its final error.

    The error that caused the run to stop always takes priority over an error
    raised while closing, and a listener closed because shutdown was requested
    is reported as a clean stop.
    """

    def __init__(
        self,
        signal: RunSignal,
        close: Callable[[], None],
        timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        console: Console | None = None,
        force: Callable[[], None] | None = None,
    ) -> None:
        self._signal = signal
        self._close = close
        self._force = force
        self._timeout = timeout
        self._console = console
        self._errors = ErrorSlot()
        self._close_error: BaseException | None = None
        self._state = ShutdownState.RUNNING
        self._state_lock = threading.Lock()
        self._watcher: threading.Thread | None = None

    @property
    def state(self) -> ShutdownState:
        with self._state_lock:
            return self._state

    def start(self) -> None:
        if self._watcher is not None:
            return
        watcher = threading.Thread(target=self._watch, name="netfoolery-shutdown", daemon=True)
        watcher.start()
        self._watcher = watcher

    def record(self, error: BaseException) -> bool:
        """Keep ``error`` as the run's terminal error unless one is already kept."""
        if self._errors.set(error):
            LOGGER.warning("recorded run error: %s", error)
            return True
        LOGGER.debug("discarding subsequent error: %s", error)
        return False

    def fail(self, error: BaseException) -> None:
        self.record(error)
        with self._state_lock:
            self._state = ShutdownState.FAILED
        self._signal.cancel(f"failed: {error}")

    def loop_exited(self, error: BaseException | None = None) -> None:
        """Reconcile how the serve loop ended and make sure shutdown proceeds."""
        if error is None:
            self._signal.cancel("serve loop finished")
            return
        if self._signal.cancelled and isinstance(error, ListenerClosedError):
            LOGGER.debug("listener closed after shutdown was requested")
            return
        self.fail(error)

    def wait(self) -> BaseException | None:
        if self._watcher is not None:
            self._watcher.join()
        return self.final_error()

    def final_error(self) -> BaseException | None:
        return self._errors.get() or self._close_error

    def _watch(self) -> None:
        self._signal.wait()
        self._transition(ShutdownState.SHUTTING_DOWN)
        LOGGER.info("shutting down (%s)", self._signal.reason or "cancelled")
        self._say(f"\nShutting down (timeout {self._timeout:g}s)...")
        try:
            self._close_error = self._close_with_timeout()
        finally:
            self._transition(
                ShutdownState.FAILED if self.final_error() is not None else ShutdownState.STOPPED
            )
            self._say("\nDone.")

    def _close_with_timeout(self) -> BaseException | None:
        outcome = ErrorSlot()

        def closer() -> None:
            try:
                self._close()
            except Exception as exc:  # noqa: BLE001
                outcome.set(exc)

        thread = threading.Thread(target=closer, name="netfoolery-close", daemon=True)
        thread.start()
        thread.join(self._timeout)
        if not thread.is_alive():
            return outcome.get()

        LOGGER.error("graceful close exceeded %.1fs; forcing", self._timeout)
        error = ShutdownTimeoutError(self._timeout)
        # Failures caused by the forced close must not mask the timeout.
        self._errors.set(error)
        if self._force is not None:
            try:
                self._force()
            except Exception:  # noqa: BLE001
                LOGGER.exception("forced close failed")
        return error

    def _transition(self, state: ShutdownState) -> None:
        with self._state_lock:
            if self._state is ShutdownState.FAILED and state is not ShutdownState.FAILED:
                return
            LOGGER.debug("shutdown state %s -> %s", self._state.value, state.value)
            self._state = state

    def _say(self, text: str) -> None:
        if self._console is not None:
            self._console.line(text)


__all__ = [
    "DEFAULT_SHUTDOWN_TIMEOUT",
    "ErrorSlot",
    "ShutdownCoordinator",
    "ShutdownState",
]
