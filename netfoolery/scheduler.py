from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable, TypeVar

from .errors import ConfigError
from .run import RunSignal
from .shutdown import ErrorSlot

LOGGER = logging.getLogger("netfoolery.scheduler")

UNLIMITED = -1

T = TypeVar("T")


class WorkGroup:
    """Runs units of work on their own threads with at most ``limit`` in flight.

    The first failure is kept as the group's error; with ``fail_fast`` it also
    cancels the group's signal so no further work is launched.
    """

    def __init__(
        self,
        signal: RunSignal,
        limit: int = UNLIMITED,
        fail_fast: bool = True,
        on_error: Callable[[BaseException], object] | None = None,
        name: str = "worker",
    ) -> None:
        if limit == 0:
            raise ConfigError(f"invalid worker count '{limit}'")
        self.signal = signal
        self.limit = limit
        self._fail_fast = fail_fast
        self._on_error = on_error
        self._name = name
        self._cond = threading.Condition()
        self._active = 0
        self._peak = 0
        self._launched = 0
        self._errors = ErrorSlot()
        self._ids = itertools.count(1)
        signal.add_callback(self._wake)

    @property
    def active(self) -> int:
        with self._cond:
            return self._active

    @property
    def peak(self) -> int:
        with self._cond:
            return self._peak

    @property
    def launched(self) -> int:
        with self._cond:
            return self._launched

    def go(self, fn: Callable[[], object]) -> bool:
        """Launch ``fn`` once a slot is free. Returns False once cancelled."""
        with self._cond:
            while self._is_full() and not self.signal.cancelled:
                self._cond.wait()
            if self.signal.cancelled:
                return False
            self._active += 1
            self._launched += 1
            self._peak = max(self._peak, self._active)

        thread = threading.Thread(
            target=self._run,
            args=(fn,),
            name=f"netfoolery-{self._name}-{next(self._ids)}",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError as exc:
            self._finish()
            self._fail(exc)
            return False
        return True

    def wait(self) -> BaseException | None:
        """Block until nothing is in flight and return the first error, if any."""
        with self._cond:
            while self._active:
                self._cond.wait()
        return self._errors.get()

    def _is_full(self) -> bool:
        return self.limit != UNLIMITED and self._active >= self.limit

    def _run(self, fn: Callable[[], object]) -> None:
        try:
            fn()
        except Exception as exc:  # noqa: BLE001
            self._fail(exc)
        finally:
            self._finish()

    def _fail(self, error: BaseException) -> None:
        if not self._errors.set(error):
            LOGGER.debug("%s group discarding subsequent error: %s", self._name, error)
        if self._on_error is not None:
            self._on_error(error)
        if self._fail_fast:
            self.signal.cancel(f"{self._name} failed: {error}")

    def _finish(self) -> None:
        with self._cond:
            self._active -= 1
            self._cond.notify_all()

    def _wake(self) -> None:
        with self._cond:
            self._cond.notify_all()


def submit_loop(
    unit: Callable[[], object],
    signal: RunSignal,
    limit: int = UNLIMITED,
    fail_fast: bool = True,
) -> BaseException | None:
    """Launch ``unit`` repeatedly, ``limit`` at a time, until ``signal`` is cancelled.

    Returns the first error raised by any unit once all in-flight units have
    finished.
    """
    group = WorkGroup(signal.child(), limit=limit, fail_fast=fail_fast, name="submit")
    while group.go(unit):
        pass
    LOGGER.info(
        "submit loop stopped after %d launches (peak %d in flight)",
        group.launched,
        group.peak,
    )
    return group.wait()


def accept_loop(
    accept: Callable[[], T],
    handle: Callable[[T], object],
    on_error: Callable[[BaseException], object],
    concurrent: bool = True,
    discard: Callable[[T], object] | None = None,
) -> None:
    """Accept and handle units until ``accept`` raises, then re-raise its error.

    Handler failures are passed to ``on_error`` and never stop the loop. An
    item whose handler could not be started is passed to ``discard``. All
    in-flight handlers finish before this returns.
    """
    handlers = WorkGroup(RunSignal(), fail_fast=False, on_error=on_error, name="handler")
    try:
        while True:
            item = accept()
            if concurrent:
                if not handlers.go(lambda item=item: handle(item)) and discard is not None:
                    discard(item)
                continue
            try:
                handle(item)
            except Exception as exc:  # noqa: BLE001
                on_error(exc)
    finally:
        handlers.wait()


__all__ = ["UNLIMITED", "WorkGroup", "accept_loop", "submit_loop"]
