from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from typing import TextIO

from .analytics import RateCounter
from .config import RunConfig
from .run import RunSignal
from .scheduler import submit_loop
from .shutdown import ShutdownCoordinator
from .status import Console, StatusReporter
from .transports import MARKER, Incoming, Listener, Transport, check_payload

LOGGER = logging.getLogger("netfoolery.harness")


@dataclass
class RunResult:
    total: int
    rate: int
    started_at: float
    finished_at: float

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def mean_rate(self) -> float:
        if self.duration_s == 0:
            return 0.0
        return self.total / self.duration_s


def submit(
    transport: Transport,
    config: RunConfig,
    signal: RunSignal,
    out: TextIO | None = None,
    counter: RateCounter | None = None,
) -> RunResult:
    """Submit units of work until ``signal`` is cancelled or one of them fails."""
    console = Console(out or sys.stdout)
    counter = counter or RateCounter(concurrency_safe=True)
    workers = config.submit.workers
    submitter = transport.dial(config.shared)

    def unit() -> None:
        submitter.submit(MARKER)
        total, rate = counter.incr()
        console.progress("Submitted", total, rate)

    console.line(
        f"Starting to submit to host '{submitter.target}' with "
        f"{'unlimited' if config.submit.unlimited else workers} workers..."
    )
    LOGGER.info("submitting %s to %s (workers=%d)", transport.name, submitter.target, workers)
    started_at = time.time()
    with submitter:
        error = submit_loop(unit, signal, limit=workers, fail_fast=config.submit.fail_fast)
    console.line("\nStopping...")
    result = RunResult(counter.total_count, counter.count_per_second, started_at, time.time())
    console.line("Done.")
    _log_result("submitted", result)

    if error is not None:
        raise error
    return result


def serve(
    transport: Transport,
    config: RunConfig,
    signal: RunSignal,
    out: TextIO | None = None,
    counter: RateCounter | None = None,
) -> RunResult:
    """Bind ``transport`` and count every valid unit received until shut down."""
    listener = transport.listen(config.shared)
    return serve_listener(listener, config, signal, out=out, counter=counter)


def serve_listener(
    listener: Listener,
    config: RunConfig,
    signal: RunSignal,
    out: TextIO | None = None,
    counter: RateCounter | None = None,
) -> RunResult:
    console = Console(out or sys.stdout)
    counter = counter or RateCounter(concurrency_safe=listener.concurrent)
    reporter = StatusReporter(console, signal, interval=config.status_interval)
    coordinator = ShutdownCoordinator(
        signal,
        close=listener.close,
        timeout=config.shared.timeout,
        console=console,
        force=listener.force_close,
    )

    def handle(incoming: Incoming) -> None:
        try:
            payload = incoming.read_payload()
        finally:
            incoming.close()
        check_payload(payload)
        total, rate = counter.incr()
        reporter.reset()
        console.progress("Received", total, rate)

    console.line(f"Starting to serve at host '{listener.address}'...")
    LOGGER.info("serving at %s", listener.address)
    started_at = time.time()
    reporter.start()
    coordinator.start()

    loop_error: BaseException | None = None
    try:
        listener.serve(handle, coordinator.record)
    except Exception as exc:  # noqa: BLE001
        loop_error = exc
    coordinator.loop_exited(loop_error)
    error = coordinator.wait()
    reporter.stop()

    result = RunResult(counter.total_count, counter.count_per_second, started_at, time.time())
    _log_result("received", result)
    if error is not None:
        raise error
    return result


def _log_result(verb: str, result: RunResult) -> None:
    LOGGER.info(
        "%s %d in %.2fs (%.1f/second mean, %d/second last full second)",
        verb,
        result.total,
        result.duration_s,
        result.mean_rate,
        result.rate,
    )


__all__ = ["RunResult", "serve", "serve_listener", "submit"]
