"""Cancellation signal behaviour."""

from __future__ import annotations

import signal

import pytest

from netfoolery.run import RunSignal, interrupt_on_signals


def test_cancel_is_idempotent() -> None:
    run_signal = RunSignal()
    calls: list[str] = []
    run_signal.add_callback(lambda: calls.append("cancelled"))

    assert run_signal.cancel("first") is True
    assert run_signal.cancel("second") is False
    assert run_signal.cancelled
    assert run_signal.reason == "first"
    assert calls == ["cancelled"]


def test_callback_added_after_cancel_runs_immediately() -> None:
    run_signal = RunSignal()
    run_signal.cancel()
    calls: list[int] = []

    run_signal.add_callback(lambda: calls.append(1))

    assert calls == [1]


def test_child_follows_parent_but_not_the_other_way_around() -> None:
    parent = RunSignal()
    first = parent.child()
    second = parent.child()

    assert first.cancel("child failed")
    assert not parent.cancelled
    assert not second.cancelled

    parent.cancel("interrupted")
    assert second.cancelled
    assert second.reason == "interrupted"
    assert first.reason == "child failed"


def test_failing_callback_does_not_stop_the_others() -> None:
    run_signal = RunSignal()
    calls: list[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    run_signal.add_callback(broken)
    run_signal.add_callback(lambda: calls.append("ran"))
    run_signal.cancel()

    assert calls == ["ran"]


def test_cancel_after_fires_once_elapsed() -> None:
    run_signal = RunSignal()
    run_signal.cancel_after(0.05)

    assert run_signal.wait(timeout=5.0)
    assert run_signal.reason == "duration elapsed"


def test_wait_times_out_while_running() -> None:
    assert RunSignal().wait(timeout=0.01) is False


@pytest.mark.skipif(not hasattr(signal, "SIGUSR1"), reason="POSIX signals only")
def test_interrupt_on_signals_cancels_and_restores_handlers() -> None:
    previous = signal.getsignal(signal.SIGUSR1)
    run_signal = RunSignal()

    with interrupt_on_signals(run_signal, signals=(signal.SIGUSR1,)):
        signal.raise_signal(signal.SIGUSR1)
        assert run_signal.wait(timeout=5.0)

    assert run_signal.reason == "received SIGUSR1"
    assert signal.getsignal(signal.SIGUSR1) is previous
