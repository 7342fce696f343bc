"""Tests for debounced autosave."""

from __future__ import annotations

from typing import Any, Callable, Optional

from openinplace.sessions import DebouncedWriter


class _Writes:
    """Write function double; completes immediately unless told to hold."""

    def __init__(self, *, hold: bool = False, error: Optional[BaseException] = None) -> None:
        self.hold = hold
        self.error = error
        self.count = 0
        self.pending: list[Callable[[Optional[BaseException]], None]] = []

    def __call__(self, done: Callable[[Optional[BaseException]], None]) -> None:
        self.count += 1
        if self.hold:
            self.pending.append(done)
        else:
            done(self.error)


def test_burst_of_edits_coalesces_into_one_write(manual_loop: Any) -> None:
    writes = _Writes()
    writer = DebouncedWriter(manual_loop, writes, interval=1.0)

    for _ in range(5):
        writer.mark_dirty()
        manual_loop.advance(0.4)
    assert writes.count == 0
    assert writer.dirty

    manual_loop.advance(1.0)

    assert writes.count == 1
    assert not writer.dirty
    assert not writer.in_flight


def test_explicit_flush_suppresses_timer_write(manual_loop: Any) -> None:
    writes = _Writes()
    writer = DebouncedWriter(manual_loop, writes, interval=1.0)
    writer.mark_dirty()
    (timer,) = manual_loop.pending_timers

    writer.flush_now()
    manual_loop.run_ready()
    # A timer that was already due when the flush started still finds nothing to write.
    timer.callback(*timer.args)
    manual_loop.advance(2.0)

    assert timer.cancelled
    assert writes.count == 1


def test_edit_during_write_stays_pending(manual_loop: Any) -> None:
    writes = _Writes(hold=True)
    writer = DebouncedWriter(manual_loop, writes, interval=1.0)

    writer.mark_dirty()
    manual_loop.advance(1.0)
    assert writes.count == 1
    assert writer.in_flight
    assert not writer.dirty

    writer.mark_dirty()
    writes.pending.pop()(None)
    manual_loop.run_ready()
    assert not writer.in_flight
    assert writer.dirty

    manual_loop.advance(1.0)
    assert writes.count == 2


def test_flush_without_edits_completes_immediately(manual_loop: Any) -> None:
    writes = _Writes()
    writer = DebouncedWriter(manual_loop, writes)
    results: list[Optional[BaseException]] = []

    writer.flush_now(results.append)

    assert results == [None]
    assert writes.count == 0


def test_flush_callback_runs_on_owner_loop(manual_loop: Any) -> None:
    writes = _Writes()
    writer = DebouncedWriter(manual_loop, writes)
    results: list[Optional[BaseException]] = []
    writer.mark_dirty()

    writer.flush_now(results.append)
    assert results == []

    manual_loop.run_ready()
    assert results == [None]
    assert writer.writes_started == 1


def test_disable_drops_pending_edits(manual_loop: Any) -> None:
    writes = _Writes()
    writer = DebouncedWriter(manual_loop, writes)
    results: list[Optional[BaseException]] = []

    writer.mark_dirty()
    writer.disable()
    manual_loop.advance(5.0)
    writer.mark_dirty()
    writer.flush_now(results.append)

    assert writes.count == 0
    assert not writer.dirty
    assert writer.disabled
    assert results == [None]


def test_timer_flush_errors_reach_handler(manual_loop: Any) -> None:
    failure = OSError("disk full")
    errors: list[BaseException] = []
    writer = DebouncedWriter(manual_loop, _Writes(error=failure), interval=0.5, on_error=errors.append)

    writer.mark_dirty()
    manual_loop.advance(0.5)

    assert errors == [failure]


def test_flush_during_write_waits_for_it(manual_loop: Any) -> None:
    writes = _Writes(hold=True)
    writer = DebouncedWriter(manual_loop, writes, interval=1.0)
    results: list[Optional[BaseException]] = []

    writer.mark_dirty()
    manual_loop.advance(1.0)
    writer.mark_dirty()
    writer.flush_now(results.append)

    assert writes.count == 1
    assert writer.dirty
    assert results == []

    writes.pending.pop()(None)
    manual_loop.run_ready()
    assert writes.count == 2
    assert not writer.dirty
    assert results == []

    writes.pending.pop()(None)
    manual_loop.run_ready()
    assert results == [None]
    assert not writer.in_flight


def test_flush_with_nothing_new_completes_with_running_write(manual_loop: Any) -> None:
    writes = _Writes(hold=True)
    writer = DebouncedWriter(manual_loop, writes, interval=1.0)
    results: list[Optional[BaseException]] = []
    failure = OSError("disk full")

    writer.mark_dirty()
    writer.flush_now()
    writer.flush_now(results.append)
    assert results == []

    writes.pending.pop()(failure)
    manual_loop.run_ready()

    assert writes.count == 1
    assert results == [failure]


def test_queued_flush_uses_rebound_write(manual_loop: Any) -> None:
    writes = _Writes(hold=True)
    later = _Writes()
    writer = DebouncedWriter(manual_loop, writes, interval=1.0)

    writer.mark_dirty()
    writer.flush_now()
    writer.mark_dirty()
    writer.flush_now()
    writer.rebind(later)

    writes.pending.pop()(None)
    manual_loop.run_ready()

    assert writes.count == 1
    assert later.count == 1
