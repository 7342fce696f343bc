"""Debounced autosave for edit sessions."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from openinplace.runtime import OwnerContext, TimerHandle

LOGGER = logging.getLogger(__name__)

DoneCallback = Callable[[Optional[BaseException]], None]
WriteFunction = Callable[[DoneCallback], None]


class DebouncedWriter:
    """Commit local edits no more often than once per quiescence interval.

    All methods must be called on the owner context. The pending-write flag is
    cleared when a flush starts, so a timer firing while a flush is in flight
    finds nothing to write, and an edit arriving during a write leaves the flag
    set for the next flush. Writes never overlap: a flush requested while one
    is in flight runs after it completes.
    """

    def __init__(
        self,
        loop: OwnerContext,
        write: WriteFunction,
        *,
        interval: float = 1.0,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        """Initialize the writer.

        Args:
            loop: Owner context running timers and completion callbacks.
            write: Performs the coordinated write and calls its argument once
                with ``None`` or the error; may call back from any thread.
            interval: Quiescence interval in seconds.
            on_error: Receives errors from timer-triggered flushes.
        """
        self._loop = loop
        self._write = write
        self._interval = interval
        self._on_error = on_error
        self._dirty = False
        self._in_flight = 0
        self._disabled = False
        self._timer: TimerHandle | None = None
        self._writes_started = 0
        self._flush_queued = False
        self._waiting: list[DoneCallback] = []

    @property
    def dirty(self) -> bool:
        """Return whether edits are waiting to be written."""
        return self._dirty

    @property
    def in_flight(self) -> bool:
        """Return whether a write is currently running."""
        return self._in_flight > 0

    @property
    def disabled(self) -> bool:
        """Return whether the writer was disabled."""
        return self._disabled

    @property
    def writes_started(self) -> int:
        """Return how many coordinated writes this writer has issued."""
        return self._writes_started

    def mark_dirty(self) -> None:
        """Record an edit and restart the quiescence timer."""
        if self._disabled:
            return
        self._dirty = True
        self._cancel_timer()
        self._timer = self._loop.call_later(self._interval, self._on_timer)

    def flush_now(self, callback: DoneCallback | None = None) -> None:
        """Write pending edits immediately.

        ``callback`` receives ``None`` straight away when nothing is pending
        and no write is in flight. While a write is in flight the flush is
        queued and ``callback`` runs once everything pending has landed.
        """
        self._cancel_timer()
        if self._in_flight:
            self._flush_queued = True
            if callback is not None:
                self._waiting.append(callback)
            return
        if self._disabled or not self._dirty:
            if callback is not None:
                callback(None)
            return
        self._start([callback] if callback is not None else [])

    def rebind(self, write: WriteFunction) -> None:
        """Route writes that have not started yet through ``write``."""
        self._write = write

    def cancel(self) -> None:
        """Stop the pending timer without writing."""
        self._cancel_timer()

    def disable(self) -> None:
        """Drop pending edits and turn every later call into a no-op."""
        self._disabled = True
        self._dirty = False
        self._cancel_timer()

    def _on_timer(self) -> None:
        self._timer = None
        self.flush_now(self._report)

    def _report(self, error: Optional[BaseException]) -> None:
        if error is not None and self._on_error is not None:
            self._on_error(error)

    def _start(self, callbacks: list[DoneCallback]) -> None:
        self._dirty = False
        self._in_flight += 1
        self._writes_started += 1
        self._write(lambda error: self._loop.call_soon(self._finish, error, callbacks))

    def _finish(self, error: Optional[BaseException], callbacks: list[DoneCallback]) -> None:
        self._in_flight -= 1
        if error is not None:
            LOGGER.warning("Autosave failed: %s", error)
        for callback in callbacks:
            callback(error)
        if not self._flush_queued:
            return

        self._flush_queued = False
        waiting, self._waiting = self._waiting, []
        if self._dirty and not self._disabled:
            self._start(waiting)
            return
        # Nothing new since the write that just landed; it carried their edits.
        for callback in waiting:
            callback(error)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


__all__ = ["DebouncedWriter"]
