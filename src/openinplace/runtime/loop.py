"""Owner-context scheduling primitive used by every session component.

Coordinated operations and watchdog notifications arrive on arbitrary worker
threads. Session state is only ever mutated from callbacks run by an
:class:`OwnerLoop`, which serializes them on a single thread.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import queue
import threading
import time
from typing import Any, Callable, Optional, Protocol

LOGGER = logging.getLogger(__name__)


class TimerHandle:
    """Cancelable handle for a callback scheduled with ``call_later``."""

    __slots__ = ("deadline", "callback", "args", "cancelled")

    def __init__(self, deadline: float, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self.deadline = deadline
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        """Prevent the callback from running if it has not fired yet."""
        self.cancelled = True


class OwnerContext(Protocol):
    """Scheduling surface shared by the threaded loop and test doubles."""

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None: ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class OwnerLoop:
    """Single-threaded callback loop with timers.

    The loop either runs on a background thread (:meth:`start`) or takes over
    the calling thread (:meth:`run_forever`), which is how the CLI drives
    long-lived sessions.
    """

    def __init__(self, name: str = "openinplace-owner") -> None:
        self._name = name
        self._queue: queue.Queue[Optional[tuple[Callable[..., Any], tuple[Any, ...]]]] = queue.Queue()
        self._timers: list[tuple[float, int, TimerHandle]] = []
        self._timer_lock = threading.Lock()
        self._sequence = itertools.count()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._owner_ident: int | None = None

    # ------------------------------------------------------------------ #
    # Scheduling                                                         #
    # ------------------------------------------------------------------ #

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        """Queue ``callback(*args)`` to run on the owner thread."""
        self._queue.put((callback, args))

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run ``callback(*args)`` on the owner thread after ``delay`` seconds."""
        handle = TimerHandle(time.monotonic() + max(0.0, delay), callback, args)
        with self._timer_lock:
            heapq.heappush(self._timers, (handle.deadline, next(self._sequence), handle))
        # Wake the loop so it recomputes its wait deadline.
        self._queue.put(None)
        return handle

    def is_owner_thread(self) -> bool:
        """Return whether the caller runs on the loop's thread."""
        return self._owner_ident == threading.get_ident()

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Run the loop on a daemon thread."""
        if self._thread is not None:
            raise RuntimeError("OwnerLoop is already running.")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop and join its thread when it owns one."""
        self._stop_event.set()
        self._queue.put(None)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    def run_forever(self) -> None:
        """Process callbacks and timers on the calling thread until stopped."""
        self._owner_ident = threading.get_ident()
        try:
            while not self._stop_event.is_set():
                try:
                    item = self._queue.get(timeout=self._next_timeout())
                except queue.Empty:
                    item = None
                if item is not None:
                    callback, args = item
                    self._invoke(callback, args)
                self._run_due_timers()
        finally:
            self._owner_ident = None

    def run_until(self, predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        """Process callbacks on the calling thread until ``predicate`` holds.

        Args:
            predicate: Condition checked after every processed callback.
            timeout: Maximum time to keep processing.

        Returns:
            bool: Whether the predicate became true before the timeout.
        """
        self._owner_ident = threading.get_ident()
        deadline = time.monotonic() + timeout
        try:
            while not predicate():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                next_timer = self._next_timeout()
                wait = remaining if next_timer is None else min(remaining, next_timer)
                try:
                    item = self._queue.get(timeout=wait)
                except queue.Empty:
                    item = None
                if item is not None:
                    callback, args = item
                    self._invoke(callback, args)
                self._run_due_timers()
            return True
        finally:
            self._owner_ident = None

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _next_timeout(self) -> Optional[float]:
        with self._timer_lock:
            while self._timers and self._timers[0][2].cancelled:
                heapq.heappop(self._timers)
            if not self._timers:
                return None
            return max(0.0, self._timers[0][0] - time.monotonic())

    def _run_due_timers(self) -> None:
        now = time.monotonic()
        due: list[TimerHandle] = []
        with self._timer_lock:
            while self._timers and self._timers[0][0] <= now:
                _, _, handle = heapq.heappop(self._timers)
                if not handle.cancelled:
                    due.append(handle)
        for handle in due:
            if not handle.cancelled:
                self._invoke(handle.callback, handle.args)

    def _invoke(self, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        try:
            callback(*args)
        except Exception:  # pragma: no cover - surfaced through logging
            LOGGER.exception("Unhandled error in owner loop callback %r", callback)


__all__ = ["OwnerContext", "OwnerLoop", "TimerHandle"]
