"""Shared fixtures: a deterministic owner loop, a fake watchdog observer, and a wired access stack."""

from __future__ import annotations

import os
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

from openinplace.access import (
    CoordinatedFileAccess,
    FileCoordinator,
    GrantRegistry,
    PlaceholderMaterializer,
    PresenterRegistry,
)
from openinplace.runtime import TimerHandle
from openinplace.sessions import SessionListener, SessionState
from openinplace.watch import ChangeObserver


class ManualLoop:
    """Owner context with virtual time, driven explicitly by tests."""

    def __init__(self) -> None:
        self.now = 0.0
        self._ready: deque[tuple[Callable[..., Any], tuple[Any, ...]]] = deque()
        self._timers: list[TimerHandle] = []

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        self._ready.append((callback, args))

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        handle = TimerHandle(self.now + delay, callback, args)
        self._timers.append(handle)
        return handle

    @property
    def pending_timers(self) -> list[TimerHandle]:
        return [timer for timer in self._timers if not timer.cancelled]

    def run_ready(self) -> None:
        while self._ready:
            callback, args = self._ready.popleft()
            callback(*args)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        self.run_ready()
        while True:
            due = [timer for timer in self.pending_timers if timer.deadline <= target]
            if not due:
                break
            timer = min(due, key=lambda item: item.deadline)
            self._timers.remove(timer)
            self.now = timer.deadline
            timer.callback(*timer.args)
            self.run_ready()
        self.now = target

    def run_until(self, predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        """Process callbacks, including ones posted by worker threads, until ``predicate`` holds."""
        deadline = time.monotonic() + timeout
        while not predicate():
            if self._ready:
                callback, args = self._ready.popleft()
                callback(*args)
                continue
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True


@dataclass
class _ScheduledWatch:
    path: str
    handlers: list[Any]


class FakeObserver:
    """In-memory stand-in for a watchdog observer; tests push events by hand."""

    def __init__(self) -> None:
        self.started = False
        self.stopped = False
        self.watches: list[_ScheduledWatch] = []

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        return None

    def schedule(self, handler: Any, path: str, recursive: bool = False) -> _ScheduledWatch:
        for watch in self.watches:
            if watch.path == path:
                watch.handlers.append(handler)
                return watch
        watch = _ScheduledWatch(path=path, handlers=[handler])
        self.watches.append(watch)
        return watch

    def unschedule(self, watch: _ScheduledWatch) -> None:
        self.watches.remove(watch)

    def remove_handler_for_watch(self, handler: Any, watch: _ScheduledWatch) -> None:
        watch.handlers.remove(handler)

    @property
    def watched_paths(self) -> list[str]:
        return [watch.path for watch in self.watches]

    def emit(self, event: Any) -> None:
        """Dispatch ``event`` to handlers watching the directory it happened in."""
        directories = {os.path.dirname(os.fsdecode(event.src_path))}
        dest = getattr(event, "dest_path", "")
        if dest:
            directories.add(os.path.dirname(os.fsdecode(dest)))
        for watch in list(self.watches):
            if watch.path in directories:
                for handler in list(watch.handlers):
                    handler.dispatch(event)


class RecordingListener(SessionListener):
    """Session listener that keeps every event for assertions."""

    def __init__(self) -> None:
        self.states: list[SessionState] = []
        self.contents: list[str] = []
        self.listings: list[list[Any]] = []
        self.errors: list[BaseException] = []
        self.deleted = 0

    def on_state_changed(self, session: Any, state: SessionState) -> None:
        self.states.append(state)

    def on_content(self, session: Any, text: str) -> None:
        self.contents.append(text)

    def on_listing(self, session: Any, entries: list[Any]) -> None:
        self.listings.append(entries)

    def on_error(self, session: Any, error: BaseException) -> None:
        self.errors.append(error)

    def on_deleted(self, session: Any) -> None:
        self.deleted += 1


@dataclass
class AccessStack:
    grants: GrantRegistry
    presenters: PresenterRegistry
    coordinator: FileCoordinator
    access: CoordinatedFileAccess
    observer: ChangeObserver
    fake_observer: FakeObserver
    loop: ManualLoop


@pytest.fixture
def manual_loop() -> ManualLoop:
    return ManualLoop()


@pytest.fixture
def fake_observer() -> FakeObserver:
    return FakeObserver()


@pytest.fixture
def stack(tmp_path: Path, manual_loop: ManualLoop, fake_observer: FakeObserver) -> Iterator[AccessStack]:
    presenters = PresenterRegistry()
    coordinator = FileCoordinator(
        presenters,
        lock_dir=tmp_path / "locks",
        lock_timeout=2.0,
        relinquish_timeout=0.5,
    )
    access = CoordinatedFileAccess(
        coordinator,
        materializer=PlaceholderMaterializer(timeout_seconds=0.2, poll_interval_seconds=0.01),
        max_workers=2,
    )
    observer = ChangeObserver(presenters, observer_factory=lambda: fake_observer)
    yield AccessStack(
        grants=GrantRegistry(),
        presenters=presenters,
        coordinator=coordinator,
        access=access,
        observer=observer,
        fake_observer=fake_observer,
        loop=manual_loop,
    )
    access.shutdown()
    observer.stop()


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME at a temporary directory so state and config stay isolated."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    for key in list(os.environ):
        if key.startswith("OPENINPLACE"):
            monkeypatch.delenv(key, raising=False)
    return home_dir
