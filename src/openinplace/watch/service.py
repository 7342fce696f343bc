"""External change observation for presented locations, backed by watchdog."""

from __future__ import annotations

import logging
import os
import threading
from collections import Counter
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

from openinplace.access.coordinator import FilePresenter, PresenterRegistry
from openinplace.models import LocationRef

LOGGER = logging.getLogger(__name__)

Notice = tuple[str, tuple[object, ...]]


@dataclass(slots=True)
class WatchHandle:
    """Registration of one presenter with the observer.

    Attributes:
        presenter: Presenter receiving notifications.
        location: Location watched on behalf of the presenter.
        watches: Watched paths with the watchdog watch and handler attached to each.
    """

    presenter: FilePresenter
    location: LocationRef
    watches: list[tuple[str, ObservedWatch, FileSystemEventHandler]] = field(default_factory=list)
    active: bool = True


class ChangeObserver:
    """Register presenters for change, move, delete, and new-child notifications.

    A file is watched through its parent directory; a directory is watched
    directly (for its children) and through its parent (for its own rename or
    removal). Shared directory watches are reference counted.
    """

    def __init__(
        self,
        presenters: PresenterRegistry,
        *,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self._presenters = presenters
        self._observer_factory = observer_factory
        self._observer: BaseObserver | None = None
        self._refcounts: Counter[str] = Counter()
        self._lock = threading.Lock()

    @property
    def presenters(self) -> PresenterRegistry:
        """Return the registry that registered presenters are added to."""
        return self._presenters

    def register(self, presenter: FilePresenter, location: LocationRef) -> WatchHandle:
        """Start delivering notifications about ``location`` to ``presenter``.

        Raises:
            OSError: If the operating system refuses the watch.
        """
        handle = WatchHandle(presenter=presenter, location=location)
        paths = [os.path.dirname(location.path) or os.sep]
        if location.is_directory:
            paths.insert(0, location.path)

        with self._lock:
            observer = self._ensure_observer()
            try:
                for path in dict.fromkeys(paths):
                    handler = _PresenterEventHandler(location, partial(self._deliver, handle))
                    watch = observer.schedule(handler, path, recursive=False)
                    self._refcounts[path] += 1
                    handle.watches.append((path, watch, handler))
            except OSError:
                self._release_watches(observer, handle)
                raise

        self._presenters.add(presenter)
        LOGGER.debug("Watching %s for %r", location.path, presenter)
        return handle

    def unregister(self, handle: WatchHandle) -> None:
        """Stop notifications for ``handle``; safe to call more than once."""
        if not handle.active:
            return
        handle.active = False
        self._presenters.remove(handle.presenter)
        with self._lock:
            if self._observer is not None:
                self._release_watches(self._observer, handle)
        LOGGER.debug("Stopped watching %s", handle.location.path)

    def stop(self) -> None:
        """Stop the underlying observer thread."""
        with self._lock:
            observer, self._observer = self._observer, None
            self._refcounts.clear()
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)

    def _ensure_observer(self) -> BaseObserver:
        if self._observer is None:
            self._observer = self._observer_factory()
            self._observer.start()
        return self._observer

    def _release_watches(self, observer: BaseObserver, handle: WatchHandle) -> None:
        for path, watch, handler in handle.watches:
            self._refcounts[path] -= 1
            if self._refcounts[path] <= 0:
                del self._refcounts[path]
                observer.unschedule(watch)
            else:
                observer.remove_handler_for_watch(handler, watch)
        handle.watches.clear()

    def _deliver(self, handle: WatchHandle, method: str, args: tuple[object, ...]) -> None:
        if handle.active:
            self._presenters.deliver(handle.presenter, method, *args)


class _PresenterEventHandler(FileSystemEventHandler):
    """Translate watchdog events into presenter notices for one location."""

    def __init__(self, location: LocationRef, emit: Callable[[str, tuple[object, ...]], None]) -> None:
        self._location = location
        self._emit = emit

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle a filesystem create event."""
        self._forward(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle a filesystem modify event."""
        self._forward(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle a filesystem move event."""
        self._forward(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle a filesystem delete event."""
        self._forward(event)

    def _forward(self, event: FileSystemEvent) -> None:
        notice = translate_event(self._location, event)
        if notice is not None:
            method, args = notice
            self._emit(method, args)


def translate_event(location: LocationRef, event: FileSystemEvent) -> Optional[Notice]:
    """Map a watchdog event to the presenter notice it implies for ``location``.

    Args:
        location: Watched location.
        event: Raw watchdog event.

    Returns:
        Optional[Notice]: ``(method, args)`` for the presenter, or ``None``
        when the event does not concern ``location``.
    """
    target = os.path.normpath(location.path)
    source = os.path.normpath(os.fsdecode(event.src_path))
    dest_raw = getattr(event, "dest_path", "") or ""
    dest = os.path.normpath(os.fsdecode(dest_raw)) if dest_raw else ""

    if event.event_type == "moved":
        if source == target:
            return "on_moved", (location.with_path(dest),)
        if dest == target:
            return "on_changed", ()
        if location.is_directory:
            if os.path.dirname(dest) == target and os.path.dirname(source) != target:
                return "on_child_appeared", (LocationRef.from_path(dest),)
            if target in (os.path.dirname(source), os.path.dirname(dest)):
                return "on_changed", ()
        return None

    if source == target:
        if event.event_type == "deleted":
            return "on_deleted", ()
        if event.event_type in ("created", "modified"):
            return "on_changed", ()
        return None

    if location.is_directory and os.path.dirname(source) == target:
        if event.event_type == "created":
            return "on_child_appeared", (LocationRef.from_path(source),)
        if event.event_type in ("deleted", "modified"):
            return "on_changed", ()
    return None


__all__ = ["ChangeObserver", "WatchHandle", "translate_event"]
