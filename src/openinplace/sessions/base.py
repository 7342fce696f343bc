"""Lifecycle shared by listing and edit sessions."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional

from openinplace.access import (
    CoordinatedFileAccess,
    GrantRegistry,
    LazyPresenterQueue,
    ScopedResourceHandle,
)
from openinplace.errors import AccessDeniedError
from openinplace.models import LocationRef
from openinplace.runtime import OwnerContext
from openinplace.watch import ChangeObserver, WatchHandle

LOGGER = logging.getLogger(__name__)


class SessionState(str, Enum):
    """States a session moves through."""

    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    BACKGROUND = "background"
    DELETED = "deleted"


class SessionListener:
    """Presentation-layer hooks; every method runs on the owner context.

    Implementations must not block; subclass and override what you need.
    """

    def on_state_changed(self, session: "LocationSession", state: SessionState) -> None:
        """Called after the session changed state."""

    def on_content(self, session: "LocationSession", text: str) -> None:
        """Called when file content was (re)loaded."""

    def on_listing(self, session: "LocationSession", entries: list[LocationRef]) -> None:
        """Called when a directory listing was (re)loaded."""

    def on_error(self, session: "LocationSession", error: BaseException) -> None:
        """Called with errors worth an alert."""

    def on_deleted(self, session: "LocationSession") -> None:
        """Called when the presented item was deleted."""


class LocationSession(ABC):
    """Own one scoped handle and one watch for a location, driven on an owner loop.

    Presenter notifications arrive on the session's presenter queue and are
    marshalled onto the owner loop. Each carries the generation current when it
    was posted; retargeting bumps the generation so late callbacks for an
    earlier target are ignored.
    """

    queue_name = "openinplace-presenter"

    def __init__(
        self,
        access: CoordinatedFileAccess,
        observer: ChangeObserver,
        grants: GrantRegistry,
        loop: OwnerContext,
        *,
        listener: SessionListener | None = None,
    ) -> None:
        self._access = access
        self._observer = observer
        self._grants = grants
        self._loop = loop
        self._listener = listener or SessionListener()
        self._location: LocationRef | None = None
        self._handle: ScopedResourceHandle | None = None
        self._watch: WatchHandle | None = None
        self._generation = 0
        self._state = SessionState.CLOSED
        self._backgrounded = False
        self._queue = LazyPresenterQueue(self.queue_name)

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    @property
    def location(self) -> Optional[LocationRef]:
        """Return the current target, if any."""
        return self._location

    @property
    def state(self) -> SessionState:
        """Return the current session state."""
        return self._state

    @property
    def handle(self) -> Optional[ScopedResourceHandle]:
        """Return the scoped handle for the current target."""
        return self._handle

    @property
    def is_watching(self) -> bool:
        """Return whether a watch is registered for the current target."""
        return self._watch is not None

    def retarget(self, location: LocationRef | None) -> None:
        """Tear down the current target and open ``location`` (or nothing)."""
        self._retarget(location, reload=True)

    def close(self) -> None:
        """Release everything the session holds."""
        self._retarget(None, reload=False)
        self._queue.shutdown()

    def enter_background(self) -> None:
        """Unregister the watch while keeping the handle and last content."""
        if self._backgrounded:
            return
        self._backgrounded = True
        self._detach_watch()
        if self._location is not None:
            self._set_state(SessionState.BACKGROUND)
        self._on_background()

    def enter_foreground(self) -> None:
        """Re-register the watch and refresh to catch changes missed meanwhile."""
        if not self._backgrounded:
            return
        self._backgrounded = False
        if self._location is None:
            return
        self._attach_watch()
        self._on_foreground()

    @abstractmethod
    def reload(self) -> None:
        """Load content for the current target."""

    # ------------------------------------------------------------------ #
    # FilePresenter                                                      #
    # ------------------------------------------------------------------ #

    @property
    def presented_location(self) -> Optional[LocationRef]:
        return self._location

    @property
    def presenter_queue(self):
        return self._queue.get()

    def on_changed(self) -> None:
        self._post(self._handle_changed)

    def on_moved(self, new_location: LocationRef) -> None:
        self._post(self._handle_moved, new_location)

    def on_deleted(self) -> None:
        self._post(self._handle_deleted)

    def on_child_appeared(self, location: LocationRef) -> None:
        self._post(self._handle_child_appeared, location)

    def relinquish_to_reader(self, resume: Callable[[], None]) -> None:
        self._loop.call_soon(self._handle_relinquish, resume, False)

    def relinquish_to_writer(self, resume: Callable[[], None]) -> None:
        self._loop.call_soon(self._handle_relinquish, resume, True)

    # ------------------------------------------------------------------ #
    # Hooks for subclasses                                               #
    # ------------------------------------------------------------------ #

    def _handle_changed(self) -> None:
        self.reload()

    def _handle_child_appeared(self, location: LocationRef) -> None:
        self.reload()

    def _handle_moved(self, new_location: LocationRef) -> None:
        LOGGER.info("%s moved to %s", self._location, new_location)
        self._retarget(new_location, reload=True)

    def _handle_relinquish(self, resume: Callable[[], None], writing: bool) -> None:
        resume()

    def _on_background(self) -> None:
        """Called after the session entered the background."""

    def _on_foreground(self) -> None:
        self.reload()

    def _on_deleted(self) -> None:
        """Called before a deletion is surfaced to the listener."""

    def _handle_deleted(self) -> None:
        if self._location is None:
            return
        LOGGER.info("%s was deleted", self._location)
        self._on_deleted()
        self._detach()
        self._generation += 1
        self._location = None
        self._set_state(SessionState.DELETED)
        self._listener.on_deleted(self)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _retarget(self, location: LocationRef | None, *, reload: bool) -> None:
        self._detach()
        self._generation += 1
        self._location = location
        if location is None:
            self._set_state(SessionState.CLOSED)
            return

        handle = ScopedResourceHandle(location, self._grants)
        if not handle.acquire():
            self._location = None
            self._set_state(SessionState.CLOSED)
            self._emit_error(AccessDeniedError(f"Access to {location.name} was not granted."))
            return
        self._handle = handle
        if not self._backgrounded:
            self._attach_watch()
        if reload:
            self._set_state(SessionState.OPENING)
            self.reload()

    def _attach_watch(self) -> None:
        if self._watch is not None or self._location is None:
            return
        try:
            self._watch = self._observer.register(self, self._location)
        except OSError as exc:
            LOGGER.warning("Cannot watch %s: %s", self._location.path, exc)
            self._emit_error(exc)

    def _detach_watch(self) -> None:
        if self._watch is not None:
            self._observer.unregister(self._watch)
            self._watch = None

    def _detach(self) -> None:
        # The watch goes before the grant it depends on.
        self._detach_watch()
        if self._handle is not None:
            self._handle.release()
            self._handle = None

    def _post(self, callback: Callable[..., Any], *args: Any) -> None:
        self._loop.call_soon(self._run_if_current, self._generation, callback, args)

    def _run_if_current(self, generation: int, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        if generation != self._generation:
            LOGGER.debug("Ignoring stale notification %s", getattr(callback, "__name__", callback))
            return
        callback(*args)

    def _callback_for(self, callback: Callable[..., Any]) -> Callable[..., None]:
        """Wrap ``callback`` so worker-thread completions run on the owner loop."""
        generation = self._generation

        def _marshal(*args: Any) -> None:
            self._loop.call_soon(self._run_if_current, generation, callback, args)

        return _marshal

    def _loaded_state(self) -> SessionState:
        return SessionState.BACKGROUND if self._backgrounded else SessionState.OPEN

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        self._state = state
        self._listener.on_state_changed(self, state)

    def _emit_error(self, error: BaseException) -> None:
        self._listener.on_error(self, error)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._location!s}, state={self._state.value})"


__all__ = ["LocationSession", "SessionListener", "SessionState"]
