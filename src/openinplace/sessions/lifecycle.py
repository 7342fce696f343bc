"""Fan out foreground/background transitions to live sessions."""

from __future__ import annotations

import logging
import threading

from .base import LocationSession

LOGGER = logging.getLogger(__name__)


class LifecycleNotifier:
    """Track live sessions and forward application lifecycle changes to them.

    Call the transition methods on the sessions' owner context.
    """

    def __init__(self) -> None:
        self._sessions: list[LocationSession] = []
        self._lock = threading.Lock()
        self._background = False

    @property
    def is_background(self) -> bool:
        """Return whether the application is currently in the background."""
        return self._background

    def add(self, session: LocationSession) -> None:
        """Start forwarding transitions to ``session``."""
        with self._lock:
            if session not in self._sessions:
                self._sessions.append(session)
        if self._background:
            session.enter_background()

    def remove(self, session: LocationSession) -> None:
        """Stop forwarding transitions to ``session``."""
        with self._lock:
            if session in self._sessions:
                self._sessions.remove(session)

    def enter_background(self) -> None:
        """Suspend watches and flush pending edits in every session."""
        self._background = True
        for session in self._snapshot():
            session.enter_background()
        LOGGER.debug("Entered background")

    def enter_foreground(self) -> None:
        """Resume watches and refresh every session."""
        self._background = False
        for session in self._snapshot():
            session.enter_foreground()
        LOGGER.debug("Entered foreground")

    def _snapshot(self) -> list[LocationSession]:
        with self._lock:
            return list(self._sessions)


__all__ = ["LifecycleNotifier"]
