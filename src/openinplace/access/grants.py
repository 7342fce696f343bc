"""Scoped access grants for locations outside the application's own storage."""

from __future__ import annotations

import logging
import os
import threading
from collections import Counter
from pathlib import Path
from types import TracebackType
from typing import Optional

from openinplace.models import DEFAULT_PLACEHOLDER_SUFFIX, LocationRef

LOGGER = logging.getLogger(__name__)


class GrantRegistry:
    """Track open access grants per location path.

    The registry is owned by the application object rather than being process
    global; every :class:`ScopedResourceHandle` opens and closes its grant
    through one.
    """

    def __init__(self, *, placeholder_suffix: str = DEFAULT_PLACEHOLDER_SUFFIX) -> None:
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()
        self._placeholder_suffix = placeholder_suffix

    @property
    def placeholder_suffix(self) -> str:
        """Return the placeholder suffix used when probing locations."""
        return self._placeholder_suffix

    def open(self, location: LocationRef) -> bool:
        """Open a grant for ``location`` if the caller may touch it.

        Args:
            location: Location the grant is requested for.

        Returns:
            bool: Whether a grant was opened.
        """
        if not self._permits(location):
            LOGGER.debug("Access refused for %s", location.path)
            return False
        with self._lock:
            self._counts[location.path] += 1
        return True

    def close(self, location: LocationRef) -> None:
        """Close one grant for ``location``; never drops below zero."""
        with self._lock:
            if self._counts[location.path] <= 1:
                self._counts.pop(location.path, None)
            else:
                self._counts[location.path] -= 1

    def open_count(self, location: LocationRef) -> int:
        """Return how many grants are currently open for ``location``."""
        with self._lock:
            return self._counts.get(location.path, 0)

    def total_open(self) -> int:
        """Return the number of open grants across all locations."""
        with self._lock:
            return sum(self._counts.values())

    def _permits(self, location: LocationRef) -> bool:
        path = location.fs_path
        for candidate in (path, location.placeholder_path(self._placeholder_suffix)):
            if candidate.exists():
                return os.access(candidate, os.R_OK)
        # Not created yet: allowed when the containing directory is reachable.
        parent = path.parent
        return parent.is_dir() and os.access(parent, os.R_OK | os.X_OK)


class ScopedResourceHandle:
    """Symmetric acquire/release wrapper around one access grant.

    ``acquire`` is idempotent while a grant is held, and ``release`` is a no-op
    when none is, so a handle can never leak or over-release a grant.
    """

    def __init__(self, location: LocationRef, grants: GrantRegistry) -> None:
        self._location = location
        self._grants = grants
        self._held = False
        self._lock = threading.Lock()
        self._opened_by_enter: list[bool] = []

    @property
    def location(self) -> LocationRef:
        """Return the location this handle grants access to."""
        return self._location

    @property
    def held(self) -> bool:
        """Return whether a grant is currently open."""
        return self._held

    def acquire(self) -> bool:
        """Begin access; returns whether a new grant was actually opened."""
        with self._lock:
            if self._held:
                return False
            self._held = self._grants.open(self._location)
            return self._held

    def release(self) -> None:
        """End access if a grant is held."""
        with self._lock:
            if not self._held:
                return
            self._held = False
            self._grants.close(self._location)

    def is_valid(self) -> bool:
        """Re-check that the grant is held and the location still exists."""
        return self._held and self._location.exists(self._grants.placeholder_suffix)

    def __enter__(self) -> bool:
        opened = self.acquire()
        self._opened_by_enter.append(opened)
        return opened or self._held

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        if self._opened_by_enter.pop():
            self.release()

    def __repr__(self) -> str:
        return f"ScopedResourceHandle({Path(self._location.path).name!r}, held={self._held})"


__all__ = ["GrantRegistry", "ScopedResourceHandle"]
