"""Live listing of a granted directory."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from openinplace.models import LocationRef

from .base import LocationSession, SessionState

LOGGER = logging.getLogger(__name__)


class DirectoryListingSession(LocationSession):
    """Keep a sorted listing of one directory current.

    The listing is refreshed whenever the directory changes, gains a child, or
    comes back to the foreground. Relinquish requests resume immediately since
    a listing holds no unsaved state.
    """

    queue_name = "openinplace-listing"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._entries: list[LocationRef] = []

    @property
    def entries(self) -> list[LocationRef]:
        """Return the most recently loaded entries."""
        return list(self._entries)

    def reload(self) -> None:
        """Enumerate the directory through a coordinated read."""
        location = self._location
        if location is None:
            return
        if self._handle is None or not self._handle.is_valid():
            self._handle_deleted()
            return
        self._access.list(location, self._callback_for(self._finish_listing), presenter=self)

    def delete_entry(
        self,
        entry: LocationRef,
        callback: Callable[[Optional[BaseException]], None] | None = None,
    ) -> None:
        """Delete ``entry`` through a coordinated write, then relist.

        Args:
            entry: Item inside the listed directory.
            callback: Receives ``None`` or the error on the owner context.
        """
        finish = self._callback_for(lambda error: self._finish_delete(entry, error, callback))
        self._access.delete(entry, finish, presenter=self)

    def _finish_listing(self, entries: Optional[list[LocationRef]], error: Optional[BaseException]) -> None:
        if error is not None:
            if isinstance(error, FileNotFoundError):
                self._handle_deleted()
                return
            LOGGER.warning("Listing %s failed: %s", self._location, error)
            self._emit_error(error)
            return
        self._entries = list(entries or [])
        self._set_state(self._loaded_state())
        self._listener.on_listing(self, self.entries)

    def _finish_delete(
        self,
        entry: LocationRef,
        error: Optional[BaseException],
        callback: Callable[[Optional[BaseException]], None] | None,
    ) -> None:
        if error is not None:
            self._emit_error(error)
        else:
            LOGGER.info("Deleted %s", entry.path)
            self._entries = [item for item in self._entries if item.path != entry.path]
            if self._state is not SessionState.DELETED:
                self.reload()
        if callback is not None:
            callback(error)


__all__ = ["DirectoryListingSession"]
