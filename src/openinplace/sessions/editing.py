"""Single-file text editing with debounced autosave."""

from __future__ import annotations

import logging
import os
from functools import partial
from typing import Callable, Optional

from openinplace.access import CoordinatedFileAccess, GrantRegistry
from openinplace.models import LocationRef
from openinplace.runtime import OwnerContext
from openinplace.watch import ChangeObserver

from .base import LocationSession, SessionListener, SessionState
from .writer import DebouncedWriter, DoneCallback

LOGGER = logging.getLogger(__name__)

DELETED_TITLE = "<DELETED>"

Signature = tuple[int, int]


def file_signature(path: str) -> Optional[Signature]:
    """Return ``(mtime_ns, size)`` for ``path`` or ``None`` when it is missing."""
    try:
        info = os.stat(path)
    except OSError:
        return None
    return info.st_mtime_ns, info.st_size


class SingleFileEditSession(LocationSession):
    """Present one text file for editing and save edits back in place.

    Local edits go through a :class:`DebouncedWriter`. Pending edits are flushed
    before another writer or reader is let in, and when the session moves to
    the background. External changes reload the text unless local edits are
    still waiting to be written.
    """

    queue_name = "openinplace-editor"

    def __init__(
        self,
        access: CoordinatedFileAccess,
        observer: ChangeObserver,
        grants: GrantRegistry,
        loop: OwnerContext,
        *,
        listener: SessionListener | None = None,
        autosave_interval: float = 1.0,
    ) -> None:
        super().__init__(access, observer, grants, loop, listener=listener)
        self._interval = autosave_interval
        self._text = ""
        self._last_signature: Optional[Signature] = None
        self._writer = self._new_writer()

    @property
    def text(self) -> str:
        """Return the current (possibly unsaved) text."""
        return self._text

    @property
    def title(self) -> str:
        """Return the display title, ``<DELETED>`` once the file is gone."""
        if self._state is SessionState.DELETED:
            return DELETED_TITLE
        return self._location.name if self._location is not None else ""

    @property
    def writer(self) -> DebouncedWriter:
        """Return the autosave writer for the current target."""
        return self._writer

    def set_text(self, text: str) -> None:
        """Record a local edit and schedule an autosave."""
        self._text = text
        if self._location is None:
            return
        self._writer.mark_dirty()

    def flush(self, callback: DoneCallback | None = None) -> None:
        """Write pending edits now."""
        self._writer.flush_now(callback)

    def retarget(self, location: LocationRef | None) -> None:
        """Save pending edits to the current file, then open ``location``."""
        self._flush_current()
        if self._writer.disabled:
            self._writer = self._new_writer()
        self._text = ""
        self._last_signature = None
        super().retarget(location)

    def close(self) -> None:
        """Save pending edits and release the file."""
        self._flush_current()
        self._writer.cancel()
        super().close()

    def reload(self) -> None:
        """Read the file through a coordinated read."""
        location = self._location
        if location is None:
            return
        if self._handle is None or not self._handle.is_valid():
            self._handle_deleted()
            return
        self._access.read(location, self._callback_for(self._finish_read), presenter=self)

    # ------------------------------------------------------------------ #
    # Session hooks                                                      #
    # ------------------------------------------------------------------ #

    def _handle_changed(self) -> None:
        if self._writer.dirty:
            LOGGER.debug("Keeping local edits to %s over an external change", self._location)
            return
        if self._writer.in_flight:
            LOGGER.debug("Deferring change notice for %s until our write lands", self._location)
            return
        if self._location is not None and self._last_signature is not None:
            if file_signature(self._location.path) == self._last_signature:
                LOGGER.debug("Ignoring change notice for our own write to %s", self._location)
                return
        self.reload()

    def _handle_moved(self, new_location: LocationRef) -> None:
        LOGGER.info("%s moved to %s", self._location, new_location)
        # The writer writes to whatever the current target is, so pending
        # edits follow the file to its new path.
        self._retarget(new_location, reload=not self._writer.dirty)

    def _handle_relinquish(self, resume: Callable[[], None], writing: bool) -> None:
        self._writer.flush_now(lambda error: resume())

    def _on_background(self) -> None:
        self._writer.flush_now(self._report_flush)

    def _on_foreground(self) -> None:
        if self._writer.dirty:
            return
        self.reload()

    def _on_deleted(self) -> None:
        self._writer.disable()

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _new_writer(self) -> DebouncedWriter:
        return DebouncedWriter(
            self._loop,
            self._write_current,
            interval=self._interval,
            on_error=self._emit_error,
        )

    def _flush_current(self) -> None:
        self._writer.flush_now(self._report_flush)
        if not self._writer.in_flight or self._location is None:
            return
        # The queued flush lands after this session moved on; it writes what
        # the current file should hold now.
        self._writer.rebind(partial(self._write_snapshot, self._location, self._text))
        self._writer = self._new_writer()

    def _write_snapshot(self, location: LocationRef, text: str, done: DoneCallback) -> None:
        self._access.write(location, text, done, presenter=self)

    def _write_current(self, done: DoneCallback) -> None:
        location = self._location
        if location is None or self._handle is None:
            done(None)
            return
        if not self._handle.is_valid():
            done(None)
            self._post(self._handle_deleted)
            return
        text = self._text
        recorded = self._callback_for(self._record_write)

        def _written(error: Optional[BaseException]) -> None:
            recorded(location, error)
            done(error)

        self._access.write(location, text, _written, presenter=self)

    def _record_write(self, location: LocationRef, error: Optional[BaseException]) -> None:
        if error is None and location == self._location:
            self._last_signature = file_signature(location.path)

    def _finish_read(self, text: Optional[str], error: Optional[BaseException]) -> None:
        if error is not None:
            if isinstance(error, FileNotFoundError):
                self._handle_deleted()
                return
            LOGGER.warning("Reading %s failed: %s", self._location, error)
            self._emit_error(error)
            return
        if self._writer.dirty:
            LOGGER.debug("Discarding reloaded text for %s; local edits pending", self._location)
            self._set_state(self._loaded_state())
            return
        self._text = text or ""
        if self._location is not None:
            self._last_signature = file_signature(self._location.path)
        self._set_state(self._loaded_state())
        self._listener.on_content(self, self._text)

    def _report_flush(self, error: Optional[BaseException]) -> None:
        if error is not None:
            self._emit_error(error)


__all__ = ["DELETED_TITLE", "SingleFileEditSession", "file_signature"]
