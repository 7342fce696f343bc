"""Application object wiring every OpenInPlace component together."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Optional

from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from openinplace.access import (
    CoordinatedFileAccess,
    FileCoordinator,
    GrantRegistry,
    PlaceholderMaterializer,
    PresenterRegistry,
)
from openinplace.config.models import OpenInPlaceConfig
from openinplace.handoff import DeepLinkOpener
from openinplace.handoff.opener import AcquireRoot, ErrorHandler
from openinplace.models import LocationRef
from openinplace.runtime import OwnerLoop
from openinplace.services import StatusServiceLookup
from openinplace.sessions import (
    DirectoryListingSession,
    LifecycleNotifier,
    LocationSession,
    SessionListener,
    SingleFileEditSession,
)
from openinplace.state import DefaultsStore
from openinplace.state.bookmarks import BookmarkCodec, BookmarkStore
from openinplace.watch import ChangeObserver

LOGGER = logging.getLogger(__name__)


class OpenInPlaceApp:
    """Own the shared registries, stores, and services of one process.

    Sessions created through :meth:`open_listing` and :meth:`open_editor` run on
    :attr:`loop` and follow :attr:`lifecycle` transitions.
    """

    def __init__(
        self,
        config: OpenInPlaceConfig | None = None,
        *,
        loop: OwnerLoop | None = None,
        observer_factory: Callable[[], BaseObserver] = Observer,
        acquire_root: AcquireRoot | None = None,
        handle_error: ErrorHandler | None = None,
        reply_opener: Callable[[str], object] | None = None,
    ) -> None:
        self.config = config or OpenInPlaceConfig()
        coordination = self.config.coordination
        materialization = self.config.materialization
        storage = self.config.storage
        suffix = materialization.placeholder_suffix

        self.loop = loop or OwnerLoop()
        self.grants = GrantRegistry(placeholder_suffix=suffix)
        self.presenters = PresenterRegistry()
        self.coordinator = FileCoordinator(
            self.presenters,
            lock_dir=Path(coordination.lock_dir),
            lock_timeout=coordination.lock_timeout_seconds,
            relinquish_timeout=coordination.relinquish_timeout_seconds,
        )
        self.materializer = PlaceholderMaterializer(
            suffix=suffix,
            timeout_seconds=materialization.timeout_seconds,
            poll_interval_seconds=materialization.poll_interval_seconds,
        )
        self.access = CoordinatedFileAccess(
            self.coordinator,
            materializer=self.materializer,
            max_workers=coordination.worker_threads,
        )
        self.observer = ChangeObserver(self.presenters, observer_factory=observer_factory)

        self.defaults = DefaultsStore(Path(storage.state_dir), filename=storage.defaults_file)
        codec = BookmarkCodec(placeholder_suffix=suffix)
        self.bookmarks = BookmarkStore(self.defaults, self.grants, key=storage.bookmarks_key, codec=codec)
        self.root_bookmarks = BookmarkStore(
            self.defaults, self.grants, key=storage.deep_link_bookmarks_key, codec=codec
        )

        self.lifecycle = LifecycleNotifier()
        self.deep_links = DeepLinkOpener(
            self.root_bookmarks,
            self.grants,
            acquire_root=acquire_root,
            open_callback=self.open_location,
            handle_error=handle_error,
            app_name=self.config.handoff.app_name,
            scheme=self.config.handoff.scheme,
            reply_opener=reply_opener,
        )
        self.status = StatusServiceLookup()

    # ------------------------------------------------------------------ #
    # Acquisition and bookmarks                                          #
    # ------------------------------------------------------------------ #

    def location_for(self, path: str | os.PathLike[str]) -> LocationRef:
        """Return a reference for ``path`` using the configured placeholder suffix."""
        return LocationRef.from_path(path, placeholder_suffix=self.config.materialization.placeholder_suffix)

    def add_location(self, path: str | os.PathLike[str]) -> LocationRef:
        """Grant ``path``, append it to the bookmark list, and save.

        Raises:
            FileNotFoundError: If nothing exists at ``path``.
        """
        location = self.location_for(path)
        if not location.exists(self.config.materialization.placeholder_suffix):
            raise FileNotFoundError(f"No such file or directory: {location.path}")
        return self.open_location(location)

    def open_location(self, location: LocationRef) -> LocationRef:
        """Remember a newly granted location in the main bookmark list."""
        self.bookmarks.add_location(location)
        LOGGER.info("Added %s", location.path)
        return location

    def locations(self) -> list[LocationRef]:
        """Return bookmarked locations, refreshing stale bookmarks."""
        return self.bookmarks.restore()

    def remove_location(self, index: int) -> LocationRef:
        """Forget the bookmarked location at ``index``.

        Raises:
            IndexError: If ``index`` is out of range.
        """
        locations = self.bookmarks.restore()
        removed = locations[index]
        self.bookmarks.remove_at(index)
        return removed

    # ------------------------------------------------------------------ #
    # Sessions                                                           #
    # ------------------------------------------------------------------ #

    def open_listing(
        self, location: LocationRef, listener: SessionListener | None = None
    ) -> DirectoryListingSession:
        """Create a listing session for ``location``, opened on the owner loop."""
        session = DirectoryListingSession(self.access, self.observer, self.grants, self.loop, listener=listener)
        self._attach(session, location)
        return session

    def open_editor(
        self, location: LocationRef, listener: SessionListener | None = None
    ) -> SingleFileEditSession:
        """Create an edit session for ``location``, opened on the owner loop."""
        session = SingleFileEditSession(
            self.access,
            self.observer,
            self.grants,
            self.loop,
            listener=listener,
            autosave_interval=self.config.autosave.quiescence_seconds,
        )
        self._attach(session, location)
        return session

    def close_session(self, session: LocationSession) -> None:
        """Stop lifecycle forwarding and close ``session`` on the owner loop."""
        self.lifecycle.remove(session)
        self.loop.call_soon(session.close)

    def _attach(self, session: LocationSession, location: Optional[LocationRef]) -> None:
        self.lifecycle.add(session)
        self.loop.call_soon(session.retarget, location)

    # ------------------------------------------------------------------ #
    # Shutdown                                                           #
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        """Stop background threads."""
        self.observer.stop()
        self.access.shutdown(wait=True)
        self.status.shutdown()
        self.loop.stop()

    def __enter__(self) -> "OpenInPlaceApp":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["OpenInPlaceApp"]
