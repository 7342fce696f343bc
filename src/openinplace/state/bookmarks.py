"""Durable bookmarks for granted locations.

A bookmark is an opaque blob that can be persisted and later resolved back into
a :class:`~openinplace.models.LocationRef`. Resolution may report the bookmark
as stale (the item was renamed or replaced) without failing; stale bookmarks
are regenerated by :meth:`BookmarkStore.restore`.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

from openinplace.access.grants import GrantRegistry, ScopedResourceHandle
from openinplace.errors import AccessDeniedError, BookmarkError, BookmarkResolutionError
from openinplace.models import DEFAULT_PLACEHOLDER_SUFFIX, LocationRef

from . import DefaultsStore
from .errors import StateError

LOGGER = logging.getLogger(__name__)

BOOKMARK_FORMAT_VERSION = 1


class BookmarkCodec:
    """Create and resolve bookmark blobs based on path plus file identity."""

    def __init__(self, *, placeholder_suffix: str = DEFAULT_PLACEHOLDER_SUFFIX) -> None:
        self._suffix = placeholder_suffix

    def create(self, location: LocationRef) -> bytes:
        """Serialize ``location`` into a bookmark.

        Raises:
            BookmarkError: If the item cannot be inspected.
        """
        try:
            info = self._stat(Path(location.path))
        except OSError as exc:
            raise BookmarkError(f"Cannot create bookmark for {location.name}: {exc}") from exc
        payload = {
            "version": BOOKMARK_FORMAT_VERSION,
            "path": location.path,
            "device": info.st_dev,
            "inode": info.st_ino,
            "is_directory": location.is_directory,
            "display_name": location.display_name,
        }
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")

    def resolve(self, blob: bytes) -> tuple[LocationRef, bool]:
        """Resolve ``blob`` into a location.

        Returns:
            tuple[LocationRef, bool]: The resolved location and whether the
            bookmark is stale and should be regenerated.

        Raises:
            BookmarkResolutionError: If the blob is corrupt or the item is gone.
        """
        payload = self._decode(blob)
        path = Path(payload["path"])
        is_directory = bool(payload.get("is_directory", False))
        device, inode = payload.get("device"), payload.get("inode")

        try:
            current = self._stat(path)
        except OSError:
            current = None

        if current is not None and (current.st_dev, current.st_ino) == (device, inode):
            return self._location(path, is_directory, payload), False

        moved = self._find_moved(path, device, inode)
        if moved is not None:
            LOGGER.debug("Bookmark for %s now resolves to %s", path, moved)
            return LocationRef.from_path(moved, is_directory=is_directory, placeholder_suffix=self._suffix), True

        if current is not None:
            # Same path, different identity: replaced by another writer.
            return self._location(path, is_directory, payload), True

        raise BookmarkResolutionError(f"{path} no longer exists.")

    def _location(self, path: Path, is_directory: bool, payload: dict[str, Any]) -> LocationRef:
        location = LocationRef.from_path(path, is_directory=is_directory, placeholder_suffix=self._suffix)
        stored_name = payload.get("display_name")
        if stored_name and location.placeholder:
            return location.model_copy(update={"display_name": stored_name})
        return location

    def _decode(self, blob: bytes) -> dict[str, Any]:
        try:
            payload = json.loads(blob.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise BookmarkResolutionError(f"Corrupt bookmark data: {exc}") from exc
        if not isinstance(payload, dict) or payload.get("version") != BOOKMARK_FORMAT_VERSION:
            raise BookmarkResolutionError("Unsupported bookmark format.")
        if not isinstance(payload.get("path"), str):
            raise BookmarkResolutionError("Bookmark is missing its path.")
        return payload

    def _stat(self, path: Path) -> os.stat_result:
        try:
            return os.stat(path)
        except FileNotFoundError:
            placeholder = path.with_name(f".{path.name}{self._suffix}")
            return os.stat(placeholder)

    def _find_moved(self, path: Path, device: Optional[int], inode: Optional[int]) -> Optional[Path]:
        if device is None or inode is None:
            return None
        try:
            with os.scandir(path.parent) as iterator:
                for entry in iterator:
                    try:
                        info = entry.stat()
                    except OSError:
                        continue
                    if (info.st_dev, info.st_ino) == (device, inode):
                        return Path(entry.path)
        except OSError:
            return None
        return None


@dataclass(slots=True)
class SaveReport:
    """Outcome of a bookmark save.

    Attributes:
        saved: Locations whose bookmarks were persisted, in order.
        failures: Locations that could not be bookmarked with the reason.
    """

    saved: list[LocationRef] = field(default_factory=list)
    failures: list[tuple[LocationRef, Exception]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return whether every location was persisted."""
        return not self.failures


class BookmarkStore:
    """Ordered list of granted locations persisted as bookmarks in one slot."""

    def __init__(
        self,
        defaults: DefaultsStore,
        grants: GrantRegistry,
        *,
        key: str = "bookmarks",
        codec: BookmarkCodec | None = None,
    ) -> None:
        self._defaults = defaults
        self._grants = grants
        self._key = key
        self._codec = codec or BookmarkCodec(placeholder_suffix=grants.placeholder_suffix)

    @property
    def key(self) -> str:
        """Return the slot name the bookmarks live under."""
        return self._key

    def save(self, locations: Sequence[LocationRef]) -> SaveReport:
        """Persist bookmarks for ``locations``, replacing the stored list.

        Locations that cannot be bookmarked are logged and skipped; the rest
        are still saved.
        """
        report = SaveReport()
        blobs: list[str] = []
        for location in locations:
            handle = ScopedResourceHandle(location, self._grants)
            if not handle.acquire():
                refused = AccessDeniedError(f"Access to {location.name} was not granted.")
                LOGGER.warning("Skipping bookmark for %s: %s", location.path, refused)
                report.failures.append((location, refused))
                continue
            try:
                blob = self._codec.create(location)
            except BookmarkError as exc:
                LOGGER.warning("Skipping bookmark for %s: %s", location.path, exc)
                report.failures.append((location, exc))
                continue
            finally:
                handle.release()
            blobs.append(base64.b64encode(blob).decode("ascii"))
            report.saved.append(location)

        self._defaults.set_list(self._key, blobs)
        return report

    def restore(self, *, prune: bool = False) -> list[LocationRef]:
        """Resolve the stored bookmarks in order.

        Entries that fail to resolve are dropped. When any entry is stale,
        every bookmark is regenerated by saving the full resolved list.

        Args:
            prune: Also re-save when an entry failed, removing it from storage.

        Returns:
            list[LocationRef]: Resolved locations in their persisted order.
        """
        try:
            encoded = self._defaults.get_list(self._key)
        except StateError as exc:
            LOGGER.warning("Could not read bookmarks: %s", exc)
            return []

        locations: list[LocationRef] = []
        any_stale = False
        any_failed = False
        for value in encoded:
            try:
                blob = base64.b64decode(value.encode("ascii"), validate=True)
                location, stale = self._codec.resolve(blob)
            except (binascii.Error, UnicodeEncodeError, BookmarkError) as exc:
                LOGGER.debug("Dropping bookmark that no longer resolves: %s", exc)
                any_failed = True
                continue
            any_stale = any_stale or stale
            locations.append(location)

        if any_stale or (prune and any_failed):
            LOGGER.info("Refreshing %d bookmarks in %s", len(locations), self._key)
            self.save(locations)
        return locations

    def add_location(self, location: LocationRef) -> list[LocationRef]:
        """Append ``location`` to the stored list and persist it."""
        locations = self.restore()
        locations.append(location)
        self.save(locations)
        return locations

    def remove_at(self, index: int) -> list[LocationRef]:
        """Remove the entry at ``index`` and persist the remaining list.

        Raises:
            IndexError: If ``index`` is out of range.
        """
        locations = self.restore()
        del locations[index]
        self.save(locations)
        return locations


__all__ = ["BOOKMARK_FORMAT_VERSION", "BookmarkCodec", "BookmarkStore", "SaveReport"]
