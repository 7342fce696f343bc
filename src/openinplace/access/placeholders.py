"""On-demand materialization of cloud placeholders."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Protocol

from openinplace.errors import MaterializationError
from openinplace.models import DEFAULT_PLACEHOLDER_SUFFIX, LocationRef, placeholder_logical_name

LOGGER = logging.getLogger(__name__)


class Materializer(Protocol):
    """Capability that makes placeholder content available before it is read."""

    def ensure_materialized(self, location: LocationRef) -> None: ...


class PlaceholderMaterializer:
    """Wait for a provider to replace ``.<name><suffix>`` stand-ins with content.

    Download is requested through ``request_download`` (a no-op by default, as a
    sync daemon usually materializes on its own) and then polled for until the
    logical path exists or the timeout expires.
    """

    def __init__(
        self,
        *,
        suffix: str = DEFAULT_PLACEHOLDER_SUFFIX,
        timeout_seconds: float = 30.0,
        poll_interval_seconds: float = 0.25,
        request_download: Callable[[Path], None] | None = None,
    ) -> None:
        self._suffix = suffix
        self._timeout = max(0.0, timeout_seconds)
        self._poll_interval = max(0.01, poll_interval_seconds)
        self._request_download = request_download

    @property
    def suffix(self) -> str:
        """Return the placeholder suffix handled by this materializer."""
        return self._suffix

    def is_placeholder_name(self, name: str) -> bool:
        """Return whether ``name`` follows the placeholder naming convention."""
        return placeholder_logical_name(name, self._suffix) is not None

    def ensure_materialized(self, location: LocationRef) -> None:
        """Block until the content for ``location`` exists locally.

        Locations that exist, or that have no placeholder either, return
        immediately; the caller's own I/O then decides what happens.

        Raises:
            MaterializationError: If the content does not arrive in time or the
                download request fails.
        """
        target = location.fs_path
        stand_in = location.placeholder_path(self._suffix)
        if target.exists() or not stand_in.exists():
            return

        LOGGER.info("Requesting download of %s", location.path)
        if self._request_download is not None:
            try:
                self._request_download(stand_in)
            except OSError as exc:
                raise MaterializationError(f"Could not start download of {location.name}: {exc}") from exc

        deadline = time.monotonic() + self._timeout
        while not target.exists():
            if time.monotonic() >= deadline:
                raise MaterializationError(
                    f"Timed out waiting for {location.name} to download from its provider."
                )
            time.sleep(self._poll_interval)


__all__ = ["Materializer", "PlaceholderMaterializer"]
