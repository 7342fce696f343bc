"""One-shot coordinated read, write, list, and delete transactions.

Completion callbacks are delivered on an unspecified worker thread; callers that
own state must resynchronize (sessions hop onto their
:class:`~openinplace.runtime.OwnerLoop`). Each callback fires exactly once,
whether coordination failed, the I/O inside the coordinated region failed, or
the operation succeeded.
"""

from __future__ import annotations

import logging
import os
import shutil
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional, TypeVar

from openinplace.errors import CoordinationError, MaterializationError
from openinplace.models import LocationRef, placeholder_logical_name

from .coordinator import FileCoordinator, FilePresenter
from .placeholders import Materializer, PlaceholderMaterializer

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

ReadCallback = Callable[[Optional[str], Optional[BaseException]], None]
ListCallback = Callable[[Optional[list[LocationRef]], Optional[BaseException]], None]
DoneCallback = Callable[[Optional[BaseException]], None]

# Errors that belong on the completion channel rather than escaping the worker.
REPORTED_ERRORS = (CoordinationError, MaterializationError, OSError, UnicodeError)


class CoordinatedFileAccess:
    """Asynchronous coordinated file operations on shared locations."""

    def __init__(
        self,
        coordinator: FileCoordinator,
        *,
        materializer: Materializer | None = None,
        executor: ThreadPoolExecutor | None = None,
        max_workers: int = 4,
    ) -> None:
        self._coordinator = coordinator
        self._materializer = materializer or PlaceholderMaterializer()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="openinplace-io"
        )

    @property
    def coordinator(self) -> FileCoordinator:
        """Return the coordinator used for every transaction."""
        return self._coordinator

    def read(
        self,
        location: LocationRef,
        callback: ReadCallback,
        *,
        presenter: Optional[FilePresenter] = None,
    ) -> Future[None]:
        """Read ``location`` as UTF-8 text, materializing placeholders first."""

        def _transaction() -> str:
            self._materializer.ensure_materialized(location)
            return self._coordinator.coordinate_reading(
                location, _read_text, presenter=presenter, relinquish=False
            )

        return self._submit(
            location, presenter, _transaction, lambda text, error: callback(text, error), writing=False
        )

    def write(
        self,
        location: LocationRef,
        text: str,
        callback: DoneCallback,
        *,
        presenter: Optional[FilePresenter] = None,
    ) -> Future[None]:
        """Overwrite ``location`` in place with ``text``."""

        def _write(target: LocationRef) -> None:
            # In-place overwrite keeps the inode; providers track identity by it.
            with open(target.path, "w", encoding="utf-8") as handle:
                handle.write(text)

        def _transaction() -> None:
            self._coordinator.coordinate_writing(location, _write, presenter=presenter, relinquish=False)

        return self._submit(location, presenter, _transaction, lambda _, error: callback(error), writing=True)

    def list(
        self,
        location: LocationRef,
        callback: ListCallback,
        *,
        presenter: Optional[FilePresenter] = None,
    ) -> Future[None]:
        """List the entries of directory ``location`` with placeholders resolved."""
        suffix = getattr(self._materializer, "suffix", None)

        def _enumerate(target: LocationRef) -> list[LocationRef]:
            return list_directory(target, placeholder_suffix=suffix)

        def _transaction() -> list[LocationRef]:
            self._materializer.ensure_materialized(location)
            return self._coordinator.coordinate_reading(
                location, _enumerate, presenter=presenter, relinquish=False
            )

        return self._submit(
            location, presenter, _transaction, lambda entries, error: callback(entries, error), writing=False
        )

    def delete(
        self,
        location: LocationRef,
        callback: DoneCallback,
        *,
        presenter: Optional[FilePresenter] = None,
    ) -> Future[None]:
        """Remove the file or directory tree at ``location``."""

        def _transaction() -> None:
            self._coordinator.coordinate_writing(
                location, _remove_item, presenter=presenter, for_deleting=True, relinquish=False
            )

        return self._submit(location, presenter, _transaction, lambda _, error: callback(error), writing=True)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker pool if this instance created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def _submit(
        self,
        location: LocationRef,
        presenter: Optional[FilePresenter],
        transaction: Callable[[], T],
        deliver: Callable[[Optional[T], Optional[BaseException]], None],
        *,
        writing: bool,
    ) -> Future[None]:
        # Presenters relinquish before a worker is taken; their flushes share this pool.
        outcome: Future[None] = Future()

        def _job() -> None:
            try:
                value = transaction()
            except REPORTED_ERRORS as exc:
                LOGGER.debug("Coordinated operation failed: %s", exc)
                deliver(None, exc)
                return
            deliver(value, None)

        def _proceed() -> None:
            try:
                job = self._executor.submit(_job)
            except RuntimeError:
                deliver(None, CoordinationError(f"File access is shut down; {location.name} was not touched."))
                outcome.set_result(None)
                return
            job.add_done_callback(lambda done: _copy_outcome(done, outcome))

        self._coordinator.relinquish_then(location, _proceed, presenter=presenter, writing=writing)
        return outcome


def _copy_outcome(source: Future[None], target: Future[None]) -> None:
    error = source.exception()
    if error is not None:
        target.set_exception(error)
    else:
        target.set_result(None)


def list_directory(location: LocationRef, *, placeholder_suffix: str | None = None) -> list[LocationRef]:
    """Enumerate ``location`` and map placeholder entries to their logical names.

    Args:
        location: Directory to enumerate.
        placeholder_suffix: Provider placeholder suffix; resolution is skipped when empty.

    Returns:
        list[LocationRef]: Entries sorted case-insensitively by display name.
    """
    entries: dict[str, LocationRef] = {}
    with os.scandir(location.path) as iterator:
        for entry in iterator:
            logical = placeholder_logical_name(entry.name, placeholder_suffix) if placeholder_suffix else None
            if logical is not None:
                path = os.path.join(location.path, logical)
                # A materialized sibling takes precedence over its stand-in.
                entries.setdefault(
                    path,
                    LocationRef(path=path, is_directory=False, display_name=logical, placeholder=True),
                )
                continue
            entries[entry.path] = LocationRef(
                path=entry.path,
                is_directory=entry.is_dir(),
                display_name=entry.name,
            )
    return sorted(entries.values(), key=lambda ref: (ref.display_name.casefold(), ref.display_name))


def _read_text(location: LocationRef) -> str:
    with open(location.path, "r", encoding="utf-8") as handle:
        return handle.read()


def _remove_item(location: LocationRef) -> None:
    if os.path.isdir(location.path) and not os.path.islink(location.path):
        shutil.rmtree(location.path)
    else:
        os.remove(location.path)


__all__ = ["CoordinatedFileAccess", "list_directory", "REPORTED_ERRORS"]
