"""Coordination primitive serializing access to shared locations.

:class:`FileCoordinator` plays two roles. Across processes it holds a
``filelock`` lock keyed by the location's real path for the duration of an
accessor. Inside the process it asks the other registered presenters of the
location to relinquish (flush pending state) before the lock is taken, and
tells them afterwards what happened to the item.
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, TypeVar

from filelock import FileLock, Timeout

from openinplace.errors import CoordinationError, CoordinationTimeoutError
from openinplace.models import LocationRef

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class FilePresenter(Protocol):
    """Capability implemented by whoever owns live state for a location.

    Every method is invoked on the presenter's own ``presenter_queue``, never on
    the caller's thread.
    """

    @property
    def presented_location(self) -> Optional[LocationRef]: ...

    @property
    def presenter_queue(self) -> Executor: ...

    def on_changed(self) -> None: ...

    def on_moved(self, new_location: LocationRef) -> None: ...

    def on_deleted(self) -> None: ...

    def on_child_appeared(self, location: LocationRef) -> None: ...

    def relinquish_to_reader(self, resume: Callable[[], None]) -> None: ...

    def relinquish_to_writer(self, resume: Callable[[], None]) -> None: ...


class LazyPresenterQueue:
    """Serial operation queue created on first use and reused afterwards."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    def get(self) -> ThreadPoolExecutor:
        """Return the queue, creating it when needed."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=self._name)
            return self._executor

    @property
    def created(self) -> bool:
        """Return whether the queue has been created."""
        return self._executor is not None

    def shutdown(self) -> None:
        """Stop the queue without waiting for queued deliveries."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)


class PresenterRegistry:
    """In-process registry of presenters, keyed by their current location."""

    def __init__(self) -> None:
        self._presenters: list[FilePresenter] = []
        self._lock = threading.Lock()

    def add(self, presenter: FilePresenter) -> None:
        """Register ``presenter``; adding twice is a no-op."""
        with self._lock:
            if not any(existing is presenter for existing in self._presenters):
                self._presenters.append(presenter)

    def remove(self, presenter: FilePresenter) -> None:
        """Unregister ``presenter`` if present."""
        with self._lock:
            self._presenters = [existing for existing in self._presenters if existing is not presenter]

    def __contains__(self, presenter: object) -> bool:
        with self._lock:
            return any(existing is presenter for existing in self._presenters)

    def presenting(
        self,
        location: LocationRef,
        *,
        exclude: Optional[FilePresenter] = None,
    ) -> list[FilePresenter]:
        """Return presenters whose location is ``location``."""
        return self._matching(location.path, exclude)

    def presenting_parent_of(
        self,
        location: LocationRef,
        *,
        exclude: Optional[FilePresenter] = None,
    ) -> list[FilePresenter]:
        """Return presenters watching the directory that contains ``location``."""
        return self._matching(str(location.fs_path.parent), exclude)

    def deliver(self, presenter: FilePresenter, method: str, *args: Any) -> None:
        """Invoke ``presenter.<method>(*args)`` on the presenter's queue."""
        callback = getattr(presenter, method)

        def _run() -> None:
            try:
                callback(*args)
            except Exception:  # pragma: no cover - surfaced through logging
                LOGGER.exception("Presenter %r failed handling %s", presenter, method)

        try:
            presenter.presenter_queue.submit(_run)
        except RuntimeError:
            LOGGER.debug("Presenter %r queue is shut down; dropping %s", presenter, method)

    def _matching(self, path: str, exclude: Optional[FilePresenter]) -> list[FilePresenter]:
        with self._lock:
            candidates = list(self._presenters)
        matches: list[FilePresenter] = []
        for presenter in candidates:
            if presenter is exclude:
                continue
            current = presenter.presented_location
            if current is not None and current.path == path:
                matches.append(presenter)
        return matches


class FileCoordinator:
    """Serialize reads and writes of a location with other presenters and processes."""

    def __init__(
        self,
        presenters: PresenterRegistry,
        *,
        lock_dir: Path,
        lock_timeout: float = 10.0,
        relinquish_timeout: float = 5.0,
    ) -> None:
        self._presenters = presenters
        self._lock_dir = lock_dir.expanduser()
        self._lock_timeout = lock_timeout
        self._relinquish_timeout = relinquish_timeout

    @property
    def presenters(self) -> PresenterRegistry:
        """Return the registry consulted for relinquish requests and notices."""
        return self._presenters

    def coordinate_reading(
        self,
        location: LocationRef,
        accessor: Callable[[LocationRef], T],
        *,
        presenter: Optional[FilePresenter] = None,
        relinquish: bool = True,
    ) -> T:
        """Run ``accessor`` while holding the coordination lock for reading.

        Args:
            location: Location being read.
            accessor: Callable performing the I/O; its errors propagate unchanged.
            presenter: Presenter issuing the read; it is not asked to relinquish.
            relinquish: Ask other presenters to relinquish first; pass ``False``
                when :meth:`relinquish_then` already did.

        Returns:
            T: Whatever ``accessor`` returns.

        Raises:
            CoordinationError: If the lock cannot be obtained; ``accessor`` is not run.
        """
        if relinquish:
            self._relinquish(location, presenter, writing=False)
        with self._locked(location):
            return accessor(location)

    def coordinate_writing(
        self,
        location: LocationRef,
        accessor: Callable[[LocationRef], T],
        *,
        presenter: Optional[FilePresenter] = None,
        for_deleting: bool = False,
        relinquish: bool = True,
    ) -> T:
        """Run ``accessor`` while holding the coordination lock for writing.

        Other presenters of ``location`` flush first; afterwards they receive a
        change (or deletion) notice and presenters of the parent directory learn
        about the new or changed child.

        Raises:
            CoordinationError: If the lock cannot be obtained; ``accessor`` is not run.
        """
        existed = location.fs_path.exists()
        if relinquish:
            self._relinquish(location, presenter, writing=True)
        with self._locked(location):
            result = accessor(location)

        if for_deleting:
            for other in self._presenters.presenting(location, exclude=presenter):
                self._presenters.deliver(other, "on_deleted")
            for other in self._presenters.presenting_parent_of(location, exclude=presenter):
                self._presenters.deliver(other, "on_changed")
            return result

        for other in self._presenters.presenting(location, exclude=presenter):
            self._presenters.deliver(other, "on_changed")
        for other in self._presenters.presenting_parent_of(location, exclude=presenter):
            if existed:
                self._presenters.deliver(other, "on_changed")
            else:
                self._presenters.deliver(other, "on_child_appeared", location)
        return result

    def relinquish_then(
        self,
        location: LocationRef,
        proceed: Callable[[], None],
        *,
        presenter: Optional[FilePresenter] = None,
        writing: bool = False,
    ) -> None:
        """Ask the other presenters of ``location`` to relinquish, then call ``proceed``.

        Nothing blocks while presenters flush. ``proceed`` runs exactly once:
        straight away when nobody else presents ``location``, otherwise on the
        thread delivering the last acknowledgement, or on a timer thread when
        the relinquish timeout expires first.
        """
        others = self._presenters.presenting(location, exclude=presenter)
        if not others:
            proceed()
            return

        method = "relinquish_to_writer" if writing else "relinquish_to_reader"
        countdown = _RelinquishCountdown(len(others), proceed, location)
        timer = threading.Timer(self._relinquish_timeout, countdown.expire)
        timer.daemon = True
        countdown.timer = timer
        timer.start()
        for other in others:
            self._presenters.deliver(other, method, countdown.acknowledger())

    def lock_path(self, location: LocationRef) -> Path:
        """Return the lock file guarding ``location``."""
        digest = hashlib.sha1(os.path.realpath(location.path).encode("utf-8")).hexdigest()
        return self._lock_dir / f"{digest}.lock"

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _locked(self, location: LocationRef) -> "_HeldLock":
        try:
            self._lock_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CoordinationError(f"Cannot prepare coordination for {location.name}: {exc}") from exc
        lock = FileLock(str(self.lock_path(location)), timeout=self._lock_timeout)
        try:
            lock.acquire()
        except Timeout as exc:
            raise CoordinationTimeoutError(
                f"{location.name} is in use by another process; gave up after {self._lock_timeout:g}s."
            ) from exc
        except OSError as exc:
            raise CoordinationError(f"Coordination for {location.name} failed: {exc}") from exc
        return _HeldLock(lock)

    def _relinquish(self, location: LocationRef, presenter: Optional[FilePresenter], *, writing: bool) -> None:
        done = threading.Event()
        self.relinquish_then(location, done.set, presenter=presenter, writing=writing)
        done.wait()


class _RelinquishCountdown:
    """Call ``proceed`` once every presenter acknowledged or the timer expired."""

    def __init__(self, count: int, proceed: Callable[[], None], location: LocationRef) -> None:
        self._remaining = count
        self._proceed = proceed
        self._location = location
        self._fired = False
        self._seen: set[object] = set()
        self._lock = threading.Lock()
        self.timer: threading.Timer | None = None

    def acknowledger(self) -> Callable[[], None]:
        """Return a resume callback counting at most once."""
        token = object()
        return lambda: self._acknowledge(token)

    def expire(self) -> None:
        with self._lock:
            if self._fired:
                return
            self._fired = True
        LOGGER.warning("Presenter did not relinquish %s in time; continuing", self._location.path)
        self._proceed()

    def _acknowledge(self, token: object) -> None:
        with self._lock:
            if self._fired or token in self._seen:
                return
            self._seen.add(token)
            self._remaining -= 1
            if self._remaining > 0:
                return
            self._fired = True
        if self.timer is not None:
            self.timer.cancel()
        self._proceed()


class _HeldLock:
    """Context manager releasing an already acquired file lock."""

    def __init__(self, lock: FileLock) -> None:
        self._lock = lock

    def __enter__(self) -> None:
        return None

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()


__all__ = [
    "FileCoordinator",
    "FilePresenter",
    "LazyPresenterQueue",
    "PresenterRegistry",
]
