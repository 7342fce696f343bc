"""Tests for coordinated file transactions and the coordinator."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Optional

import pytest
from filelock import FileLock

from openinplace.access import (
    CoordinatedFileAccess,
    FileCoordinator,
    PlaceholderMaterializer,
    PresenterRegistry,
    list_directory,
)
from openinplace.errors import CoordinationError, CoordinationTimeoutError, MaterializationError
from openinplace.models import LocationRef


def _collect(calls: list[tuple[Any, ...]]) -> Callable[..., None]:
    return lambda *args: calls.append(args)


class _RecordingPresenter:
    """Minimal presenter recording the notices it receives."""

    def __init__(self, location: LocationRef) -> None:
        self.presented_location: Optional[LocationRef] = location
        self.presenter_queue = ThreadPoolExecutor(max_workers=1)
        self.notices: list[tuple[str, tuple[Any, ...]]] = []
        self.received = threading.Event()

    def _record(self, name: str, *args: Any) -> None:
        self.notices.append((name, args))
        self.received.set()

    def on_changed(self) -> None:
        self._record("on_changed")

    def on_moved(self, new_location: LocationRef) -> None:
        self._record("on_moved", new_location)

    def on_deleted(self) -> None:
        self._record("on_deleted")

    def on_child_appeared(self, location: LocationRef) -> None:
        self._record("on_child_appeared", location)

    def relinquish_to_reader(self, resume: Callable[[], None]) -> None:
        self._record("relinquish_to_reader")
        resume()

    def relinquish_to_writer(self, resume: Callable[[], None]) -> None:
        self._record("relinquish_to_writer")
        resume()


def _access(tmp_path: Path, **kwargs: Any) -> CoordinatedFileAccess:
    coordinator = FileCoordinator(PresenterRegistry(), lock_dir=tmp_path / "locks", lock_timeout=0.2)
    kwargs.setdefault("materializer", PlaceholderMaterializer(timeout_seconds=0.2, poll_interval_seconds=0.01))
    return CoordinatedFileAccess(coordinator, **kwargs)


def test_read_and_write_round_trip(tmp_path: Path) -> None:
    access = _access(tmp_path)
    location = LocationRef.from_path(tmp_path / "note.txt")
    calls: list[tuple[Any, ...]] = []

    access.write(location, "hello\n", _collect(calls)).result()
    access.read(location, _collect(calls)).result()
    access.shutdown()

    assert calls == [(None,), ("hello\n", None)]


def test_write_keeps_file_identity(tmp_path: Path) -> None:
    access = _access(tmp_path)
    path = tmp_path / "note.txt"
    path.write_text("before", encoding="utf-8")
    inode = path.stat().st_ino

    access.write(LocationRef.from_path(path), "after", lambda error: None).result()
    access.shutdown()

    assert path.read_text(encoding="utf-8") == "after"
    assert path.stat().st_ino == inode


def test_coordination_failure_reports_once_without_running_accessor(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    access = _access(tmp_path)
    path = tmp_path / "note.txt"
    path.write_text("untouched", encoding="utf-8")

    def _refuse(location: LocationRef) -> None:
        raise CoordinationError("refused")

    monkeypatch.setattr(access.coordinator, "_locked", _refuse)
    calls: list[tuple[Any, ...]] = []

    access.write(LocationRef.from_path(path), "changed", _collect(calls)).result()
    access.shutdown()

    assert len(calls) == 1
    assert isinstance(calls[0][0], CoordinationError)
    assert path.read_text(encoding="utf-8") == "untouched"


def test_io_failure_inside_coordination_reports_once(tmp_path: Path) -> None:
    access = _access(tmp_path)
    calls: list[tuple[Any, ...]] = []

    access.read(LocationRef.from_path(tmp_path / "missing.txt"), _collect(calls)).result()
    access.shutdown()

    assert len(calls) == 1
    text, error = calls[0]
    assert text is None
    assert isinstance(error, FileNotFoundError)


def test_lock_held_by_another_process_times_out(tmp_path: Path) -> None:
    coordinator = FileCoordinator(PresenterRegistry(), lock_dir=tmp_path / "locks", lock_timeout=0.1)
    path = tmp_path / "note.txt"
    path.write_text("x", encoding="utf-8")
    location = LocationRef.from_path(path)
    ran: list[LocationRef] = []

    (tmp_path / "locks").mkdir()
    with FileLock(str(coordinator.lock_path(location))):
        with pytest.raises(CoordinationTimeoutError):
            coordinator.coordinate_reading(location, ran.append)

    assert ran == []
    assert coordinator.coordinate_reading(location, lambda target: target.fs_path.read_text()) == "x"


def test_list_resolves_placeholders_and_sorts(tmp_path: Path) -> None:
    (tmp_path / "Zeta.txt").write_text("z", encoding="utf-8")
    (tmp_path / "alpha.txt").write_text("a", encoding="utf-8")
    (tmp_path / ".report.pdf.icloud").write_bytes(b"")
    (tmp_path / "sub").mkdir()
    access = _access(tmp_path / "state")
    calls: list[tuple[Any, ...]] = []

    access.list(LocationRef.from_path(tmp_path), _collect(calls)).result()
    access.shutdown()

    entries, error = calls[0]
    assert error is None
    assert [entry.name for entry in entries] == ["alpha.txt", "report.pdf", "state", "sub", "Zeta.txt"]
    report = entries[1]
    assert report.placeholder
    assert report.path == str(tmp_path / "report.pdf")
    assert [entry.is_directory for entry in entries] == [False, False, True, True, False]


def test_materialized_entry_wins_over_placeholder(tmp_path: Path) -> None:
    (tmp_path / ".doc.txt.icloud").write_bytes(b"")
    (tmp_path / "doc.txt").write_text("here", encoding="utf-8")

    entries = list_directory(LocationRef.from_path(tmp_path), placeholder_suffix=".icloud")

    assert len(entries) == 1
    assert not entries[0].placeholder


def test_read_waits_for_placeholder_download(tmp_path: Path) -> None:
    (tmp_path / ".doc.txt.icloud").write_bytes(b"")
    target = tmp_path / "doc.txt"
    requested: list[Path] = []

    def _download(stand_in: Path) -> None:
        requested.append(stand_in)
        target.write_text("downloaded", encoding="utf-8")

    access = _access(
        tmp_path / "state",
        materializer=PlaceholderMaterializer(timeout_seconds=1.0, request_download=_download),
    )
    calls: list[tuple[Any, ...]] = []

    access.read(LocationRef.from_path(target), _collect(calls)).result()
    access.shutdown()

    assert calls == [("downloaded", None)]
    assert requested == [tmp_path / ".doc.txt.icloud"]


def test_read_fails_when_placeholder_never_arrives(tmp_path: Path) -> None:
    (tmp_path / ".doc.txt.icloud").write_bytes(b"")
    access = _access(tmp_path / "state")
    calls: list[tuple[Any, ...]] = []

    access.read(LocationRef.from_path(tmp_path / "doc.txt"), _collect(calls)).result()
    access.shutdown()

    assert len(calls) == 1
    assert isinstance(calls[0][1], MaterializationError)


def test_delete_removes_directory_trees(tmp_path: Path) -> None:
    folder = tmp_path / "tree"
    (folder / "nested").mkdir(parents=True)
    (folder / "nested" / "leaf.txt").write_text("leaf", encoding="utf-8")
    access = _access(tmp_path / "state")
    calls: list[tuple[Any, ...]] = []

    access.delete(LocationRef.from_path(folder), _collect(calls)).result()
    access.shutdown()

    assert calls == [(None,)]
    assert not folder.exists()


def test_writer_notifies_presenters_of_item_and_parent(tmp_path: Path) -> None:
    presenters = PresenterRegistry()
    coordinator = FileCoordinator(presenters, lock_dir=tmp_path / "locks", relinquish_timeout=1.0)
    folder = tmp_path / "docs"
    folder.mkdir()
    existing = folder / "existing.txt"
    existing.write_text("old", encoding="utf-8")

    file_presenter = _RecordingPresenter(LocationRef.from_path(existing))
    folder_presenter = _RecordingPresenter(LocationRef.from_path(folder))
    presenters.add(file_presenter)
    presenters.add(folder_presenter)

    def _write(target: LocationRef) -> None:
        target.fs_path.write_text("new", encoding="utf-8")

    coordinator.coordinate_writing(LocationRef.from_path(existing), _write)
    coordinator.coordinate_writing(LocationRef.from_path(folder / "fresh.txt"), _write)

    for presenter in (file_presenter, folder_presenter):
        presenter.presenter_queue.shutdown(wait=True)

    assert [name for name, _ in file_presenter.notices] == ["relinquish_to_writer", "on_changed"]
    names = [name for name, _ in folder_presenter.notices]
    assert names == ["on_changed", "on_child_appeared"]
    appeared = folder_presenter.notices[1][1][0]
    assert appeared.name == "fresh.txt"


def test_issuing_presenter_is_not_notified(tmp_path: Path) -> None:
    presenters = PresenterRegistry()
    coordinator = FileCoordinator(presenters, lock_dir=tmp_path / "locks")
    path = tmp_path / "doc.txt"
    path.write_text("x", encoding="utf-8")
    presenter = _RecordingPresenter(LocationRef.from_path(path))
    presenters.add(presenter)

    coordinator.coordinate_reading(presenter.presented_location, lambda target: None, presenter=presenter)
    coordinator.coordinate_writing(presenter.presented_location, lambda target: None, presenter=presenter)
    presenter.presenter_queue.shutdown(wait=True)

    assert presenter.notices == []


def test_deletion_notifies_presenters(tmp_path: Path) -> None:
    presenters = PresenterRegistry()
    coordinator = FileCoordinator(presenters, lock_dir=tmp_path / "locks")
    path = tmp_path / "doc.txt"
    path.write_text("x", encoding="utf-8")
    presenter = _RecordingPresenter(LocationRef.from_path(path))
    presenters.add(presenter)

    coordinator.coordinate_writing(
        LocationRef.from_path(path), lambda target: target.fs_path.unlink(), for_deleting=True
    )
    presenter.presenter_queue.shutdown(wait=True)

    assert [name for name, _ in presenter.notices] == ["relinquish_to_writer", "on_deleted"]


class _FlushingPresenter(_RecordingPresenter):
    """Presenter that writes its pending text through ``access`` when asked to relinquish."""

    def __init__(self, location: LocationRef, access: CoordinatedFileAccess) -> None:
        super().__init__(location)
        self.access = access

    def relinquish_to_reader(self, resume: Callable[[], None]) -> None:
        self._record("relinquish_to_reader")
        self.access.write(self.presented_location, "flushed", lambda error: resume(), presenter=self)


def test_relinquish_flush_runs_with_single_worker(tmp_path: Path) -> None:
    presenters = PresenterRegistry()
    coordinator = FileCoordinator(presenters, lock_dir=tmp_path / "locks", relinquish_timeout=5.0)
    access = CoordinatedFileAccess(coordinator, max_workers=1)
    path = tmp_path / "doc.txt"
    path.write_text("old", encoding="utf-8")
    presenter = _FlushingPresenter(LocationRef.from_path(path), access)
    presenters.add(presenter)
    calls: list[tuple[Any, ...]] = []

    access.read(LocationRef.from_path(path), _collect(calls)).result(timeout=4.0)

    assert calls == [("flushed", None)]
    presenter.presenter_queue.shutdown(wait=True)
    access.shutdown()


def test_relinquish_waits_for_every_presenter(tmp_path: Path) -> None:
    presenters = PresenterRegistry()
    coordinator = FileCoordinator(presenters, lock_dir=tmp_path / "locks", relinquish_timeout=5.0)
    location = LocationRef.from_path(tmp_path / "doc.txt")
    first = _RecordingPresenter(location)
    second = _RecordingPresenter(location)
    presenters.add(first)
    presenters.add(second)
    proceeded = threading.Event()

    coordinator.relinquish_then(location, proceeded.set, presenter=first, writing=True)

    assert proceeded.wait(2.0)
    second.presenter_queue.shutdown(wait=True)
    assert [name for name, _ in second.notices] == ["relinquish_to_writer"]
    assert first.notices == []


def test_unanswered_relinquish_times_out(tmp_path: Path) -> None:
    presenters = PresenterRegistry()
    coordinator = FileCoordinator(presenters, lock_dir=tmp_path / "locks", relinquish_timeout=0.1)
    location = LocationRef.from_path(tmp_path / "doc.txt")
    silent = _RecordingPresenter(location)
    silent.relinquish_to_reader = lambda resume: None
    presenters.add(silent)
    proceeded: list[bool] = []

    coordinator.coordinate_reading(location, lambda target: proceeded.append(True))

    assert proceeded == [True]
    silent.presenter_queue.shutdown(wait=True)
