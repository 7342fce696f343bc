"""Tests for scoped access grants."""

from pathlib import Path

from openinplace.access import GrantRegistry, ScopedResourceHandle
from openinplace.models import LocationRef


def _location(tmp_path: Path, name: str = "doc.txt") -> LocationRef:
    path = tmp_path / name
    path.write_text("content", encoding="utf-8")
    return LocationRef.from_path(path)


def test_acquire_and_release_are_symmetric(tmp_path: Path) -> None:
    grants = GrantRegistry()
    location = _location(tmp_path)
    handle = ScopedResourceHandle(location, grants)

    assert handle.acquire()
    assert not handle.acquire()
    assert grants.open_count(location) == 1

    handle.release()
    handle.release()
    assert grants.open_count(location) == 0
    assert not handle.held


def test_independent_handles_count_separately(tmp_path: Path) -> None:
    grants = GrantRegistry()
    location = _location(tmp_path)
    first = ScopedResourceHandle(location, grants)
    second = ScopedResourceHandle(location, grants)

    first.acquire()
    second.acquire()
    assert grants.total_open() == 2

    first.release()
    assert grants.open_count(location) == 1
    second.release()
    assert grants.total_open() == 0


def test_context_manager_releases_only_what_it_opened(tmp_path: Path) -> None:
    grants = GrantRegistry()
    location = _location(tmp_path)
    handle = ScopedResourceHandle(location, grants)

    with handle as granted:
        assert granted
        assert grants.open_count(location) == 1
    assert grants.open_count(location) == 0

    handle.acquire()
    with handle as granted:
        assert granted
    assert handle.held
    assert grants.open_count(location) == 1
    handle.release()


def test_missing_parent_is_refused(tmp_path: Path) -> None:
    grants = GrantRegistry()
    location = LocationRef.from_path(tmp_path / "missing" / "doc.txt")
    handle = ScopedResourceHandle(location, grants)

    assert not handle.acquire()
    assert grants.total_open() == 0

    handle.release()
    assert grants.total_open() == 0


def test_is_valid_tracks_existence(tmp_path: Path) -> None:
    grants = GrantRegistry()
    location = _location(tmp_path)
    handle = ScopedResourceHandle(location, grants)

    assert not handle.is_valid()
    handle.acquire()
    assert handle.is_valid()

    location.fs_path.unlink()
    assert not handle.is_valid()
    handle.release()
