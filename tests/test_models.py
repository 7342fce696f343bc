"""Tests for location references and placeholder naming."""

from pathlib import Path

from openinplace.models import LocationRef, placeholder_logical_name, placeholder_name_for


def test_placeholder_names_map_both_ways() -> None:
    assert placeholder_logical_name(".report.pdf.icloud") == "report.pdf"
    assert placeholder_name_for("report.pdf") == ".report.pdf.icloud"
    assert placeholder_logical_name("report.pdf") is None
    assert placeholder_logical_name(".hidden") is None
    assert placeholder_logical_name(".icloud") is None
    assert placeholder_logical_name(".notes.txt.cloud", suffix=".cloud") == "notes.txt"


def test_from_path_resolves_placeholder_name(tmp_path: Path) -> None:
    (tmp_path / ".report.pdf.icloud").write_bytes(b"")

    via_stand_in = LocationRef.from_path(tmp_path / ".report.pdf.icloud")
    via_logical = LocationRef.from_path(tmp_path / "report.pdf")

    assert via_stand_in.path == str(tmp_path / "report.pdf")
    assert via_stand_in.name == "report.pdf"
    assert via_stand_in.placeholder
    assert via_logical.placeholder
    assert via_logical.exists()


def test_from_path_detects_directories(tmp_path: Path) -> None:
    folder = tmp_path / "docs"
    folder.mkdir()

    location = LocationRef.from_path(folder)

    assert location.is_directory
    assert not location.placeholder
    assert location.parent.path == str(tmp_path)


def test_child_composes_relative_paths(tmp_path: Path) -> None:
    root = LocationRef.from_path(tmp_path, is_directory=True)

    child = root.child("/notes/./todo.md")

    assert child.path == str(tmp_path / "notes" / "todo.md")
    assert child.name == "todo.md"
    assert child.is_within(root)
    assert not root.is_within(child)


def test_with_path_keeps_item_kind(tmp_path: Path) -> None:
    folder = LocationRef.from_path(tmp_path, is_directory=True)

    moved = folder.with_path(tmp_path / "elsewhere")

    assert moved.is_directory
    assert moved.name == "elsewhere"
