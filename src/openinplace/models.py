"""Location references shared by every OpenInPlace component."""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, ConfigDict

DEFAULT_PLACEHOLDER_SUFFIX = ".icloud"


def placeholder_logical_name(name: str, suffix: str = DEFAULT_PLACEHOLDER_SUFFIX) -> str | None:
    """Return the final name encoded by a placeholder file name.

    Args:
        name: File name as enumerated on disk, e.g. ``.report.pdf.icloud``.
        suffix: Provider specific placeholder suffix.

    Returns:
        str | None: Logical name such as ``report.pdf``, or ``None`` when
        ``name`` is not a placeholder.
    """
    if not suffix or not name.startswith(".") or not name.endswith(suffix):
        return None
    logical = name[1 : len(name) - len(suffix)]
    return logical or None


def placeholder_name_for(name: str, suffix: str = DEFAULT_PLACEHOLDER_SUFFIX) -> str:
    """Return the on-disk placeholder name used while ``name`` is not materialized."""
    return f".{name}{suffix}"


class LocationRef(BaseModel):
    """Reference to a file or directory outside the application's own storage.

    Attributes:
        path: Absolute logical path of the item.
        is_directory: Whether the item is a directory.
        display_name: Human-readable name; resolved from a placeholder when needed.
        placeholder: Whether only a not-yet-materialized stand-in exists on disk.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    is_directory: bool = False
    display_name: str = ""
    placeholder: bool = False

    @classmethod
    def from_path(
        cls,
        path: str | os.PathLike[str],
        *,
        is_directory: bool | None = None,
        placeholder_suffix: str = DEFAULT_PLACEHOLDER_SUFFIX,
    ) -> "LocationRef":
        """Build a reference for ``path``, resolving placeholder naming.

        Args:
            path: Filesystem path of the item or of its placeholder.
            is_directory: Explicit kind; detected from disk when omitted.
            placeholder_suffix: Provider specific placeholder suffix.

        Returns:
            LocationRef: Reference addressing the logical item.
        """
        candidate = Path(os.path.abspath(os.path.expanduser(os.fspath(path))))
        logical_name = placeholder_logical_name(candidate.name, placeholder_suffix)
        if logical_name is not None:
            return cls(
                path=str(candidate.with_name(logical_name)),
                is_directory=bool(is_directory),
                display_name=logical_name,
                placeholder=True,
            )

        placeholder = False
        if not candidate.exists():
            stand_in = candidate.with_name(placeholder_name_for(candidate.name, placeholder_suffix))
            placeholder = stand_in.exists()
        if is_directory is None:
            is_directory = candidate.is_dir()
        return cls(
            path=str(candidate),
            is_directory=is_directory,
            display_name=candidate.name,
            placeholder=placeholder,
        )

    @property
    def fs_path(self) -> Path:
        """Return the logical path as a :class:`~pathlib.Path`."""
        return Path(self.path)

    @property
    def name(self) -> str:
        """Return the display name, falling back to the last path component."""
        return self.display_name or self.fs_path.name

    @property
    def parent(self) -> "LocationRef":
        """Return a reference to the containing directory."""
        parent = self.fs_path.parent
        return LocationRef(path=str(parent), is_directory=True, display_name=parent.name)

    def placeholder_path(self, suffix: str = DEFAULT_PLACEHOLDER_SUFFIX) -> Path:
        """Return where the provider keeps the stand-in for this item."""
        return self.fs_path.with_name(placeholder_name_for(self.fs_path.name, suffix))

    def exists(self, suffix: str = DEFAULT_PLACEHOLDER_SUFFIX) -> bool:
        """Return whether the item or its placeholder is present on disk."""
        return self.fs_path.exists() or self.placeholder_path(suffix).exists()

    def child(self, relative: str) -> "LocationRef":
        """Compose a location for ``relative`` underneath this directory.

        The result is normalized, so ``..`` segments may climb out of this
        directory; check :meth:`is_within` before trusting it.

        Args:
            relative: Slash separated path relative to this location.

        Returns:
            LocationRef: Reference to the composed location.
        """
        parts = [part for part in PurePosixPath(relative).parts if part not in ("/", ".")]
        return LocationRef.from_path(self.fs_path.joinpath(*parts))

    def is_within(self, other: "LocationRef") -> bool:
        """Return whether this location equals or sits below ``other``."""
        try:
            self.fs_path.relative_to(other.fs_path)
        except ValueError:
            return False
        return True

    def with_path(self, path: str | os.PathLike[str]) -> "LocationRef":
        """Return a copy pointing at ``path`` while keeping the item kind."""
        return LocationRef.from_path(path, is_directory=self.is_directory)

    def __str__(self) -> str:
        return self.path


__all__ = [
    "DEFAULT_PLACEHOLDER_SUFFIX",
    "LocationRef",
    "placeholder_logical_name",
    "placeholder_name_for",
]
