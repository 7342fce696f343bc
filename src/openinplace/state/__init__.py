"""Persistence helpers for OpenInPlace application state."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from .errors import MissingStateError, StateError
from .models import DefaultsDocument

DEFAULT_STATE_DIR = Path("~/.openinplace")
DEFAULT_DEFAULTS_FILENAME = "defaults.json"


class DefaultsStore:
    """Small key-value store persisted as JSON, in the spirit of user defaults."""

    def __init__(
        self,
        state_dir: Path = DEFAULT_STATE_DIR,
        *,
        filename: str = DEFAULT_DEFAULTS_FILENAME,
    ) -> None:
        """Initialize the store.

        Args:
            state_dir: Directory holding application state.
            filename: File name of the JSON document inside ``state_dir``.
        """
        self._state_dir = state_dir.expanduser()
        self._filename = filename
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        """Return the path of the backing JSON document.

        Returns:
            Path: Location of the defaults file.
        """
        return self._state_dir / self._filename

    def load(self) -> DefaultsDocument:
        """Load the persisted document.

        Returns:
            DefaultsDocument: Deserialized document.

        Raises:
            MissingStateError: If nothing has been persisted yet.
            StateError: If stored data cannot be parsed.
        """
        if not self.path.exists():
            raise MissingStateError(f"No defaults found at {self.path}")
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return DefaultsDocument.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise StateError(f"Invalid defaults data: {exc}") from exc

    def get_list(self, key: str) -> list[str]:
        """Return the ordered values stored under ``key``.

        Args:
            key: Slot name.

        Returns:
            list[str]: Stored values, empty when the slot or file is missing.

        Raises:
            StateError: If the document exists but cannot be parsed.
        """
        with self._lock:
            try:
                document = self.load()
            except MissingStateError:
                return []
            return list(document.slots.get(key, []))

    def set_list(self, key: str, values: list[str]) -> None:
        """Replace the values stored under ``key``.

        Args:
            key: Slot name.
            values: Ordered values to persist.
        """
        with self._lock:
            try:
                document = self.load()
            except MissingStateError:
                document = DefaultsDocument()
            document.slots[key] = list(values)
            self._write(document)

    def remove(self, key: str) -> None:
        """Delete the slot ``key`` if present."""
        with self._lock:
            try:
                document = self.load()
            except MissingStateError:
                return
            if document.slots.pop(key, None) is not None:
                self._write(document)

    def _write(self, document: DefaultsDocument) -> None:
        self._state_dir.mkdir(parents=True, exist_ok=True)
        document.updated_at = datetime.now(timezone.utc)
        payload = document.model_dump(mode="json")
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


__all__ = [
    "DefaultsStore",
    "DefaultsDocument",
    "DEFAULT_STATE_DIR",
    "DEFAULT_DEFAULTS_FILENAME",
    "StateError",
    "MissingStateError",
]
