"""Configuration models describing OpenInPlace settings."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class OpenInPlaceBaseModel(BaseModel):
    """Shared configuration for OpenInPlace Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class CoordinationSettings(OpenInPlaceBaseModel):
    """Settings for cross-process file coordination.

    Attributes:
        lock_dir: Directory holding the per-location coordination lock files.
        lock_timeout_seconds: How long to wait for another process to release a location.
        relinquish_timeout_seconds: How long to wait for in-process presenters to flush.
        worker_threads: Size of the worker pool running coordinated operations.
    """

    lock_dir: str = "~/.openinplace/locks"
    lock_timeout_seconds: float = 10.0
    relinquish_timeout_seconds: float = 5.0
    worker_threads: int = Field(default=4, ge=1)


class AutosaveSettings(OpenInPlaceBaseModel):
    """Debounced autosave behavior.

    Attributes:
        quiescence_seconds: Idle time after the last edit before a write is committed.
    """

    quiescence_seconds: float = Field(default=1.0, gt=0)


class MaterializationSettings(OpenInPlaceBaseModel):
    """Handling of cloud placeholders that are not downloaded yet.

    Attributes:
        placeholder_suffix: Suffix used by the provider for placeholder files.
        timeout_seconds: Maximum time to wait for placeholder content to arrive.
        poll_interval_seconds: Delay between availability checks.
    """

    placeholder_suffix: str = ".icloud"
    timeout_seconds: float = 30.0
    poll_interval_seconds: float = 0.25


class StorageSettings(OpenInPlaceBaseModel):
    """Locations of persisted application state.

    Attributes:
        state_dir: Directory for application state.
        defaults_file: File name of the key-value store inside ``state_dir``.
        bookmarks_key: Slot holding the user's ordered bookmark list.
        deep_link_bookmarks_key: Slot holding roots granted through deep links.
    """

    state_dir: str = "~/.openinplace"
    defaults_file: str = "defaults.json"
    bookmarks_key: str = "bookmarks"
    deep_link_bookmarks_key: str = "open-in-place.bookmarks"


class HandoffSettings(OpenInPlaceBaseModel):
    """Inbound deep-link handling.

    Attributes:
        scheme: URL scheme accepted for open-in-place requests.
        app_name: Name reported back to callers as ``x-source``.
    """

    scheme: str = "open-in-place"
    app_name: Optional[str] = "OpenInPlace"


class LoggingSettings(OpenInPlaceBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Optional log file path; rotation applies when set.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "WARNING"
    file: Optional[str] = None
    max_size_mb: int = 10
    backup_count: int = 3


class CLIOptions(OpenInPlaceBaseModel):
    """CLI behavior defaults and presentation preferences.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        json_default: Whether commands emit JSON by default.
    """

    quiet_default: bool = False
    json_default: bool = False


class OpenInPlaceConfig(OpenInPlaceBaseModel):
    """Top-level configuration struct for OpenInPlace."""

    coordination: CoordinationSettings = Field(default_factory=CoordinationSettings)
    autosave: AutosaveSettings = Field(default_factory=AutosaveSettings)
    materialization: MaterializationSettings = Field(default_factory=MaterializationSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    handoff: HandoffSettings = Field(default_factory=HandoffSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "OpenInPlaceBaseModel",
    "CoordinationSettings",
    "AutosaveSettings",
    "MaterializationSettings",
    "StorageSettings",
    "HandoffSettings",
    "LoggingSettings",
    "CLIOptions",
    "OpenInPlaceConfig",
]
