"""State management errors."""


class StateError(Exception):
    """Base exception for persisted application state."""


class MissingStateError(StateError):
    """Raised when no persisted state exists yet."""
