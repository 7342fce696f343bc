"""Exceptions raised by coordinated file access and its collaborators."""


class OpenInPlaceError(Exception):
    """Base exception for OpenInPlace operations."""


class AccessDeniedError(OpenInPlaceError):
    """Raised when a scoped access grant cannot be opened for a location."""


class CoordinationError(OpenInPlaceError):
    """Raised when coordinated access to a location cannot be obtained."""


class CoordinationTimeoutError(CoordinationError):
    """Raised when another process holds the coordination lock for too long."""


class MaterializationError(OpenInPlaceError):
    """Raised when placeholder content never becomes available locally."""


class BookmarkError(OpenInPlaceError):
    """Base exception for bookmark creation and resolution."""


class BookmarkResolutionError(BookmarkError):
    """Raised when a bookmark no longer resolves to an existing location."""


class FeatureUnsupportedError(OpenInPlaceError):
    """Raised when an optional provider service is not available."""


class DeepLinkError(OpenInPlaceError):
    """Raised when an inbound open-in-place request cannot be honoured.

    Attributes:
        code: Numeric error code reported back through ``x-error`` callbacks.
    """

    code = 0

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class UserCancelledError(DeepLinkError):
    """Raised when the user dismisses the location acquisition prompt."""

    code = 3072


__all__ = [
    "OpenInPlaceError",
    "AccessDeniedError",
    "CoordinationError",
    "CoordinationTimeoutError",
    "MaterializationError",
    "BookmarkError",
    "BookmarkResolutionError",
    "FeatureUnsupportedError",
    "DeepLinkError",
    "UserCancelledError",
]
