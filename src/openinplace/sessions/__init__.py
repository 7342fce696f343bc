"""Listing and editing sessions over granted locations."""

from .base import LocationSession, SessionListener, SessionState
from .editing import DELETED_TITLE, SingleFileEditSession, file_signature
from .lifecycle import LifecycleNotifier
from .listing import DirectoryListingSession
from .writer import DebouncedWriter

__all__ = [
    "DELETED_TITLE",
    "DebouncedWriter",
    "DirectoryListingSession",
    "LifecycleNotifier",
    "LocationSession",
    "SessionListener",
    "SessionState",
    "SingleFileEditSession",
    "file_signature",
]
