"""Scoped, coordinated access to shared locations."""

from .coordinator import FileCoordinator, FilePresenter, LazyPresenterQueue, PresenterRegistry
from .grants import GrantRegistry, ScopedResourceHandle
from .operations import CoordinatedFileAccess, list_directory
from .placeholders import Materializer, PlaceholderMaterializer

__all__ = [
    "CoordinatedFileAccess",
    "FileCoordinator",
    "FilePresenter",
    "GrantRegistry",
    "LazyPresenterQueue",
    "Materializer",
    "PlaceholderMaterializer",
    "PresenterRegistry",
    "ScopedResourceHandle",
    "list_directory",
]
