"""Coordinated, in-place access to files shared with other processes."""

from importlib import metadata as _metadata

from openinplace.errors import OpenInPlaceError
from openinplace.models import LocationRef

__all__ = ["LocationRef", "OpenInPlaceError", "__version__"]


def __getattr__(name: str):
    if name == "__version__":
        return _metadata.version("openinplace")
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
