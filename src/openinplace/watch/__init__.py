"""External change observation for presented locations."""

from .service import ChangeObserver, WatchHandle, translate_event

__all__ = ["ChangeObserver", "WatchHandle", "translate_event"]
