"""Runtime scheduling helpers."""

from .loop import OwnerContext, OwnerLoop, TimerHandle

__all__ = ["OwnerContext", "OwnerLoop", "TimerHandle"]
