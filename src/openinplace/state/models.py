"""Persisted state models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List

from pydantic import BaseModel, Field


class DefaultsDocument(BaseModel):
    """Key-value document holding named slots of ordered string values.

    Bookmark slots store base64 encoded, opaque bookmark blobs; order is the
    display order and partial lists are valid.
    """

    slots: Dict[str, List[str]] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = ["DefaultsDocument"]
