"""Parsing and bookkeeping for inbound open-in-place requests."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlsplit

CALLBACK_HOST = "x-callback-url"
ACTION_PATH = "/open-in-place"


@dataclass(slots=True)
class DeepLinkRequest:
    """One decoded ``open-in-place`` request.

    Attributes:
        url: Raw URL the request was decoded from.
        parameters: Percent-decoded query parameters.
        root: Root folder identifier supplied by the caller.
        path: Path relative to the root with any root prefix and leading slash removed.
    """

    url: str
    parameters: Dict[str, str] = field(default_factory=dict)
    root: str = ""
    path: str = ""

    @classmethod
    def parse(cls, url: str) -> "DeepLinkRequest":
        """Decode ``url`` into a request; missing parameters stay empty."""
        parts = urlsplit(url)
        parameters = dict(parse_qsl(parts.query, keep_blank_values=True))
        root = parameters.get("root", "")
        path = parameters.get("path", "")
        # Callers may pass a full path under the root instead of a relative one.
        if root and path.startswith(root):
            path = path[len(root) :]
        if path.startswith("/"):
            path = path[1:]
        return cls(url=url, parameters=parameters, root=root, path=path)

    @property
    def complete(self) -> bool:
        """Return whether both root and path were supplied."""
        return "root" in self.parameters and "path" in self.parameters

    @property
    def success_url(self) -> Optional[str]:
        """Return the caller's success callback, if any."""
        return self.parameters.get("x-success") or None

    @property
    def error_url(self) -> Optional[str]:
        """Return the caller's error callback, if any."""
        return self.parameters.get("x-error") or self.parameters.get("on-error") or None


def is_open_in_place_url(url: str) -> bool:
    """Return whether ``url`` addresses the open-in-place action."""
    parts = urlsplit(url)
    return parts.netloc == CALLBACK_HOST and parts.path == ACTION_PATH


class RequestRegistry:
    """In-flight requests keyed by id, kept while the user picks a root folder."""

    def __init__(self) -> None:
        self._requests: dict[int, DeepLinkRequest] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def register(self, request: DeepLinkRequest) -> int:
        """Track ``request`` and return its id."""
        with self._lock:
            request_id = next(self._ids)
            self._requests[request_id] = request
            return request_id

    def pop(self, request_id: int) -> Optional[DeepLinkRequest]:
        """Stop tracking and return the request, or ``None`` if already finished."""
        with self._lock:
            return self._requests.pop(request_id, None)

    def get(self, request_id: int) -> Optional[DeepLinkRequest]:
        with self._lock:
            return self._requests.get(request_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._requests


__all__ = [
    "ACTION_PATH",
    "CALLBACK_HOST",
    "DeepLinkRequest",
    "RequestRegistry",
    "is_open_in_place_url",
]
