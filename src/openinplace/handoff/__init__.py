"""Deep-link handoff from other applications."""

from .opener import DeepLinkOpener, default_root_prompt, root_matches
from .request import DeepLinkRequest, RequestRegistry, is_open_in_place_url

__all__ = [
    "DeepLinkOpener",
    "DeepLinkRequest",
    "RequestRegistry",
    "default_root_prompt",
    "is_open_in_place_url",
    "root_matches",
]
