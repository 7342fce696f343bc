"""Optional provider services."""

from .status import ChangeSummary, DocumentSourceInfo, GitStatusService, StatusServiceLookup, parse_numstat

__all__ = [
    "ChangeSummary",
    "DocumentSourceInfo",
    "GitStatusService",
    "StatusServiceLookup",
    "parse_numstat",
]
