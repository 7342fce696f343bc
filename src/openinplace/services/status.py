"""Optional version-control status for presented locations.

Status is only available when ``git`` is installed and the location sits in a
git work tree. Anything else means the feature is unavailable, which callers
treat silently.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from openinplace.errors import FeatureUnsupportedError
from openinplace.models import LocationRef

LOGGER = logging.getLogger(__name__)

DEFAULT_GIT_TIMEOUT = 5.0


@dataclass(slots=True)
class ChangeSummary:
    """Difference between the working copy and the last commit.

    Attributes:
        lines_added: Lines added across text files.
        lines_deleted: Lines deleted across text files.
        binary_modified: Whether a binary file differs from the last commit.
    """

    lines_added: int = 0
    lines_deleted: int = 0
    binary_modified: bool = False

    @property
    def is_current(self) -> bool:
        """Return whether the location matches the last commit."""
        return not (self.lines_added or self.lines_deleted or self.binary_modified)

    def describe(self) -> str:
        """Return a short human-readable summary."""
        if self.binary_modified:
            return "binary modified"
        if self.is_current:
            return "current"
        return f"+{self.lines_added} -{self.lines_deleted}"


@dataclass(slots=True)
class DocumentSourceInfo:
    """Where a location lives inside its repository."""

    path: str
    repository: str
    tool_version: str = ""


StatusCallback = Callable[[Optional[ChangeSummary], Optional[BaseException]], None]
InfoCallback = Callable[[Optional[DocumentSourceInfo], Optional[BaseException]], None]


def parse_numstat(output: str) -> ChangeSummary:
    """Sum ``git diff --numstat`` output into a :class:`ChangeSummary`."""
    summary = ChangeSummary()
    for line in output.splitlines():
        parts = line.split("\t", 2)
        if len(parts) < 3:
            continue
        added, deleted = parts[0], parts[1]
        if added == "-" or deleted == "-":
            summary.binary_modified = True
            continue
        summary.lines_added += int(added)
        summary.lines_deleted += int(deleted)
    return summary


def _run_git(
    cwd: Path, args: list[str], timeout: float
) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", "-C", str(cwd), *args],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        check=False,
        timeout=timeout,
    )


class GitStatusService:
    """Status queries for one location inside a git work tree.

    Completion callbacks run on a worker thread.
    """

    def __init__(
        self,
        location: LocationRef,
        repo_root: Path,
        executor: Executor,
        *,
        timeout: float = DEFAULT_GIT_TIMEOUT,
    ) -> None:
        self._location = location
        self._repo_root = repo_root
        self._executor = executor
        self._timeout = timeout

    @property
    def repo_root(self) -> Path:
        """Return the top level of the work tree."""
        return self._repo_root

    @property
    def relative_path(self) -> str:
        """Return the location's path relative to the work tree."""
        path = Path(os.path.realpath(self._location.path))
        return path.relative_to(self._repo_root).as_posix()

    def fetch_status(self, callback: StatusCallback) -> Future[None]:
        """Compare the location against ``HEAD``."""
        return self._submit(self._status, callback)

    def fetch_document_info(self, callback: InfoCallback) -> Future[None]:
        """Describe where the location lives in the repository."""
        return self._submit(self._document_info, callback)

    def _status(self) -> ChangeSummary:
        relative = self.relative_path or "."
        tracked = self._git(["ls-files", "--error-unmatch", "--", relative], check=False)
        if tracked.returncode != 0 and not self._location.is_directory:
            # Untracked files count as entirely added.
            with open(self._location.path, "rb") as handle:
                data = handle.read()
            if b"\0" in data:
                return ChangeSummary(binary_modified=True)
            return ChangeSummary(lines_added=len(data.splitlines()))
        result = self._git(["diff", "--numstat", "HEAD", "--", relative])
        return parse_numstat(result.stdout)

    def _document_info(self) -> DocumentSourceInfo:
        version = self._git(["--version"], check=False).stdout.strip()
        return DocumentSourceInfo(
            path=self.relative_path,
            repository=self._repo_root.name,
            tool_version=version,
        )

    def _git(self, args: list[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        try:
            result = _run_git(self._repo_root, args, self._timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise FeatureUnsupportedError(f"git {args[0]} failed: {exc}") from exc
        if check and result.returncode != 0:
            raise FeatureUnsupportedError(result.stderr.strip() or f"git {args[0]} failed")
        return result

    def _submit(self, work: Callable[[], object], callback: Callable[..., None]) -> Future[None]:
        def _job() -> None:
            try:
                value = work()
            except (FeatureUnsupportedError, OSError, ValueError) as exc:
                LOGGER.debug("Status query for %s failed: %s", self._location.path, exc)
                callback(None, exc)
                return
            callback(value, None)

        return self._executor.submit(_job)


class StatusServiceLookup:
    """Find the status service for a location, if one exists."""

    def __init__(
        self,
        *,
        executor: Executor | None = None,
        timeout: float = DEFAULT_GIT_TIMEOUT,
    ) -> None:
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="openinplace-status")
        self._timeout = timeout

    def lookup(self, location: LocationRef) -> Optional[GitStatusService]:
        """Return a bound service, or ``None`` when status is unavailable here."""
        if shutil.which("git") is None:
            LOGGER.debug("git is not installed; status unavailable")
            return None
        directory = Path(location.path if location.is_directory else os.path.dirname(location.path))
        if not directory.is_dir():
            return None
        try:
            result = _run_git(directory, ["rev-parse", "--show-toplevel"], self._timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            LOGGER.debug("git rev-parse failed for %s: %s", directory, exc)
            return None
        if result.returncode != 0 or not result.stdout.strip():
            return None
        repo_root = Path(os.path.realpath(result.stdout.strip()))
        return GitStatusService(location, repo_root, self._executor, timeout=self._timeout)

    def shutdown(self) -> None:
        """Stop the worker used for status queries."""
        if self._owns_executor:
            self._executor.shutdown(wait=False)


__all__ = [
    "ChangeSummary",
    "DocumentSourceInfo",
    "GitStatusService",
    "StatusServiceLookup",
    "parse_numstat",
]
