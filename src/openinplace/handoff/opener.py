"""Open files inside previously granted folders on request from other apps.

Other applications open URLs such as::

    open-in-place://x-callback-url/open-in-place?root=/Team/Docs&path=notes/todo.md

The first request for a root asks the user to pick that folder; the choice is
bookmarked so later requests under the same root open without prompting.
"""

from __future__ import annotations

import logging
import os
from functools import partial
from pathlib import PurePosixPath
from typing import Callable, Optional
from urllib.parse import quote, urlsplit

import click

from openinplace.access import GrantRegistry, ScopedResourceHandle
from openinplace.errors import (
    AccessDeniedError,
    BookmarkError,
    DeepLinkError,
    OpenInPlaceError,
    UserCancelledError,
)
from openinplace.models import LocationRef
from openinplace.state.bookmarks import BookmarkStore

from .request import DeepLinkRequest, RequestRegistry, is_open_in_place_url

LOGGER = logging.getLogger(__name__)

RootReply = Callable[[Optional[LocationRef]], None]
AcquireRoot = Callable[[str, RootReply], None]
OpenCallback = Callable[[LocationRef], None]
ErrorHandler = Callable[[BaseException], None]


def _log_error(error: BaseException) -> None:
    LOGGER.error("Open-in-place request failed: %s", error)


def _cancel_acquisition(root: str, reply: RootReply) -> None:
    reply(None)


def root_matches(path: str, root: str) -> bool:
    """Return whether the folder at ``path`` is the one a caller calls ``root``.

    A match is either a plain prefix match or a folder whose trailing path
    components equal the components of ``root``.
    """
    if not root:
        return False
    if path == root or path.startswith(root.rstrip("/") + "/"):
        return True
    wanted = [part for part in PurePosixPath(root).parts if part != "/"]
    actual = [part for part in PurePosixPath(path).parts if part != "/"]
    return bool(wanted) and actual[-len(wanted) :] == wanted


class DeepLinkOpener:
    """Resolve inbound requests against bookmarked roots and open the target."""

    def __init__(
        self,
        roots: BookmarkStore,
        grants: GrantRegistry,
        *,
        acquire_root: AcquireRoot | None = None,
        open_callback: OpenCallback | None = None,
        handle_error: ErrorHandler | None = None,
        reply_opener: Callable[[str], object] | None = None,
        app_name: str | None = "OpenInPlace",
        scheme: str | None = None,
        registry: RequestRegistry | None = None,
    ) -> None:
        """Initialize the opener.

        Args:
            roots: Bookmark slot remembering granted root folders.
            grants: Registry used to scope access while opening.
            acquire_root: Prompts for the folder named by a root; replies with
                the chosen location or ``None`` when the user cancels. Cancels
                every request when omitted.
            open_callback: Receives the composed location to open.
            handle_error: Reports errors that cannot go back to the caller.
            reply_opener: Opens reply URLs; :func:`click.launch` by default.
            app_name: Name sent as ``x-source`` in reply URLs.
            scheme: URL scheme to accept; any scheme when omitted.
            registry: Tracks requests waiting on the acquisition prompt.
        """
        self._roots = roots
        self._grants = grants
        self.acquire_root = acquire_root or _cancel_acquisition
        self.open_callback = open_callback or (lambda location: LOGGER.info("Opening %s", location.path))
        self.handle_error = handle_error or _log_error
        self._reply_opener = reply_opener or click.launch
        self._app_name = app_name
        self._scheme = scheme
        self._registry = registry or RequestRegistry()

    @property
    def registry(self) -> RequestRegistry:
        """Return the registry of requests still waiting for a root folder."""
        return self._registry

    def could_handle(self, url: str) -> bool:
        """Return whether ``url`` is an open-in-place request."""
        if self._scheme and urlsplit(url).scheme != self._scheme:
            return False
        return is_open_in_place_url(url)

    def handle_url(self, url: str) -> bool:
        """Process ``url``.

        Returns:
            bool: ``False`` for URLs this opener does not understand; errors
            for understood URLs are reported through the reply or error handler.
        """
        if not self.could_handle(url):
            return False

        request = DeepLinkRequest.parse(url)
        if not request.complete:
            self._fail(request, DeepLinkError("root and path parameters required"))
            return True

        root = self.location_for_root(request.root)
        if root is not None:
            self._deliver(request, root)
            return True

        request_id = self._registry.register(request)
        LOGGER.info("Asking for folder %s (request %d)", request.root, request_id)
        self.acquire_root(request.root, partial(self._root_acquired, request_id))
        return True

    def location_for_root(self, root: str) -> Optional[LocationRef]:
        """Return the bookmarked folder matching ``root``.

        Restoring refreshes stale bookmarks and drops ones that no longer resolve.
        """
        for location in self._roots.restore(prune=True):
            if root_matches(location.path, root):
                return location
        return None

    def remember_root(self, location: LocationRef) -> None:
        """Bookmark ``location`` for later requests.

        Raises:
            BookmarkError: If the folder cannot be bookmarked.
            AccessDeniedError: If access to the folder was refused.
        """
        locations = self._roots.restore()
        report = self._roots.save([*locations, location])
        for failed, error in report.failures:
            if failed == location:
                raise error

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _root_acquired(self, request_id: int, location: Optional[LocationRef]) -> None:
        request = self._registry.pop(request_id)
        if request is None:
            LOGGER.debug("Request %d already finished", request_id)
            return
        if location is None:
            self._fail(request, UserCancelledError("The folder selection was cancelled."))
            return
        try:
            self.remember_root(location)
        except (BookmarkError, AccessDeniedError) as exc:
            self._fail(request, exc)
            return
        self._deliver(request, location)

    def _deliver(self, request: DeepLinkRequest, root: LocationRef) -> None:
        with ScopedResourceHandle(root, self._grants):
            target = root.child(request.path) if request.path else root
            if not target.is_within(root):
                self._fail(request, DeepLinkError(f"{request.path} is outside {root.name}"))
                return
            LOGGER.info("Opening %s from request", target.path)
            try:
                self.open_callback(target)
            except (OpenInPlaceError, OSError) as exc:
                self._fail(request, exc)
                return
        if request.success_url:
            self._reply(request.success_url, {})

    def _fail(self, request: DeepLinkRequest, error: BaseException) -> None:
        LOGGER.debug("Request %s failed: %s", request.url, error)
        if request.error_url:
            code = getattr(error, "code", None)
            if not isinstance(code, int):
                code = getattr(error, "errno", None) or 0
            self._reply(request.error_url, {"errorCode": str(code), "errorMessage": str(error)})
            return
        self.handle_error(error)

    def _reply(self, callback: str, result: dict[str, str]) -> None:
        url = callback + ("&" if "?" in callback else "?")
        if self._app_name:
            url += f"x-source={quote(self._app_name)}&"
        url += "".join(f"{quote(key)}={quote(value)}&" for key, value in result.items())
        LOGGER.debug("Replying with %s", url)
        self._reply_opener(url)


def default_root_prompt(root: str, reply: RootReply) -> None:
    """Ask on the terminal which local folder corresponds to ``root``."""
    answer = click.prompt(
        f"Select the folder for {root}",
        default="",
        show_default=False,
    ).strip()
    if not answer:
        reply(None)
        return
    path = os.path.expanduser(answer)
    if not os.path.isdir(path):
        click.echo(f"{path} is not a folder.", err=True)
        reply(None)
        return
    reply(LocationRef.from_path(path, is_directory=True))


__all__ = ["DeepLinkOpener", "default_root_prompt", "root_matches"]
