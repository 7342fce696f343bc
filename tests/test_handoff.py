"""Tests for inbound open-in-place requests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

import pytest

from openinplace.access import GrantRegistry
from openinplace.errors import DeepLinkError
from openinplace.handoff import DeepLinkOpener, DeepLinkRequest, is_open_in_place_url, root_matches
from openinplace.models import LocationRef
from openinplace.state import DefaultsStore
from openinplace.state.bookmarks import BookmarkStore

ROOTS_KEY = "open-in-place.bookmarks"
URL = "open-in-place://x-callback-url/open-in-place?root=/Team/Docs&path=notes/todo.md"


class _Harness:
    """Opener wired to recording doubles."""

    def __init__(self, tmp_path: Path, *, choose: Optional[Path]) -> None:
        self.defaults = DefaultsStore(tmp_path / "state")
        self.roots = BookmarkStore(self.defaults, GrantRegistry(), key=ROOTS_KEY)
        self.choose = choose
        self.prompts: list[str] = []
        self.opened: list[LocationRef] = []
        self.replies: list[str] = []
        self.errors: list[BaseException] = []
        self.opener = DeepLinkOpener(
            self.roots,
            GrantRegistry(),
            acquire_root=self._acquire,
            open_callback=self.opened.append,
            handle_error=self.errors.append,
            reply_opener=self.replies.append,
            scheme="open-in-place",
        )

    def _acquire(self, root: str, reply: Callable[[Optional[LocationRef]], None]) -> None:
        self.prompts.append(root)
        if self.choose is None:
            reply(None)
        else:
            reply(LocationRef.from_path(self.choose, is_directory=True))


@pytest.fixture
def team_docs(tmp_path: Path) -> Path:
    folder = tmp_path / "drive" / "Team" / "Docs"
    (folder / "notes").mkdir(parents=True)
    (folder / "notes" / "todo.md").write_text("- [ ] ship", encoding="utf-8")
    return folder


def test_parse_strips_root_prefix_and_leading_slash() -> None:
    request = DeepLinkRequest.parse(
        "open-in-place://x-callback-url/open-in-place?root=/Team/Docs&path=/Team/Docs/notes/todo.md"
        "&x-success=caller%3A%2F%2Fok&on-error=caller%3A%2F%2Ffailed"
    )

    assert request.complete
    assert request.root == "/Team/Docs"
    assert request.path == "notes/todo.md"
    assert request.success_url == "caller://ok"
    assert request.error_url == "caller://failed"


def test_url_recognition() -> None:
    assert is_open_in_place_url(URL)
    assert not is_open_in_place_url("open-in-place://x-callback-url/other?root=a&path=b")
    assert not is_open_in_place_url("open-in-place://elsewhere/open-in-place?root=a&path=b")


def test_root_matching() -> None:
    assert root_matches("/Team/Docs", "/Team/Docs")
    assert root_matches("/Team/Docs/Archive", "/Team/Docs")
    assert root_matches("/Users/me/Drive/Team/Docs", "/Team/Docs")
    assert not root_matches("/Users/me/Drive/Team/Documents", "/Team/Docs")
    assert not root_matches("/Users/me/Docs", "")


def test_first_request_prompts_and_bookmarks_root(tmp_path: Path, team_docs: Path) -> None:
    harness = _Harness(tmp_path, choose=team_docs)

    assert harness.opener.handle_url(URL)

    assert harness.prompts == ["/Team/Docs"]
    assert len(harness.opened) == 1
    assert harness.opened[0].path.endswith("Team/Docs/notes/todo.md")
    assert len(harness.defaults.get_list(ROOTS_KEY)) == 1
    assert harness.defaults.get_list("bookmarks") == []
    assert len(harness.opener.registry) == 0


def test_later_requests_reuse_bookmarked_root(tmp_path: Path, team_docs: Path) -> None:
    harness = _Harness(tmp_path, choose=team_docs)
    harness.opener.handle_url(URL)

    harness.opener.handle_url(URL.replace("notes/todo.md", "notes"))

    assert harness.prompts == ["/Team/Docs"]
    assert harness.opened[-1].path == str(team_docs / "notes")
    assert harness.opened[-1].is_directory


def test_cancelled_prompt_replies_with_error(tmp_path: Path) -> None:
    harness = _Harness(tmp_path, choose=None)

    harness.opener.handle_url(URL + "&x-error=caller%3A%2F%2Ffailed")

    assert harness.opened == []
    assert len(harness.replies) == 1
    reply = harness.replies[0]
    assert reply.startswith("caller://failed?x-source=OpenInPlace&")
    assert "errorCode=3072" in reply
    assert harness.defaults.get_list(ROOTS_KEY) == []


def test_cancelled_prompt_without_callback_reports_locally(tmp_path: Path) -> None:
    harness = _Harness(tmp_path, choose=None)

    harness.opener.handle_url(URL)

    assert len(harness.errors) == 1
    assert getattr(harness.errors[0], "code", None) == 3072
    assert harness.replies == []


def test_missing_parameters_are_rejected_without_prompting(tmp_path: Path) -> None:
    harness = _Harness(tmp_path, choose=None)

    assert harness.opener.handle_url("open-in-place://x-callback-url/open-in-place?root=/Team/Docs")

    assert harness.prompts == []
    assert isinstance(harness.errors[0], DeepLinkError)
    assert "root and path parameters required" in str(harness.errors[0])


def test_success_callback_receives_source(tmp_path: Path, team_docs: Path) -> None:
    harness = _Harness(tmp_path, choose=team_docs)

    harness.opener.handle_url(URL + "&x-success=caller%3A%2F%2Fdone%3Fid%3D7")

    assert harness.replies == ["caller://done?id=7&x-source=OpenInPlace&"]


def test_open_failure_goes_to_error_callback(tmp_path: Path, team_docs: Path) -> None:
    harness = _Harness(tmp_path, choose=team_docs)

    def _refuse(location: LocationRef) -> None:
        raise PermissionError(13, "Permission denied")

    harness.opener.open_callback = _refuse
    harness.opener.handle_url(URL + "&x-error=caller%3A%2F%2Ffailed")

    assert len(harness.replies) == 1
    assert "errorCode=13" in harness.replies[0]


def test_unrelated_urls_are_declined(tmp_path: Path) -> None:
    harness = _Harness(tmp_path, choose=None)

    assert not harness.opener.could_handle("https://x-callback-url/open-in-place?root=a&path=b")
    assert not harness.opener.handle_url("open-in-place://x-callback-url/elsewhere")
    assert harness.errors == []


def test_prompt_may_reply_later(tmp_path: Path, team_docs: Path) -> None:
    harness = _Harness(tmp_path, choose=team_docs)
    pending: list[Callable[[Optional[LocationRef]], None]] = []
    harness.opener.acquire_root = lambda root, reply: pending.append(reply)

    harness.opener.handle_url(URL)
    assert len(harness.opener.registry) == 1
    assert harness.opened == []

    pending[0](LocationRef.from_path(team_docs, is_directory=True))
    assert len(harness.opener.registry) == 0
    assert len(harness.opened) == 1

    # A duplicate reply for a finished request is ignored.
    pending[0](None)
    assert harness.errors == []


def test_paths_climbing_out_of_the_root_are_rejected(tmp_path: Path, team_docs: Path) -> None:
    harness = _Harness(tmp_path, choose=team_docs)
    escaping = URL.replace("notes/todo.md", "../../../outside.txt")

    harness.opener.handle_url(escaping + "&x-error=caller%3A%2F%2Ffailed")

    assert harness.opened == []
    assert len(harness.replies) == 1
    assert "outside" in harness.replies[0]
    assert "errorCode=0" in harness.replies[0]


def test_dot_segments_inside_the_root_are_allowed(tmp_path: Path, team_docs: Path) -> None:
    harness = _Harness(tmp_path, choose=team_docs)

    harness.opener.handle_url(URL.replace("notes/todo.md", "notes/../notes/todo.md"))

    assert harness.errors == []
    assert harness.opened[0].path == str(team_docs / "notes" / "todo.md")
