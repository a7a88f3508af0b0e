"""Shared fixtures: a temporary maildir, an in-memory state index and a
scriptable upstream source."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

import pytest

from mailpail.adapters.git.base import Activity, Comment, PullRequest, SourcePlatform, User
from mailpail.adapters.mailbox.maildir import Maildir
from mailpail.adapters.storage.sql import SQLStateIndex
from mailpail.core.exceptions import SourceError
from mailpail.core.identifiers import DeliveryCounter, HostnameIdentity, IdentifierGenerator

AUTHOR = User(display_name="Ada Lovelace", email="ada@example.com", name="ada")


def make_pr(pr_id: int = 1, version: int = 0, **overrides: Any) -> PullRequest:
    fields: dict[str, Any] = {
        "id": pr_id,
        "version": version,
        "title": "Add delivery engine",
        "description": "Implements the maildir writer.",
        "project": "PROJ",
        "repo": "repo",
        "author": AUTHOR,
        "created_date": 1_700_000_000_000,
        "updated_date": 1_700_000_100_000,
        "url": f"https://bitbucket.example.com/projects/PROJ/repos/repo/pull-requests/{pr_id}",
    }
    fields.update(overrides)
    return PullRequest(**fields)


def make_comment(comment_id: int, version: int = 0, text: str = "LGTM", replies=None) -> Comment:
    return Comment(
        id=comment_id,
        version=version,
        text=text,
        author=AUTHOR,
        created_date=1_700_000_000_000 + comment_id,
        replies=list(replies or []),
    )


def commented(comment: Comment, activity_id: int | None = None) -> Activity:
    return Activity(
        id=activity_id if activity_id is not None else comment.id + 1000,
        action="COMMENTED",
        created_date=comment.created_date,
        comment=comment,
    )


class FakeSource(SourcePlatform):
    """In-memory upstream whose records tests mutate between runs."""

    def __init__(self) -> None:
        self.pull_requests: list[PullRequest] = []
        self.activities: dict[int, list[Activity]] = {}
        self.diffs: dict[int, bytes] = {}
        self.failing_diffs: set[int] = set()
        self.failing_activities: set[int] = set()
        self.fail_listing = False
        self.diff_calls = 0

    async def list_pull_requests(self) -> list[PullRequest]:
        if self.fail_listing:
            raise SourceError("GET dashboard/pull-requests failed with HTTP 503", status=503)
        return list(self.pull_requests)

    async def get_activities(self, project: str, repo: str, pr_id: int) -> list[Activity]:
        if pr_id in self.failing_activities:
            raise SourceError("activities unavailable", status=500)
        return list(self.activities.get(pr_id, []))

    async def get_diff(self, project: str, repo: str, pr_id: int) -> bytes:
        self.diff_calls += 1
        if pr_id in self.failing_diffs:
            raise SourceError("diff unavailable", status=500)
        return self.diffs.get(pr_id, b"diff --git a/engine.py b/engine.py\n+print('hi')\n")


@pytest.fixture()
def identifiers() -> IdentifierGenerator:
    return IdentifierGenerator(host=HostnameIdentity("testhost"), counter=DeliveryCounter())


@pytest.fixture()
def maildir(tmp_path, identifiers) -> Maildir:
    return Maildir(tmp_path / "Maildir", identifiers=identifiers)


@pytest.fixture()
def state_index() -> Generator[SQLStateIndex, Any, None]:
    index = SQLStateIndex("sqlite:///:memory:")
    try:
        yield index
    finally:
        index.close()


@pytest.fixture()
def source() -> FakeSource:
    return FakeSource()
