"""Bitbucket Server platform adapter using the REST API (1.0).

Uses only the Python standard library (``urllib``); requests run in a worker
thread via ``asyncio.to_thread``. Pass a personal access token via ``token``.

Example::

    from mailpail.adapters.git.bitbucket import BitbucketPlatform

    bb = BitbucketPlatform(
        endpoint="https://bitbucket.example.com/rest/api/1.0",
        token="NjM4…",
    )
"""

import asyncio
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from mailpail.adapters.git.base import Activity, Comment, PullRequest, SourcePlatform, User
from mailpail.core.exceptions import SourceError

logger = logging.getLogger(__name__)

PAGE_LIMIT = 100
#: Upper bound on pages fetched for one listing.
MAX_PAGES = 50


class BitbucketPlatform(SourcePlatform):
    """Bitbucket Server adapter.

    Args:
        endpoint: REST base URL, e.g. ``https://host/rest/api/1.0``.
        token: Personal access token (sent as a bearer token).
        source: ``"dashboard"`` lists pull requests the user participates in,
            ``"inbox"`` lists those awaiting the user's review.
        state: Pull request state filter for the dashboard listing.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        endpoint: str,
        token: str,
        source: str = "dashboard",
        state: str = "OPEN",
        timeout: int = 30,
    ):
        if source not in ("dashboard", "inbox"):
            raise ValueError(f"unknown pull request source: {source!r}")
        self._api_base = endpoint.rstrip("/")
        self._token = token
        self._source = source
        self._state = state
        self._timeout = timeout

    # ------------------------------------------------------------------
    # SourcePlatform interface
    # ------------------------------------------------------------------

    async def list_pull_requests(self) -> list[PullRequest]:
        if self._source == "inbox":
            return await self.inbox()
        query = urllib.parse.urlencode({"state": self._state})
        values = await self._get_paged(f"dashboard/pull-requests?{query}")
        return [self._to_pull_request(v) for v in values]

    async def inbox(self) -> list[PullRequest]:
        values = await self._get_paged("inbox/pull-requests")
        return [self._to_pull_request(v) for v in values]

    async def get_activities(self, project: str, repo: str, pr_id: int) -> list[Activity]:
        values = await self._get_paged(f"{self._pr_path(project, repo, pr_id)}/activities")
        try:
            return [self._to_activity(v) for v in values]
        except (KeyError, TypeError, ValueError) as exc:
            raise SourceError(f"malformed activity for {project}/{repo}#{pr_id}: {exc}") from exc

    async def get_diff(self, project: str, repo: str, pr_id: int) -> bytes:
        return await self._get_text(f"{self._pr_path(project, repo, pr_id)}/diff")

    # ------------------------------------------------------------------
    # HTTP helpers (sync + asyncio.to_thread wrapper)
    # ------------------------------------------------------------------

    @staticmethod
    def _pr_path(project: str, repo: str, pr_id: int) -> str:
        quote = urllib.parse.quote
        return f"projects/{quote(project, safe='')}/repos/{quote(repo, safe='')}/pull-requests/{int(pr_id)}"

    def _headers(self, accept: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": accept,
        }

    def _sync_request(self, path: str, accept: str = "application/json") -> bytes:
        url = f"{self._api_base}/{path.lstrip('/')}"
        req = urllib.request.Request(url, headers=self._headers(accept), method="GET")
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                return resp.read()
        except urllib.error.HTTPError as exc:
            body = exc.read().decode(errors="replace")
            logger.error("Bitbucket API GET %s → HTTP %d: %s", path, exc.code, body[:500])
            raise SourceError(f"GET {path} failed with HTTP {exc.code}", status=exc.code) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise SourceError(f"GET {path} failed: {exc}") from exc

    async def _get(self, path: str) -> Any:
        raw = await asyncio.to_thread(self._sync_request, path)
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise SourceError(f"GET {path} returned invalid JSON: {exc}") from exc

    async def _get_text(self, path: str) -> bytes:
        return await asyncio.to_thread(self._sync_request, path, "text/plain")

    async def _get_paged(self, path: str) -> list[dict]:
        """Collect ``values`` from every page of a paged listing."""
        values: list[dict] = []
        start = 0
        sep = "&" if "?" in path else "?"
        for _ in range(MAX_PAGES):
            page = await self._get(f"{path}{sep}start={start}&limit={PAGE_LIMIT}")
            if not isinstance(page, dict):
                raise SourceError(f"GET {path} returned an unexpected payload")
            if page.get("errors"):
                messages = "; ".join(str(e.get("message", e)) for e in page["errors"])
                raise SourceError(f"GET {path} returned errors: {messages}")
            values.extend(page.get("values") or [])
            if page.get("isLastPage", True) or page.get("nextPageStart") is None:
                return values
            start = page["nextPageStart"]
        logger.warning("Stopped paging %s after %d pages", path, MAX_PAGES)
        return values

    # ------------------------------------------------------------------
    # Model converters
    # ------------------------------------------------------------------

    @staticmethod
    def _to_user(data: dict | None) -> User:
        data = data or {}
        return User(
            display_name=data.get("displayName") or data.get("name", ""),
            email=data.get("emailAddress", ""),
            name=data.get("name", ""),
        )

    @classmethod
    def _to_comment(cls, data: dict) -> Comment:
        return Comment(
            id=int(data["id"]),
            version=int(data.get("version", 0)),
            text=data.get("text", ""),
            author=cls._to_user(data.get("author")),
            created_date=int(data.get("createdDate", 0)),
            replies=[cls._to_comment(c) for c in data.get("comments") or []],
        )

    @classmethod
    def _to_activity(cls, data: dict) -> Activity:
        comment = data.get("comment")
        return Activity(
            id=int(data["id"]),
            action=data.get("action", ""),
            created_date=int(data.get("createdDate", 0)),
            comment=cls._to_comment(comment) if comment else None,
        )

    @classmethod
    def _to_pull_request(cls, data: dict) -> PullRequest:
        try:
            repository = data["toRef"]["repository"]
            links = data.get("links", {}).get("self") or [{}]
            return PullRequest(
                id=int(data["id"]),
                version=int(data.get("version", 0)),
                title=data.get("title", ""),
                description=data.get("description", ""),
                project=repository["project"]["key"],
                repo=repository["slug"],
                author=cls._to_user(data.get("author", {}).get("user")),
                created_date=int(data.get("createdDate", 0)),
                updated_date=int(data.get("updatedDate", 0)),
                state=data.get("state", "OPEN"),
                url=links[0].get("href", ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise SourceError(f"malformed pull request record: {exc}") from exc
