"""Reconcile upstream pull requests and comments into the maildir.

Each item (a pull request or one comment) is identified by a delivery key and
versioned by a watermark. For every item the reconciler decides between:

* deliver: no record and no mailbox file, publish a new article;
* replace: the stored watermark is older, remove the old file then publish;
* skip: the stored watermark is current, no I/O at all;
* seed: no index record but the mailbox already holds a current article
  (bootstrap from a maildir written before the index existed).

The index is only updated after a successful publish, so an item that fails
part-way is retried on the next run. Items are processed strictly one after
the other.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence

from mailpail.adapters.git.base import Activity, Comment, PullRequest, SourcePlatform
from mailpail.adapters.mailbox.maildir import Maildir
from mailpail.adapters.storage.base import StateIndex
from mailpail.core.exceptions import AmbiguousDeliveryError, MailboxError, MailpailError
from mailpail.core.formatter import WATERMARK_HEADER, ArticleFormatter
from mailpail.core.models import (
    Action,
    Ambiguous,
    Artifact,
    Found,
    ItemResult,
    Outcome,
    RunReport,
    comment_key,
    pull_request_key,
)

logger = logging.getLogger(__name__)

COMMENTED = "COMMENTED"
SUPERSEDE_ATTEMPTS = 3

Renderer = Callable[[], Awaitable[Artifact]]
ThreadedComment = tuple[Comment, tuple[Comment, ...]]


class Reconciler:
    """Per-item delivery state machine.

    Args:
        source: Upstream platform the items come from.
        store: Maildir the articles are published into.
        index: Persisted key -> watermark records.
        formatter: Renders records into articles.
        bootstrap_from_mailbox: When the index has no record for a key but
            the mailbox holds a file for it, trust that file's watermark
            header and seed the index if it is current. When disabled such a
            file is always replaced, never duplicated.
    """

    def __init__(
        self,
        source: SourcePlatform,
        store: Maildir,
        index: StateIndex,
        formatter: ArticleFormatter | None = None,
        bootstrap_from_mailbox: bool = True,
    ):
        self._source = source
        self._store = store
        self._index = index
        self._formatter = formatter or ArticleFormatter()
        self._bootstrap = bootstrap_from_mailbox

    async def run(self) -> RunReport:
        """Reconcile every pull request the source enumerates.

        Raises:
            SourceError: the pull request listing itself failed.
        """
        pull_requests = await self._source.list_pull_requests()
        logger.info("Reconciling %d pull requests", len(pull_requests))

        report = RunReport()
        for pr in pull_requests:
            await self.reconcile_pull_request(pr, report)

        logger.info("Reconciliation finished: %s", report.summary())
        return report

    async def reconcile_pull_request(self, pr: PullRequest, report: RunReport) -> None:
        key = pull_request_key(pr.project, pr.repo, pr.id)

        async def render() -> Artifact:
            diff = await self._source.get_diff(pr.project, pr.repo, pr.id)
            return self._formatter.format_pull_request(pr, diff)

        report.add(await self.reconcile_item(key, pr.version, render))

        try:
            activities = await self._source.get_activities(pr.project, pr.repo, pr.id)
        except MailpailError as exc:
            logger.warning("Skipping comments of %s: %s", key, exc)
            report.add(ItemResult(key, Outcome.FAILED, pr.version, f"activities: {exc}"))
            return

        for comment, ancestors in self.iter_comments(activities):
            report.add(await self._reconcile_comment(pr, comment, ancestors))

    async def _reconcile_comment(
        self, pr: PullRequest, comment: Comment, ancestors: tuple[Comment, ...]
    ) -> ItemResult:
        key = comment_key(pr.project, pr.repo, pr.id, comment.id)

        async def render() -> Artifact:
            return self._formatter.format_comment(pr, comment, ancestors)

        return await self.reconcile_item(key, comment.version, render)

    def iter_comments(self, activities: Iterable[Activity]) -> list[ThreadedComment]:
        """Flatten comment threads, nested replies included.

        Replies can appear both nested under their parent and as activities
        of their own; each comment is yielded once, with the longest known
        chain of ancestors, oldest first.
        """
        found: dict[int, ThreadedComment] = {}

        def walk(comment: Comment, ancestors: tuple[Comment, ...]) -> None:
            known = found.get(comment.id)
            if known is None or len(ancestors) > len(known[1]):
                found[comment.id] = (comment, ancestors)
            for reply in comment.replies:
                walk(reply, ancestors + (comment,))

        for activity in activities:
            if activity.action == COMMENTED and activity.comment is not None:
                walk(activity.comment, ())

        return sorted(found.values(), key=lambda item: (item[0].created_date, item[0].id))

    # ------------------------------------------------------------------
    # Single item
    # ------------------------------------------------------------------

    def decide(self, key: str, watermark: int) -> tuple[Action, int | None]:
        """Return the action for *key* and the watermark it was compared with."""
        stored = self._index.watermark(key)
        if stored is not None:
            return (Action.SKIP if stored >= watermark else Action.REPLACE), stored

        result = self._store.lookup(key)
        if isinstance(result, Ambiguous):
            raise AmbiguousDeliveryError(key, result.count)
        if not isinstance(result, Found):
            return Action.DELIVER, None
        if not self._bootstrap:
            return Action.REPLACE, None

        delivered = self._mailbox_watermark(result.path)
        if delivered is not None and delivered >= watermark:
            return Action.SEED, delivered
        return Action.REPLACE, delivered

    def _mailbox_watermark(self, path: str) -> int | None:
        value = self._store.read_headers(path).get(WATERMARK_HEADER)
        try:
            return int(str(value).strip()) if value is not None else None
        except ValueError:
            logger.warning("Unparseable %s header in %s: %r", WATERMARK_HEADER, path, value)
            return None

    async def reconcile_item(self, key: str, watermark: int, render: Renderer) -> ItemResult:
        """Deliver, replace, seed or skip one item. Never raises per-item errors."""
        try:
            action, stored = self.decide(key, watermark)

            if action is Action.SKIP:
                logger.debug("%s unchanged at %s", key, stored)
                return ItemResult(key, Outcome.SKIPPED, stored)

            if action is Action.SEED:
                self._index.upsert(key, stored)
                logger.info("Seeded %s from mailbox at %s", key, stored)
                return ItemResult(key, Outcome.SEEDED, stored)

            artifact = await render()
            if action is Action.REPLACE:
                self._supersede(key)
            path = self._store.deliver(key, artifact.payload)
            self._index.upsert(key, artifact.watermark)
        except AmbiguousDeliveryError as exc:
            logger.error("Consistency error, needs operator attention: %s", exc)
            return ItemResult(key, Outcome.FAILED, watermark, str(exc))
        except MailpailError as exc:
            logger.warning("Failed to reconcile %s: %s", key, exc)
            return ItemResult(key, Outcome.FAILED, watermark, str(exc))

        if action is Action.REPLACE:
            logger.info("Updated %s %s -> %s (%s)", key, stored, artifact.watermark, path.name)
            return ItemResult(key, Outcome.UPDATED, artifact.watermark)
        logger.info("Delivered %s at %s (%s)", key, artifact.watermark, path.name)
        return ItemResult(key, Outcome.DELIVERED, artifact.watermark)

    def _supersede(self, key: str) -> None:
        """Remove the currently delivered file for *key* before republishing."""
        # A mail client may move the file from new/ to cur/ between lookup
        # and removal; re-resolve until it is gone.
        for _ in range(SUPERSEDE_ATTEMPTS):
            path = self._store.require(key)
            if path is None:
                logger.debug("No delivered file left for %s", key)
                return
            if self._store.remove(path):
                return
        raise MailboxError(f"could not remove delivered file for {key!r}: it keeps moving")


def summarize_failures(results: Sequence[ItemResult]) -> list[str]:
    return [f"{r.key}: {r.error}" for r in results if r.outcome is Outcome.FAILED]
