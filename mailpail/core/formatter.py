"""Render pull requests and comments as RFC 5322 articles.

Formatting is pure: no network or filesystem access happens here, so the
reconciler can call it freely and discard the result when nothing changed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from email import policy
from email.message import EmailMessage
from email.utils import format_datetime, formataddr

from mailpail.adapters.git.base import Comment, PullRequest, User
from mailpail.core.exceptions import FormatError
from mailpail.core.models import Artifact

logger = logging.getLogger(__name__)

#: Header carrying the delivered watermark; read back in bootstrap mode.
WATERMARK_HEADER = "X-Bitbucket-Version"
DEFAULT_MESSAGE_ID_DOMAIN = "bitbucket.mailpail.invalid"


def from_epoch_millis(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


class ArticleFormatter:
    """Build :class:`Artifact` objects from upstream records.

    Args:
        message_id_domain: Right-hand side of generated ``Message-Id`` values.
    """

    def __init__(self, message_id_domain: str = DEFAULT_MESSAGE_ID_DOMAIN):
        self.domain = message_id_domain

    # ------------------------------------------------------------------
    # Message ids
    # ------------------------------------------------------------------

    def pull_request_message_id(self, pr: PullRequest) -> str:
        return f"<{pr.id}.{pr.project}.{pr.repo}@{self.domain}>"

    def comment_message_id(self, pr: PullRequest, comment: Comment) -> str:
        return f"<{comment.id}.{pr.id}.{pr.project}.{pr.repo}@{self.domain}>"

    def _subject(self, pr: PullRequest) -> str:
        return f"[{pr.project}/{pr.repo} #{pr.id}] {pr.title}"

    def _address(self, user: User) -> str:
        email = user.email or f"{user.name or 'unknown'}@{self.domain}"
        return formataddr((user.display_name, email))

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def format_pull_request(self, pr: PullRequest, diff: bytes) -> Artifact:
        """Render the pull request description followed by its diff."""
        body = (
            f"{pr.description}\n\n---\n\n"
            f"{diff.decode('utf-8', errors='replace')}"
            "-- \n"
        )
        headers = {
            "From": self._address(pr.author),
            "Subject": self._subject(pr),
            "Date": format_datetime(from_epoch_millis(pr.created_date)),
            "Message-Id": self.pull_request_message_id(pr),
            WATERMARK_HEADER: str(pr.version),
        }
        if pr.url:
            headers["Content-Location"] = pr.url
        return self._render(headers, body, pr.version)

    def format_comment(
        self,
        pr: PullRequest,
        comment: Comment,
        ancestors: Sequence[Comment] = (),
    ) -> Artifact:
        """Render one comment as a reply in the pull request's thread.

        Args:
            ancestors: Parent comments from the outermost to the direct parent.
        """
        thread = [self.pull_request_message_id(pr)]
        thread.extend(self.comment_message_id(pr, parent) for parent in ancestors)
        headers = {
            "From": self._address(comment.author),
            "Subject": f"Re: {self._subject(pr)}",
            "Date": format_datetime(from_epoch_millis(comment.created_date)),
            "Message-Id": self.comment_message_id(pr, comment),
            "In-Reply-To": thread[-1],
            "References": " ".join(thread),
            WATERMARK_HEADER: str(comment.version),
        }
        return self._render(headers, comment.text, comment.version)

    def _render(self, headers: dict[str, str], body: str, watermark: int) -> Artifact:
        msg = EmailMessage(policy=policy.default)
        try:
            # set_content() drops any Content-* headers already present.
            msg.set_content(body, subtype="plain", charset="utf-8")
            for name, value in headers.items():
                msg[name] = value
            payload = msg.as_bytes()
        except (ValueError, TypeError, UnicodeError) as exc:
            raise FormatError(f"cannot render {headers.get('Message-Id')}: {exc}") from exc
        return Artifact(payload=payload, watermark=watermark, message_id=headers["Message-Id"])
