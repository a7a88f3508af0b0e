"""Core data models for the delivery engine."""
import urllib.parse
from dataclasses import dataclass, field
from enum import Enum


class Outcome(Enum):
    """What happened to one item during a reconciliation pass."""

    DELIVERED = "delivered"  # first delivery of a new key
    UPDATED = "updated"  # watermark advanced, old file superseded
    SKIPPED = "skipped"  # watermark unchanged, no I/O
    SEEDED = "seeded"  # index seeded from an existing mailbox file
    FAILED = "failed"


class Action(Enum):
    """Decision taken for an item before any write happens."""

    DELIVER = "deliver"
    REPLACE = "replace"
    SKIP = "skip"
    SEED = "seed"


# ---------------------------------------------------------------------------
# Delivery keys
# ---------------------------------------------------------------------------

KEY_SEPARATOR = "."


def _escape_segment(value: object) -> str:
    # "." is the field separator and must never appear inside a segment.
    return urllib.parse.quote(str(value), safe="").replace(".", "%2E")


def build_key(*segments: object) -> str:
    """Join key segments, escaping each so field boundaries stay unambiguous."""
    if not segments:
        raise ValueError("a delivery key needs at least one segment")
    return KEY_SEPARATOR.join(_escape_segment(s) for s in segments)


def pull_request_key(project: str, repo: str, pr_id: int) -> str:
    return build_key(project, repo, "pr", pr_id)


def comment_key(project: str, repo: str, pr_id: int, comment_id: int) -> str:
    return build_key(project, repo, "comment", pr_id, comment_id)


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Artifact:
    """Rendered payload ready to be written verbatim into the mailbox."""

    payload: bytes
    watermark: int
    message_id: str = ""

    def __len__(self) -> int:
        return len(self.payload)


# ---------------------------------------------------------------------------
# Mailbox lookup results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotFound:
    """No delivered file exists for the key."""

    key: str


@dataclass(frozen=True)
class Found:
    """Exactly one delivered file exists for the key."""

    key: str
    path: str


@dataclass(frozen=True)
class Ambiguous:
    """More than one delivered file exists for the key."""

    key: str
    paths: tuple[str, ...]

    @property
    def count(self) -> int:
        return len(self.paths)


LookupResult = NotFound | Found | Ambiguous


# ---------------------------------------------------------------------------
# Run reporting
# ---------------------------------------------------------------------------


@dataclass
class ItemResult:
    key: str
    outcome: Outcome
    watermark: int | None = None
    error: str | None = None


@dataclass
class RunReport:
    """Summary of one reconciliation pass."""

    items: list[ItemResult] = field(default_factory=list)

    def add(self, result: ItemResult) -> None:
        self.items.append(result)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for item in self.items if item.outcome == outcome)

    @property
    def writes(self) -> int:
        """Number of items that touched the mailbox or the index."""
        return sum(
            1
            for item in self.items
            if item.outcome in (Outcome.DELIVERED, Outcome.UPDATED, Outcome.SEEDED)
        )

    @property
    def failed(self) -> list[ItemResult]:
        return [item for item in self.items if item.outcome == Outcome.FAILED]

    def summary(self) -> str:
        return ", ".join(f"{outcome.value}={self.count(outcome)}" for outcome in Outcome)
