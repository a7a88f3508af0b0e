"""Base interface for upstream code review platforms."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class User:
    display_name: str
    email: str = ""
    name: str = ""


@dataclass
class Comment:
    """A review comment; ``replies`` holds nested comments."""

    id: int
    version: int
    text: str
    author: User
    created_date: int  # epoch milliseconds
    replies: list["Comment"] = field(default_factory=list)


@dataclass
class Activity:
    """One entry of a pull request's activity stream."""

    id: int
    action: str  # "COMMENTED", "APPROVED", "RESCOPED", ...
    created_date: int
    comment: Comment | None = None


@dataclass
class PullRequest:
    """Platform-agnostic pull request representation."""

    id: int
    version: int
    title: str
    description: str
    project: str
    repo: str
    author: User
    created_date: int  # epoch milliseconds
    updated_date: int
    state: str = "OPEN"
    url: str = ""


class SourcePlatform(ABC):
    """Read-only access to pull requests and their activity."""

    @abstractmethod
    async def list_pull_requests(self) -> list[PullRequest]:
        """Enumerate the pull requests to reconcile."""
        pass

    @abstractmethod
    async def get_activities(self, project: str, repo: str, pr_id: int) -> list[Activity]:
        """Get the activity stream of a pull request."""
        pass

    @abstractmethod
    async def get_diff(self, project: str, repo: str, pr_id: int) -> bytes:
        """Get the unified diff of a pull request."""
        pass
