"""Upstream platform adapters."""
from mailpail.adapters.git.base import Activity, Comment, PullRequest, SourcePlatform, User
from mailpail.adapters.git.bitbucket import BitbucketPlatform

__all__ = ["SourcePlatform", "PullRequest", "Activity", "Comment", "User", "BitbucketPlatform"]
