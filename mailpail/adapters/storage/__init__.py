"""State index backends."""

from mailpail.adapters.storage.base import StateIndex
from mailpail.adapters.storage.sql import SQLStateIndex

__all__ = ["StateIndex", "SQLStateIndex"]
