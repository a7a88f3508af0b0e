"""Mailbox delivery stores."""
from mailpail.adapters.mailbox.maildir import Maildir, WriteHandle

__all__ = ["Maildir", "WriteHandle"]
