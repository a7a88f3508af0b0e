"""
mailpail - deliver code review traffic into a maildir, exactly once.

Licensed under Apache 2.0
"""

__version__ = "0.1.0"

from mailpail.adapters.git import BitbucketPlatform, SourcePlatform
from mailpail.adapters.mailbox import Maildir, WriteHandle
from mailpail.adapters.storage import SQLStateIndex, StateIndex
from mailpail.core.exceptions import AmbiguousDeliveryError, MailpailError
from mailpail.core.formatter import ArticleFormatter
from mailpail.core.identifiers import IdentifierGenerator
from mailpail.core.models import Ambiguous, Artifact, Found, NotFound, Outcome, RunReport
from mailpail.core.reconciler import Reconciler

__all__ = [
    # Version
    "__version__",
    # Engine
    "IdentifierGenerator",
    "Maildir",
    "WriteHandle",
    "StateIndex",
    "SQLStateIndex",
    "Reconciler",
    # Collaborators
    "ArticleFormatter",
    "SourcePlatform",
    "BitbucketPlatform",
    # Models
    "Artifact",
    "Found",
    "NotFound",
    "Ambiguous",
    "Outcome",
    "RunReport",
    # Errors
    "MailpailError",
    "AmbiguousDeliveryError",
]
