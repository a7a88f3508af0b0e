"""Delivery engine components."""

from mailpail.core.exceptions import (
    AmbiguousDeliveryError,
    ConfigError,
    EntropyUnavailableError,
    FormatError,
    IdentifierError,
    MailboxError,
    MailpailError,
    PublishError,
    ShortWriteError,
    SourceError,
    StateIndexError,
)
from mailpail.core.identifiers import (
    DeliveryCounter,
    HashedHostIdentity,
    HostIdentity,
    HostnameIdentity,
    IdentifierGenerator,
    select_host_identity,
)
from mailpail.core.models import (
    Ambiguous,
    Artifact,
    Found,
    ItemResult,
    NotFound,
    Outcome,
    RunReport,
    comment_key,
    pull_request_key,
)

__all__ = [
    # Identifiers
    "IdentifierGenerator",
    "DeliveryCounter",
    "HostIdentity",
    "HashedHostIdentity",
    "HostnameIdentity",
    "select_host_identity",
    # Models
    "Artifact",
    "Found",
    "NotFound",
    "Ambiguous",
    "ItemResult",
    "Outcome",
    "RunReport",
    "pull_request_key",
    "comment_key",
    # Errors
    "MailpailError",
    "ConfigError",
    "IdentifierError",
    "EntropyUnavailableError",
    "MailboxError",
    "ShortWriteError",
    "PublishError",
    "AmbiguousDeliveryError",
    "StateIndexError",
    "SourceError",
    "FormatError",
]
