"""Error taxonomy for the delivery engine.

Startup errors (``MailboxError`` while creating the maildir, ``StateIndexError``
while opening the index, ``SourceError`` during enumeration) abort a run.
Everything raised while handling a single item is caught by the reconciler,
logged, and leaves that item to be retried on the next run.
"""


class MailpailError(Exception):
    """Base class for all mailpail errors."""


class ConfigError(MailpailError):
    """Raised when configuration is missing or invalid."""


class IdentifierError(MailpailError):
    """Raised when a unique delivery token cannot be produced."""


class EntropyUnavailableError(IdentifierError):
    """Raised when the system random source is unavailable."""


class MailboxError(MailpailError):
    """Raised on maildir I/O failure."""


class ShortWriteError(MailboxError):
    """Raised when fewer bytes were written than requested."""

    def __init__(self, path: str, written: int, expected: int):
        super().__init__(f"truncated write to {path}: wrote={written} expected={expected}")
        self.path = path
        self.written = written
        self.expected = expected


class PublishError(MailboxError):
    """Raised when a staged file could not be moved into ``new/``."""


class AmbiguousDeliveryError(MailboxError):
    """Raised when more than one delivered file exists for a key.

    This is a consistency error that needs operator attention; the engine never
    guesses which file is authoritative.
    """

    def __init__(self, key: str, count: int):
        super().__init__(f"found {count} delivered files for key {key!r}")
        self.key = key
        self.count = count


class StateIndexError(MailpailError):
    """Raised when the state index cannot be read or written."""


class SourceError(MailpailError):
    """Raised when the upstream source returns an error or unreadable data."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class FormatError(MailpailError):
    """Raised when a record cannot be rendered into an article."""
