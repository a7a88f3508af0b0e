"""Maildir-backed delivery store.

Layout under the root::

    tmp/   staging, never considered delivered
    new/   published, not yet seen by a mail client
    cur/   published and moved by a mail client (read-only for us)

Articles are written to ``tmp/`` under a unique name, then hard-linked into
``new/`` and unlinked from ``tmp/``. A crash between link and unlink leaves a
complete file in ``new/`` and a harmless leftover in ``tmp/`` that
:meth:`Maildir.clean_staging` removes later.
"""

from __future__ import annotations

import logging
import os
import time
from email.message import Message
from email.parser import BytesHeaderParser
from pathlib import Path

from mailpail.core.exceptions import (
    AmbiguousDeliveryError,
    MailboxError,
    PublishError,
    ShortWriteError,
)
from mailpail.core.identifiers import IdentifierGenerator
from mailpail.core.models import KEY_SEPARATOR, Ambiguous, Found, LookupResult, NotFound

logger = logging.getLogger(__name__)

STAGING = "tmp"
PUBLISHED_NEW = "new"
PUBLISHED_SEEN = "cur"

#: Conventional age after which a maildir reader may remove stale tmp files.
DEFAULT_STAGING_MAX_AGE = 36 * 3600

_OPEN, _PUBLISHED, _ABORTED = "open", "published", "aborted"


def _base_name(path: str) -> str:
    return os.path.basename(path).split(":", 1)[0]


def _fsync_directory(path: Path) -> None:
    """Flush directory entries so a new link survives power loss."""
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class WriteHandle:
    """A single in-progress delivery.

    Use as a context manager; leaving the block without calling
    :meth:`publish` aborts the delivery and removes the staging file.
    """

    def __init__(self, maildir: Maildir, filename: str, fd: int):
        self._maildir = maildir
        self.filename = filename
        self._fd: int | None = fd
        self._state = _OPEN

    @property
    def staging_path(self) -> Path:
        return self._maildir.staging_dir / self.filename

    @property
    def published_path(self) -> Path:
        return self._maildir.new_dir / self.filename

    @property
    def closed(self) -> bool:
        return self._state != _OPEN

    def _require_open(self) -> int:
        if self._state != _OPEN or self._fd is None:
            raise MailboxError(f"write handle for {self.filename} is {self._state}")
        return self._fd

    def write(self, data: bytes) -> int:
        fd = self._require_open()
        try:
            written = os.write(fd, data)
        except OSError as exc:
            raise MailboxError(f"writing {self.staging_path}: {exc}") from exc
        if written != len(data):
            raise ShortWriteError(str(self.staging_path), written, len(data))
        return written

    def _close_fd(self) -> None:
        if self._fd is not None:
            fd, self._fd = self._fd, None
            os.close(fd)

    def publish(self) -> Path:
        """Make the staged file visible in ``new/``.

        Returns:
            Path of the published file.

        Raises:
            PublishError: flushing, linking or unlinking failed. The handle
                must not be reused.
        """
        fd = self._require_open()
        src, dst = self.staging_path, self.published_path
        self._state = _PUBLISHED
        try:
            os.fsync(fd)
            self._close_fd()
            os.link(src, dst)
        except OSError as exc:
            self._state = _ABORTED
            try:
                self._close_fd()
                src.unlink(missing_ok=True)
            except OSError as cleanup_exc:
                logger.warning("Could not discard staged %s: %s", src, cleanup_exc)
            raise PublishError(f"publishing {self.filename}: {exc}") from exc
        try:
            _fsync_directory(dst.parent)
        except OSError as exc:
            raise PublishError(f"flushing {dst.parent} after publish: {exc}") from exc
        try:
            os.unlink(src)
        except OSError as exc:
            raise PublishError(f"removing staged {src} after publish: {exc}") from exc
        logger.debug("Published %s", dst)
        return dst

    def abort(self) -> None:
        """Discard the staged file without publishing."""
        if self._state == _ABORTED:
            return
        if self._state == _PUBLISHED:
            raise MailboxError(f"cannot abort published delivery {self.filename}")
        self._state = _ABORTED
        try:
            self._close_fd()
            self.staging_path.unlink(missing_ok=True)
        except OSError as exc:
            raise MailboxError(f"aborting {self.filename}: {exc}") from exc
        logger.debug("Aborted staged delivery %s", self.filename)

    def __enter__(self) -> WriteHandle:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._state == _OPEN:
            self.abort()


class Maildir:
    """Delivery store rooted at a maildir directory.

    Args:
        root: Maildir root; ``tmp``, ``new`` and ``cur`` live beneath it.
        identifiers: Token generator for unique staging names.
        create: Create the three directories when missing.
    """

    def __init__(
        self,
        root: str | Path,
        identifiers: IdentifierGenerator | None = None,
        create: bool = True,
    ):
        self.root = Path(root).expanduser()
        self.staging_dir = self.root / STAGING
        self.new_dir = self.root / PUBLISHED_NEW
        self.cur_dir = self.root / PUBLISHED_SEEN
        self.identifiers = identifiers or IdentifierGenerator()

        if create:
            try:
                for directory in (self.staging_dir, self.new_dir, self.cur_dir):
                    directory.mkdir(mode=0o700, parents=True, exist_ok=True)
            except OSError as exc:
                raise MailboxError(f"cannot create maildir at {self.root}: {exc}") from exc

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def begin_write(self, name_hint: str) -> WriteHandle:
        """Create a staging file named ``{name_hint}.{token}``."""
        if not name_hint or "/" in name_hint:
            raise ValueError(f"invalid delivery name hint: {name_hint!r}")
        filename = f"{name_hint}{KEY_SEPARATOR}{self.identifiers.next()}"
        path = self.staging_dir / filename
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except OSError as exc:
            raise MailboxError(f"cannot create staging file {path}: {exc}") from exc
        return WriteHandle(self, filename, fd)

    def deliver(self, key: str, payload: bytes) -> Path:
        """Write and publish *payload* in one call."""
        with self.begin_write(key) as handle:
            handle.write(payload)
            return handle.publish()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _scan(self, directory: Path, prefix: str) -> list[str]:
        try:
            names = os.listdir(directory)
        except OSError as exc:
            raise MailboxError(f"cannot list {directory}: {exc}") from exc
        return sorted(str(directory / name) for name in names if name.startswith(prefix))

    def lookup(self, key: str) -> LookupResult:
        """Find the published file for *key* in ``new/`` and ``cur/``."""
        prefix = f"{key}{KEY_SEPARATOR}"
        # new/ is listed before cur/ so a file a client moves between the two
        # listings is seen at least once. Entries are keyed by base name without
        # the ":2,<flags>" info suffix, so it is also counted at most once.
        by_name: dict[str, str] = {}
        for path in self._scan(self.new_dir, prefix) + self._scan(self.cur_dir, prefix):
            by_name[_base_name(path)] = path
        matches = sorted(by_name.values())
        if not matches:
            return NotFound(key)
        if len(matches) == 1:
            return Found(key, matches[0])
        return Ambiguous(key, tuple(matches))

    def require(self, key: str) -> str | None:
        """Return the single published path for *key*, ``None`` when absent.

        Raises:
            AmbiguousDeliveryError: more than one file matches.
        """
        result = self.lookup(key)
        if isinstance(result, Ambiguous):
            raise AmbiguousDeliveryError(key, result.count)
        if isinstance(result, Found):
            return result.path
        return None

    def read_headers(self, path: str | Path) -> Message:
        """Parse the header block of a delivered article."""
        try:
            with open(path, "rb") as fh:
                return BytesHeaderParser().parse(fh)
        except OSError as exc:
            raise MailboxError(f"cannot read headers of {path}: {exc}") from exc

    def published_count(self) -> int:
        return len(os.listdir(self.new_dir)) + len(os.listdir(self.cur_dir))

    # ------------------------------------------------------------------
    # Removal / maintenance
    # ------------------------------------------------------------------

    def remove(self, path: str | Path) -> bool:
        """Delete a published file.

        Returns:
            True when removed, False if it was already gone.
        """
        path = Path(path)
        if path.parent not in (self.new_dir, self.cur_dir):
            raise MailboxError(f"refusing to remove {path}: not a published file")
        try:
            path.unlink()
        except FileNotFoundError:
            logger.info("Published file %s already gone", path)
            return False
        except OSError as exc:
            raise MailboxError(f"cannot remove {path}: {exc}") from exc
        logger.debug("Removed superseded %s", path)
        return True

    def _is_published(self, filename: str) -> bool:
        if (self.new_dir / filename).exists():
            return True
        # cur/ entries may carry a ":2,<flags>" info suffix.
        return any(
            name == filename or name.startswith(f"{filename}:")
            for name in os.listdir(self.cur_dir)
        )

    def clean_staging(self, max_age: float = DEFAULT_STAGING_MAX_AGE) -> int:
        """Remove leftover staging files.

        A staging file is removed when its published twin already exists
        (crash between link and unlink) or when it is older than *max_age*
        seconds.

        Returns:
            Number of files removed.
        """
        cutoff = time.time() - max_age
        removed = 0
        for entry in os.scandir(self.staging_dir):
            if not entry.is_file(follow_symlinks=False):
                continue
            try:
                stale = entry.stat().st_mtime < cutoff
                if self._is_published(entry.name) or stale:
                    os.unlink(entry.path)
                    removed += 1
                    logger.info("Removed stray staging file %s", entry.name)
            except FileNotFoundError:
                continue
        return removed
