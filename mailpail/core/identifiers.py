"""Unique delivery tokens for maildir file names.

A token is unique per delivery across processes and machines sharing one
maildir. On hosts that expose a machine id (and usually a boot id) the token
embeds app-specific derivations of those ids::

    {sec}.X{boot-id}P{pid}Q{delivery}R{random}M{usec}.D{machine-id}

Elsewhere the escaped hostname is used instead::

    {sec}.P{pid}Q{delivery}R{random}M{usec}.{hostname}

Every field except the trailing host field is decimal, hex or canonical UUID text,
none of which can contain the ``.``, ``X``, ``P``, ``Q``, ``R``, ``M`` or
``D`` delimiters at the positions they appear. The host field may contain
dots (a dotted hostname); ``/`` and ``:`` are escaped there.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import secrets
import socket
import threading
import time
import uuid
from abc import ABC, abstractmethod

from mailpail.core.exceptions import EntropyUnavailableError, IdentifierError

logger = logging.getLogger(__name__)

#: Private application id mixed into the machine/boot ids so the values in
#: file names cannot be correlated with other software on the same host.
APPLICATION_ID = bytes(
    [
        0x06, 0x0E, 0x97, 0x74, 0x4C, 0x65, 0x49, 0x95,
        0xBF, 0xD6, 0x46, 0xCD, 0x3F, 0x16, 0x07, 0xC1,
    ]
)

MACHINE_ID_PATHS = ("/etc/machine-id", "/var/lib/dbus/machine-id")
BOOT_ID_PATH = "/proc/sys/kernel/random/boot_id"

RANDOM_BYTES = 10
DEFAULT_COUNTER_START = 10000


def app_specific_id(base: uuid.UUID, app_id: bytes = APPLICATION_ID) -> uuid.UUID:
    """Derive an application-specific id from a machine or boot id.

    Computes the same value as systemd's ``sd_id128_get_machine_app_specific``:
    HMAC-SHA256 keyed by the raw id, truncated to 16 bytes, marked as a
    random (v4) UUID.
    """
    digest = bytearray(hmac.new(base.bytes, app_id, hashlib.sha256).digest()[:16])
    digest[6] = (digest[6] & 0x0F) | 0x40
    digest[8] = (digest[8] & 0x3F) | 0x80
    return uuid.UUID(bytes=bytes(digest))


def escape_hostname(hostname: str) -> str:
    return hostname.replace("/", "\\057").replace(":", "\\072")


class DeliveryCounter:
    """Monotonic per-process delivery counter."""

    def __init__(self, start: int = DEFAULT_COUNTER_START):
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        return self._value


# ---------------------------------------------------------------------------
# Host identity sources
# ---------------------------------------------------------------------------


class HostIdentity(ABC):
    """Host component of a delivery token."""

    @abstractmethod
    def prefix(self) -> str:
        """Text placed before the ``P{pid}`` field."""

    @abstractmethod
    def suffix(self) -> str:
        """Text placed after the final ``.`` of the token."""


class HashedHostIdentity(HostIdentity):
    """App-specific machine id (and boot id, when known)."""

    def __init__(self, machine_id: uuid.UUID, boot_id: uuid.UUID | None = None):
        self.machine_id = app_specific_id(machine_id)
        self.boot_id = app_specific_id(boot_id) if boot_id is not None else None

    @classmethod
    def from_system(cls) -> HashedHostIdentity:
        """Read ids from the usual Linux locations.

        Raises:
            OSError: no machine id file is readable.
            ValueError: the machine id is not a valid UUID.
        """
        machine_raw = None
        last_exc: OSError | None = None
        for path in MACHINE_ID_PATHS:
            try:
                with open(path, encoding="ascii") as fh:
                    machine_raw = fh.read().strip()
                break
            except OSError as exc:
                last_exc = exc
        if machine_raw is None:
            raise last_exc or OSError("no machine-id available")

        boot_id = None
        try:
            with open(BOOT_ID_PATH, encoding="ascii") as fh:
                boot_id = uuid.UUID(fh.read().strip())
        except (OSError, ValueError) as exc:
            logger.debug("boot id unavailable: %s", exc)

        return cls(uuid.UUID(machine_raw), boot_id)

    def prefix(self) -> str:
        return f"X{self.boot_id}" if self.boot_id is not None else ""

    def suffix(self) -> str:
        return f"D{self.machine_id}"


class HostnameIdentity(HostIdentity):
    """Escaped system hostname, for hosts without a machine id."""

    def __init__(self, hostname: str | None = None):
        self.hostname = escape_hostname(hostname or socket.gethostname())

    def prefix(self) -> str:
        return ""

    def suffix(self) -> str:
        return self.hostname


def select_host_identity() -> HostIdentity:
    """Prefer hashed machine/boot ids, fall back to the hostname."""
    try:
        identity: HostIdentity = HashedHostIdentity.from_system()
        logger.debug("Using hashed machine identity for delivery tokens")
    except (OSError, ValueError) as exc:
        logger.debug("Machine id unavailable (%s), using hostname", exc)
        identity = HostnameIdentity()
    return identity


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class IdentifierGenerator:
    """Produce filename-safe tokens that are unique per delivery.

    Args:
        host: Host identity source. Selected with :func:`select_host_identity`
            when omitted.
        counter: Delivery counter owned by this generator.
        pid: Process id override (tests).
    """

    def __init__(
        self,
        host: HostIdentity | None = None,
        counter: DeliveryCounter | None = None,
        pid: int | None = None,
    ):
        self.host = host or select_host_identity()
        self.counter = counter or DeliveryCounter()
        self._pid = pid

    @property
    def pid(self) -> int:
        # Looked up per call so forked children do not reuse the parent's pid.
        return self._pid if self._pid is not None else os.getpid()

    def next(self) -> str:
        now = time.time_ns()
        seconds, nanos = divmod(now, 1_000_000_000)
        try:
            random_hex = secrets.token_bytes(RANDOM_BYTES).hex()
        except NotImplementedError as exc:
            raise EntropyUnavailableError("system random source unavailable") from exc

        delivery = self.counter.next()
        token = (
            f"{seconds}.{self.host.prefix()}P{self.pid}Q{delivery}"
            f"R{random_hex}M{nanos // 1000}.{self.host.suffix()}"
        )
        if "/" in token or "\0" in token:
            raise IdentifierError(f"unsafe delivery token: {token!r}")
        return token

    __call__ = next
