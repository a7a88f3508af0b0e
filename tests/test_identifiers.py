"""Tests for delivery token generation."""

import re
import uuid
from unittest.mock import patch

import pytest

from mailpail.core.exceptions import EntropyUnavailableError, IdentifierError
from mailpail.core.identifiers import (
    DEFAULT_COUNTER_START,
    DeliveryCounter,
    HashedHostIdentity,
    HostnameIdentity,
    IdentifierGenerator,
    app_specific_id,
    escape_hostname,
    select_host_identity,
)

MACHINE_ID = uuid.UUID("0123456789abcdef0123456789abcdef")
BOOT_ID = uuid.UUID("fedcba9876543210fedcba9876543210")

HASHED_TOKEN = re.compile(
    r"^(?P<sec>\d+)\.X(?P<boot>[0-9a-f-]{36})P(?P<pid>\d+)Q(?P<q>\d+)"
    r"R(?P<rand>[0-9a-f]{20})M(?P<usec>\d+)\.D(?P<machine>[0-9a-f-]{36})$"
)
HOSTNAME_TOKEN = re.compile(
    r"^(?P<sec>\d+)\.P(?P<pid>\d+)Q(?P<q>\d+)R(?P<rand>[0-9a-f]{20})M(?P<usec>\d+)\.(?P<host>.+)$"
)


class TestAppSpecificId:
    def test_sets_uuid_v4_bits(self):
        derived = app_specific_id(MACHINE_ID)
        assert derived.version == 4
        assert derived.variant == uuid.RFC_4122

    def test_is_deterministic_and_hides_base(self):
        assert app_specific_id(MACHINE_ID) == app_specific_id(MACHINE_ID)
        assert app_specific_id(MACHINE_ID) != MACHINE_ID
        assert app_specific_id(MACHINE_ID) != app_specific_id(BOOT_ID)

    def test_depends_on_application_id(self):
        assert app_specific_id(MACHINE_ID, b"a" * 16) != app_specific_id(MACHINE_ID, b"b" * 16)


class TestHostIdentity:
    def test_escape_hostname(self):
        assert escape_hostname("mail/host:1") == "mail\\057host\\0721"

    def test_hostname_identity(self):
        identity = HostnameIdentity("a/b:c")
        assert identity.prefix() == ""
        assert identity.suffix() == "a\\057b\\072c"

    def test_hashed_identity_with_boot_id(self):
        identity = HashedHostIdentity(MACHINE_ID, BOOT_ID)
        assert identity.prefix() == f"X{app_specific_id(BOOT_ID)}"
        assert identity.suffix() == f"D{app_specific_id(MACHINE_ID)}"

    def test_hashed_identity_without_boot_id(self):
        assert HashedHostIdentity(MACHINE_ID).prefix() == ""

    def test_falls_back_to_hostname_without_machine_id(self):
        with patch.object(HashedHostIdentity, "from_system", side_effect=OSError("missing")):
            identity = select_host_identity()
        assert isinstance(identity, HostnameIdentity)

    def test_from_system_reads_id_files(self, tmp_path):
        machine = tmp_path / "machine-id"
        machine.write_text(MACHINE_ID.hex + "\n")
        boot = tmp_path / "boot_id"
        boot.write_text(str(BOOT_ID) + "\n")

        with (
            patch("mailpail.core.identifiers.MACHINE_ID_PATHS", (str(tmp_path / "nope"), str(machine))),
            patch("mailpail.core.identifiers.BOOT_ID_PATH", str(boot)),
        ):
            identity = HashedHostIdentity.from_system()

        assert identity.machine_id == app_specific_id(MACHINE_ID)
        assert identity.boot_id == app_specific_id(BOOT_ID)

    def test_from_system_without_machine_id_raises(self, tmp_path):
        with patch("mailpail.core.identifiers.MACHINE_ID_PATHS", (str(tmp_path / "nope"),)):
            with pytest.raises(OSError):
                HashedHostIdentity.from_system()


class TestDeliveryCounter:
    def test_starts_after_default(self):
        counter = DeliveryCounter()
        assert counter.next() == DEFAULT_COUNTER_START + 1
        assert counter.next() == DEFAULT_COUNTER_START + 2
        assert counter.value == DEFAULT_COUNTER_START + 2


class TestIdentifierGenerator:
    def test_hashed_token_format(self):
        gen = IdentifierGenerator(host=HashedHostIdentity(MACHINE_ID, BOOT_ID), pid=4242)
        match = HASHED_TOKEN.match(gen.next())

        assert match is not None
        assert match["pid"] == "4242"
        assert match["boot"] == str(app_specific_id(BOOT_ID))
        assert match["machine"] == str(app_specific_id(MACHINE_ID))
        assert 0 <= int(match["usec"]) < 1_000_000

    def test_hostname_token_format(self):
        gen = IdentifierGenerator(host=HostnameIdentity("build/01"), pid=7)
        match = HOSTNAME_TOKEN.match(gen.next())

        assert match is not None
        assert match["host"] == "build\\05701"

    def test_counter_advances_per_token(self):
        gen = IdentifierGenerator(host=HostnameIdentity("h"), counter=DeliveryCounter(start=5))
        first = HOSTNAME_TOKEN.match(gen.next())
        second = HOSTNAME_TOKEN.match(gen())
        assert (int(first["q"]), int(second["q"])) == (6, 7)

    def test_tokens_are_unique(self):
        gen = IdentifierGenerator(host=HostnameIdentity("h"))
        tokens = {gen.next() for _ in range(1_000_000)}
        assert len(tokens) == 1_000_000

    def test_tokens_are_filename_safe(self):
        gen = IdentifierGenerator(host=HostnameIdentity("odd/host:name"))
        for _ in range(100):
            token = gen.next()
            assert "/" not in token
            assert "\0" not in token

    def test_unsafe_host_suffix_is_rejected(self):
        class SlashIdentity(HostnameIdentity):
            def suffix(self) -> str:
                return "bad/host"

        gen = IdentifierGenerator(host=SlashIdentity("x"))
        with pytest.raises(IdentifierError):
            gen.next()

    def test_entropy_failure_is_reported(self):
        gen = IdentifierGenerator(host=HostnameIdentity("h"))
        with patch(
            "mailpail.core.identifiers.secrets.token_bytes",
            side_effect=NotImplementedError("no urandom"),
        ):
            with pytest.raises(EntropyUnavailableError):
                gen.next()

    def test_pid_follows_process(self):
        gen = IdentifierGenerator(host=HostnameIdentity("h"))
        with patch("mailpail.core.identifiers.os.getpid", return_value=99):
            assert "P99Q" in gen.next()
