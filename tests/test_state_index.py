"""Tests for the SQL-backed state index."""

import pytest
import sqlalchemy as sa

from mailpail.adapters.storage.sql import SQLStateIndex, normalize_dsn
from mailpail.core.exceptions import StateIndexError


class TestSQLStateIndex:
    def test_missing_key(self, state_index: SQLStateIndex):
        assert state_index.exists("PROJ.repo.pr.1") is False
        assert state_index.watermark("PROJ.repo.pr.1") is None

    def test_upsert_inserts_then_updates(self, state_index: SQLStateIndex):
        state_index.upsert("PROJ.repo.pr.1", 0)
        assert state_index.exists("PROJ.repo.pr.1") is True
        assert state_index.watermark("PROJ.repo.pr.1") == 0

        state_index.upsert("PROJ.repo.pr.1", 5)
        assert state_index.watermark("PROJ.repo.pr.1") == 5
        assert list(state_index.records()) == [("PROJ.repo.pr.1", 5)]

    def test_records_are_ordered_by_key(self, state_index: SQLStateIndex):
        state_index.upsert("PROJ.repo.pr.2", 1)
        state_index.upsert("PROJ.repo.comment.1.7", 0)
        state_index.upsert("PROJ.repo.pr.1", 3)

        assert list(state_index.records()) == [
            ("PROJ.repo.comment.1.7", 0),
            ("PROJ.repo.pr.1", 3),
            ("PROJ.repo.pr.2", 1),
        ]

    def test_large_watermarks(self, state_index: SQLStateIndex):
        state_index.upsert("k", 2**40)
        assert state_index.watermark("k") == 2**40

    def test_upsert_is_a_single_statement(self, state_index: SQLStateIndex):
        state_index.upsert("PROJ.repo.pr.1", 0)
        statements: list[str] = []

        @sa.event.listens_for(state_index._engine, "before_cursor_execute")
        def record(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        state_index.upsert("PROJ.repo.pr.1", 1)
        sa.event.remove(state_index._engine, "before_cursor_execute", record)

        assert len(statements) == 1
        assert "ON CONFLICT" in statements[0].upper()

    def test_persists_across_instances(self, tmp_path):
        dsn = f"sqlite:///{tmp_path / 'state.db'}"
        first = SQLStateIndex(dsn)
        first.upsert("PROJ.repo.pr.1", 4)
        first.close()

        with SQLStateIndex(dsn) as second:
            assert second.watermark("PROJ.repo.pr.1") == 4

    def test_unsupported_dialect(self):
        with pytest.raises(StateIndexError):
            SQLStateIndex("mysql://user@localhost/mailpail")

    def test_unreadable_database_path(self, tmp_path):
        with pytest.raises(StateIndexError):
            SQLStateIndex(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'state.db'}")


class TestNormalizeDsn:
    @pytest.mark.parametrize(
        "dsn, expected",
        [
            ("postgresql://u:p@h/db", "postgresql+psycopg2://u:p@h/db"),
            ("postgres://u:p@h/db", "postgresql+psycopg2://u:p@h/db"),
            ("postgresql+psycopg2://u@h/db", "postgresql+psycopg2://u@h/db"),
            ("sqlite:///state.db", "sqlite:///state.db"),
        ],
    )
    def test_normalize(self, dsn, expected):
        assert normalize_dsn(dsn) == expected
