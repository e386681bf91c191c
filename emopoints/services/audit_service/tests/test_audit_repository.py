"""Tests for PostgresAuditJournal (pooled connections mocked)."""
import json
from datetime import datetime, timedelta, timezone

import psycopg2
import pytest
from unittest.mock import MagicMock, patch

from emopoints.shared.database import ConnectionManager, DatabaseConfig, RepositoryError
from emopoints.shared.utils import ManualClock, configure_pii_salt, hash_pii
from emopoints.services.audit_service import (
    GENESIS_HASH,
    AuditAction,
    AuditLogger,
    PostgresAuditJournal,
)
from emopoints.services.audit_service.audit_repository import SCHEMA_SQL


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def conn():
    return MagicMock()


@pytest.fixture
def cursor(conn):
    return conn.cursor.return_value.__enter__.return_value


@pytest.fixture
def manager(conn):
    with patch("emopoints.shared.database.connection.pool.ThreadedConnectionPool") as pool_cls:
        pool_cls.return_value.getconn.return_value = conn
        manager = ConnectionManager(DatabaseConfig(host="db"))
        manager.initialize()
        yield manager


@pytest.fixture
def journal(manager):
    return PostgresAuditJournal(manager, ManualClock(T0))


def as_row(entry):
    return (
        entry.entry_id,
        entry.timestamp,
        entry.action.value,
        entry.student_id_hash,
        entry.amount,
        entry.balance_after,
        dict(entry.details),
        entry.previous_hash,
        entry.entry_hash,
    )


def stored_chain():
    """Entries as an in-memory journal would chain them."""
    memory = AuditLogger(ManualClock(T0))
    memory.log(AuditAction.POINTS_CREDITED, "student_001", 10, 10, details={"submission_id": "sub_1"})
    memory.log(AuditAction.POINTS_DEBITED, "student_001", 10, 0,
               details={"reason": "reward_redemption", "reward_id": "pencil", "cost": 10},
               timestamp=T0 + timedelta(hours=1))
    return memory.query(student_id="student_001")


class TestSchema:
    def test_schema_orders_chains(self):
        assert "points_journal" in SCHEMA_SQL
        assert "BIGSERIAL PRIMARY KEY" in SCHEMA_SQL
        assert "(student_id_hash, seq)" in SCHEMA_SQL

    def test_create_schema(self, journal, conn, cursor):
        journal.create_schema()

        cursor.execute.assert_called_once_with(SCHEMA_SQL)
        conn.commit.assert_called_once()


class TestLog:
    def test_joins_ledger_transaction(self, journal, conn):
        unit_conn = MagicMock()
        unit_cursor = unit_conn.cursor.return_value.__enter__.return_value
        unit_cursor.fetchone.return_value = None

        entry = journal.log(AuditAction.POINTS_CREDITED, "student_001", 10, 10,
                            details={"submission_id": "sub_1"}, conn=unit_conn)

        assert entry.previous_hash == GENESIS_HASH
        assert entry.student_id_hash == hash_pii("student_001")
        head_query, head_params = unit_cursor.execute.call_args_list[0].args
        assert "ORDER BY seq DESC" in head_query
        assert head_params == (hash_pii("student_001"),)
        insert_query, insert_params = unit_cursor.execute.call_args_list[1].args
        assert insert_query.startswith("INSERT INTO points_journal")
        assert json.loads(insert_params[6]) == {"submission_id": "sub_1"}
        assert insert_params[-1] == entry.entry_hash
        unit_conn.commit.assert_not_called()
        conn.cursor.assert_not_called()

    def test_links_to_stored_head(self, journal, conn):
        unit_conn = MagicMock()
        unit_cursor = unit_conn.cursor.return_value.__enter__.return_value
        unit_cursor.fetchone.return_value = ("a" * 64,)

        entry = journal.log(AuditAction.POINTS_DEBITED, "student_001", 10, 0, conn=unit_conn)

        assert entry.previous_hash == "a" * 64
        assert entry.entry_hash == entry.compute_hash()

    def test_standalone_write_locks_and_commits(self, journal, conn, cursor):
        cursor.fetchone.return_value = None

        journal.log(AuditAction.POINTS_CREDITED, "student_001", 10, 10)

        assert cursor.execute.call_args_list[0].args == (
            "SELECT pg_advisory_xact_lock(hashtext(%s))", ("student_001",)
        )
        conn.commit.assert_called_once()

    def test_insert_failure_rolls_back(self, journal, conn, cursor):
        cursor.fetchone.return_value = None
        cursor.execute.side_effect = [None, None, psycopg2.OperationalError("disk full")]

        with pytest.raises(RepositoryError):
            journal.log(AuditAction.POINTS_CREDITED, "student_001", 10, 10)

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_connection_failure_is_retryable(self, journal, cursor):
        cursor.execute.side_effect = psycopg2.OperationalError("server closed the connection")

        with pytest.raises(RepositoryError):
            journal.log(AuditAction.POINTS_CREDITED, "student_001", 10, 10)


class TestStoredChains:
    def test_verify_intact_chain(self, journal, cursor):
        cursor.fetchall.return_value = [as_row(e) for e in stored_chain()]

        assert journal.verify_chain("student_001")
        query, params = cursor.execute.call_args.args
        assert "ORDER BY seq ASC" in query
        assert params == (hash_pii("student_001"),)

    def test_detects_tampered_row(self, journal, cursor):
        rows = [as_row(e) for e in stored_chain()]
        rows[0] = rows[0][:4] + (1000,) + rows[0][5:]
        cursor.fetchall.return_value = rows

        assert not journal.verify_chain("student_001")

    def test_query_filters_by_action(self, journal, cursor):
        cursor.fetchall.return_value = [as_row(e) for e in stored_chain()]

        debits = journal.query(student_id="student_001", action=AuditAction.POINTS_DEBITED)

        assert len(debits) == 1
        assert debits[0].details["reward_id"] == "pencil"
        assert debits[0].timestamp == T0 + timedelta(hours=1)

    def test_details_stored_as_text_are_decoded(self, journal, cursor):
        entry = stored_chain()[0]
        row = as_row(entry)
        cursor.fetchall.return_value = [row[:6] + (json.dumps(entry.details),) + row[7:]]

        loaded = journal.query(student_id="student_001")

        assert loaded[0].details == {"submission_id": "sub_1"}
        assert loaded[0].entry_hash == loaded[0].compute_hash()

    def test_all_chains_grouped_by_student(self, journal, cursor):
        memory = AuditLogger(ManualClock(T0))
        memory.log(AuditAction.POINTS_CREDITED, "student_002", 10, 10, timestamp=T0 + timedelta(hours=2))
        memory.log(AuditAction.POINTS_CREDITED, "student_001", 10, 10, timestamp=T0 + timedelta(hours=1))
        cursor.fetchall.return_value = [as_row(e) for e in memory.query()]

        assert journal.verify_chain()
        assert [e.timestamp for e in journal.query()] == [T0 + timedelta(hours=1), T0 + timedelta(hours=2)]
