"""PostgreSQL-backed points journal.

Entries go to the append-only points_journal table. The application role
needs INSERT and SELECT only; there is no UPDATE or DELETE path.

Writes normally arrive with the connection of the ledger transaction that
moves the balance, so the entry and the balance change commit or roll back
together. The seq column orders each student's chain.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import psycopg2

from emopoints.shared.database import BaseRepository, ConnectionManager, RepositoryError
from emopoints.shared.utils import Clock, ensure_utc
from .audit_logger import GENESIS_HASH, AuditAction, AuditEntry, AuditLogger

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS points_journal (
    seq              BIGSERIAL PRIMARY KEY,
    entry_id         TEXT NOT NULL UNIQUE,
    timestamp        TIMESTAMPTZ NOT NULL,
    action           TEXT NOT NULL,
    student_id_hash  TEXT NOT NULL,
    amount           BIGINT NOT NULL,
    balance_after    BIGINT NOT NULL,
    details          JSONB NOT NULL DEFAULT '{}'::jsonb,
    previous_hash    TEXT NOT NULL,
    entry_hash       TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_points_journal_student_seq
    ON points_journal (student_id_hash, seq);
"""

_COLUMNS = (
    "entry_id, timestamp, action, student_id_hash, amount, "
    "balance_after, details, previous_hash, entry_hash"
)


class PostgresAuditJournal(BaseRepository[AuditEntry], AuditLogger):
    """AuditLogger whose chains live in PostgreSQL."""

    def __init__(self, connection_manager: ConnectionManager, clock: Optional[Clock] = None):
        BaseRepository.__init__(self, connection_manager, "points_journal")
        AuditLogger.__init__(self, clock)

    def create_schema(self) -> None:
        """Create the table and index if they do not exist."""
        try:
            with self.connection_manager.transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(SCHEMA_SQL)
        except Exception as e:
            raise RepositoryError(f"Schema creation failed: {e}") from e

        logger.info("JOURNAL_SCHEMA_READY", extra={"table_name": self.table_name})

    def _row_to_entity(self, row: tuple) -> AuditEntry:
        """Convert row to AuditEntry.

        Expected columns:
            0: entry_id
            1: timestamp
            2: action
            3: student_id_hash
            4: amount
            5: balance_after
            6: details (JSONB, decoded by psycopg2)
            7: previous_hash
            8: entry_hash
        """
        details = row[6]
        if isinstance(details, str):
            details = json.loads(details)
        return AuditEntry(
            entry_id=row[0],
            timestamp=ensure_utc(row[1]),
            action=AuditAction(row[2]),
            student_id_hash=row[3],
            amount=row[4],
            balance_after=row[5],
            details=details or {},
            previous_hash=row[7],
            entry_hash=row[8],
        )

    def _entity_to_params(self, entity: AuditEntry) -> Dict[str, Any]:
        return {
            "entry_id": entity.entry_id,
            "timestamp": entity.timestamp,
            "action": entity.action.value,
            "student_id_hash": entity.student_id_hash,
            "amount": entity.amount,
            "balance_after": entity.balance_after,
            "details": json.dumps(entity.details, sort_keys=True, default=str),
            "previous_hash": entity.previous_hash,
            "entry_hash": entity.entry_hash,
        }

    def log(
        self,
        action: AuditAction,
        student_id: str,
        amount: int,
        balance_after: int,
        details: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
        conn=None,
    ) -> AuditEntry:
        # a standalone write still needs the chain head and the insert in one transaction
        if conn is not None:
            return AuditLogger.log(
                self, action, student_id, amount, balance_after, details, timestamp, conn=conn
            )

        try:
            with self.connection_manager.transaction() as own_conn:
                self._advisory_lock(own_conn, student_id)
                return AuditLogger.log(
                    self, action, student_id, amount, balance_after, details, timestamp, conn=own_conn
                )
        except psycopg2.Error as e:
            logger.error(
                "JOURNAL_WRITE_FAILED",
                extra={"action": action.value, "error": str(e)}
            )
            raise RepositoryError(f"Journal write failed: {e}") from e

    def _last_hash(self, student_id_hash: str, conn=None) -> str:
        try:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT entry_hash FROM {self.table_name}
                    WHERE student_id_hash = %s
                    ORDER BY seq DESC
                    LIMIT 1
                    """,
                    (student_id_hash,)
                )
                row = cur.fetchone()
        except Exception as e:
            logger.error(
                "JOURNAL_HEAD_READ_FAILED",
                extra={"student_id_hash": student_id_hash, "error": str(e)}
            )
            raise RepositoryError(f"Journal head read failed: {e}") from e

        return row[0] if row else GENESIS_HASH

    def _append_entry(self, entry: AuditEntry, conn=None) -> None:
        self.insert(entry, conn=conn)

    def _load_chains(self, student_id_hash: Optional[str] = None) -> Dict[str, List[AuditEntry]]:
        if student_id_hash is not None:
            entries = self._fetch_all(
                f"""
                SELECT {_COLUMNS} FROM {self.table_name}
                WHERE student_id_hash = %s
                ORDER BY seq ASC
                """,
                (student_id_hash,)
            )
            return {student_id_hash: entries}

        entries = self._fetch_all(
            f"SELECT {_COLUMNS} FROM {self.table_name} ORDER BY seq ASC",
            ()
        )
        chains: Dict[str, List[AuditEntry]] = {}
        for entry in entries:
            chains.setdefault(entry.student_id_hash, []).append(entry)
        return chains
