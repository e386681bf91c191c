"""PostgreSQL-backed points ledger.

Balances live in points_accounts and survive restarts. Every mutation runs
inside one transaction that first takes a transaction-scoped advisory lock
on the student id, so credits and debits for a student serialize across
every process sharing the database. The journal entry is written on the
same connection; a failed journal write rolls the balance change back.

The CHECK (balance >= 0) constraint backs up the conditional debit.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

import psycopg2

from emopoints.shared.database import BaseRepository, ConnectionManager, RepositoryError
from emopoints.shared.models import PointsAccount
from emopoints.services.audit_service import AuditAction, AuditLogger
from .ledger import MAX_BALANCE, DebitResult, PointsLedgerBase

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS points_accounts (
    student_id  TEXT PRIMARY KEY,
    balance     BIGINT NOT NULL DEFAULT 0 CHECK (balance >= 0),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

_ENSURE_ACCOUNT_SQL = """
INSERT INTO points_accounts (student_id) VALUES (%s)
ON CONFLICT (student_id) DO NOTHING
"""


class PostgresPointsLedger(BaseRepository[PointsAccount], PointsLedgerBase):
    """Points ledger on PostgreSQL.

    account_lock() is not re-entrant: inside it, pass the yielded
    connection to credit() and debit_if_affordable() instead of letting
    them open their own transaction.
    """

    def __init__(self, connection_manager: ConnectionManager, journal: AuditLogger):
        BaseRepository.__init__(self, connection_manager, "points_accounts")
        PointsLedgerBase.__init__(self, journal)

        logger.info("POINTS_LEDGER_INITIALIZED", extra={"backend": "postgres"})

    def create_schema(self) -> None:
        """Create the accounts table if it does not exist."""
        try:
            with self.connection_manager.transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(SCHEMA_SQL)
        except Exception as e:
            raise RepositoryError(f"Schema creation failed: {e}") from e

        logger.info("LEDGER_SCHEMA_READY", extra={"table_name": self.table_name})

    def _row_to_entity(self, row: tuple) -> PointsAccount:
        return PointsAccount(student_id=row[0], balance=row[1])

    def _entity_to_params(self, entity: PointsAccount) -> Dict[str, Any]:
        return {"student_id": entity.student_id, "balance": entity.balance}

    @contextmanager
    def account_lock(self, student_id: str) -> Iterator[Any]:
        """Open the student's transaction and hold their advisory lock.

        Yields:
            The transaction's connection. The block commits on exit and
            rolls back if it raises.

        Raises:
            RepositoryError: Connection, lock or commit failure
        """
        if not student_id:
            raise ValueError("student_id is required")

        try:
            with self.connection_manager.transaction() as conn:
                self._advisory_lock(conn, student_id)
                yield conn
        except psycopg2.Error as e:
            logger.error(
                "LEDGER_TRANSACTION_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Ledger transaction failed: {e}") from e

    def get_account(self, student_id: str, conn=None) -> PointsAccount:
        if not student_id:
            raise ValueError("student_id is required")

        accounts = self._fetch_all(
            f"SELECT student_id, balance FROM {self.table_name} WHERE student_id = %s",
            (student_id,),
            conn=conn,
        )
        return accounts[0] if accounts else PointsAccount(student_id=student_id, balance=0)

    def _execute(self, conn, query: str, params: tuple, fetch: bool = False) -> Optional[tuple]:
        """Run one statement on the unit's connection; first row when fetch."""
        try:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone() if fetch else None
        except psycopg2.Error as e:
            logger.error(
                "LEDGER_STATEMENT_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Ledger statement failed: {e}") from e

    def _locked_balance(self, conn, student_id: str) -> int:
        self._execute(conn, _ENSURE_ACCOUNT_SQL, (student_id,))
        row = self._execute(
            conn,
            f"SELECT balance FROM {self.table_name} WHERE student_id = %s FOR UPDATE",
            (student_id,),
            fetch=True,
        )
        return row[0]

    def credit(
        self,
        student_id: str,
        amount: int,
        details: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
        conn=None,
    ) -> int:
        self._check_amount(student_id, amount, "credit")

        if conn is None:
            with self.account_lock(student_id) as own_conn:
                return self.credit(student_id, amount, details, occurred_at, conn=own_conn)

        current = self._locked_balance(conn, student_id)
        new_balance = current + amount
        if new_balance > MAX_BALANCE:
            self._report_violation(student_id, "credit", "balance would exceed 64-bit range")

        self.journal.log(
            action=AuditAction.POINTS_CREDITED,
            student_id=student_id,
            amount=amount,
            balance_after=new_balance,
            details=details,
            timestamp=occurred_at,
            conn=conn,
        )
        self._execute(
            conn,
            f"UPDATE {self.table_name} SET balance = %s, updated_at = now() WHERE student_id = %s",
            (new_balance, student_id),
        )

        self._log_movement("POINTS_CREDITED", student_id, amount, new_balance)
        return new_balance

    def debit_if_affordable(
        self,
        student_id: str,
        amount: int,
        details: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
        conn=None,
    ) -> DebitResult:
        self._check_amount(student_id, amount, "debit")

        if conn is None:
            with self.account_lock(student_id) as own_conn:
                return self.debit_if_affordable(
                    student_id, amount, details, occurred_at, conn=own_conn
                )

        self._execute(conn, _ENSURE_ACCOUNT_SQL, (student_id,))
        row = self._execute(
            conn,
            f"""
            UPDATE {self.table_name}
            SET balance = balance - %s, updated_at = now()
            WHERE student_id = %s AND balance >= %s
            RETURNING balance
            """,
            (amount, student_id, amount),
            fetch=True,
        )

        if row is None:
            current = self._execute(
                conn,
                f"SELECT balance FROM {self.table_name} WHERE student_id = %s",
                (student_id,),
                fetch=True,
            )[0]
            self._log_movement("POINTS_DEBIT_DECLINED", student_id, amount, current)
            return DebitResult(success=False, remaining_balance=current, amount=amount)

        new_balance = row[0]
        self.journal.log(
            action=AuditAction.POINTS_DEBITED,
            student_id=student_id,
            amount=amount,
            balance_after=new_balance,
            details=details,
            timestamp=occurred_at,
            conn=conn,
        )

        self._log_movement("POINTS_DEBITED", student_id, amount, new_balance)
        return DebitResult(success=True, remaining_balance=new_balance, amount=amount)
