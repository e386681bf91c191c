"""Points ledger - owns every student's balance.

Balances change only through credit() and debit_if_affordable(). Both run
under the student's account lock, so operations on one account are
linearizable while different accounts never wait on each other.

Each mutation is staged, journaled, then committed: if the journal write
raises, the balance is left as it was.

PointsLedger keeps balances in process memory behind per-student RLocks.
PostgresPointsLedger (ledger_repository.py) keeps them in PostgreSQL; its
account lock is a transaction, and callers pass the yielded connection to
every write that belongs to the same unit.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ContextManager, Dict, Iterator, Optional

from emopoints.shared.models import PointsAccount
from emopoints.shared.utils import KeyedLocks, hash_pii
from emopoints.services.audit_service import AuditAction, AuditLogger

logger = logging.getLogger(__name__)

# Signed 64-bit ceiling; balances never silently wrap past it
MAX_BALANCE = 2 ** 63 - 1


class LedgerIntegrityError(Exception):
    """A mutation would break a ledger invariant.

    Raised before anything is applied. Should never happen when callers
    respect the contract; logged at CRITICAL for investigation.
    """
    pass


@dataclass(frozen=True)
class DebitResult:
    """Outcome of debit_if_affordable.

    On failure remaining_balance is the untouched current balance.
    """
    success: bool
    remaining_balance: int
    amount: int = 0

    @property
    def shortfall(self) -> int:
        if self.success:
            return 0
        return max(0, self.amount - self.remaining_balance)


class PointsLedgerBase(ABC):
    """Contract shared by the in-memory and PostgreSQL ledgers.

    account_lock() yields the connection of the unit's transaction, or None
    when the ledger is in-process. Whatever it yields is passed as `conn`
    to the ledger writes and to any store write in the same unit.
    """

    def __init__(self, journal: AuditLogger):
        self.journal = journal

    @abstractmethod
    def account_lock(self, student_id: str) -> ContextManager[Any]:
        """Hold the student's account exclusively."""
        pass

    @abstractmethod
    def get_account(self, student_id: str, conn=None) -> PointsAccount:
        """Current account snapshot; accounts start at zero."""
        pass

    @abstractmethod
    def credit(
        self,
        student_id: str,
        amount: int,
        details: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
        conn=None,
    ) -> int:
        """Increase a balance unconditionally.

        Args:
            student_id: Account owner
            amount: Points to add
            details: Journal context (e.g. submission_id)
            occurred_at: Journal timestamp
            conn: Value yielded by account_lock() when the credit is part
                of a larger unit

        Returns:
            The new balance

        Raises:
            LedgerIntegrityError: Bad amount or balance overflow
        """
        pass

    @abstractmethod
    def debit_if_affordable(
        self,
        student_id: str,
        amount: int,
        details: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
        conn=None,
    ) -> DebitResult:
        """Subtract `amount` only if the balance covers it.

        Args:
            student_id: Account owner
            amount: Points to remove
            details: Journal context (e.g. reward_id, cost)
            occurred_at: Journal timestamp
            conn: Value yielded by account_lock()

        Returns:
            DebitResult; success False leaves the balance untouched

        Raises:
            LedgerIntegrityError: Bad amount
        """
        pass

    def balance(self, student_id: str) -> int:
        return self.get_account(student_id).balance

    def _check_amount(self, student_id: str, amount: Any, operation: str) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            self._report_violation(
                student_id,
                operation,
                f"amount must be a non-negative integer, got {amount!r}",
            )

    def _report_violation(self, student_id: str, operation: str, reason: str) -> None:
        logger.critical(
            "LEDGER_INTEGRITY_VIOLATION",
            extra={
                "student_id_hash": hash_pii(student_id),
                "operation": operation,
                "reason": reason,
                "action": "MUTATION_REFUSED",
            }
        )
        raise LedgerIntegrityError(f"{operation} refused: {reason}")

    def _log_movement(self, event: str, student_id: str, amount: int, balance: int) -> None:
        logger.info(
            event,
            extra={
                "student_id_hash": hash_pii(student_id),
                "amount": amount,
                "balance": balance,
            }
        )


class PointsLedger(PointsLedgerBase):
    """Per-student point balances with atomic credit and debit, in memory."""

    def __init__(
        self,
        journal: Optional[AuditLogger] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        """Initialize the ledger.

        Args:
            journal: Journal receiving one entry per mutation
            locks: Lock table shared with callers that need to extend a
                student's critical section (the engagement engine)
        """
        super().__init__(journal or AuditLogger())
        self.locks = locks or KeyedLocks()
        self._balances: Dict[str, int] = {}

        logger.info("POINTS_LEDGER_INITIALIZED", extra={"backend": "memory"})

    @contextmanager
    def account_lock(self, student_id: str) -> Iterator[None]:
        """Hold the student's account exclusively.

        Re-entrant: credit() and debit_if_affordable() may be called while
        the lock is held. Yields None; there is no transaction to join.
        """
        with self.locks.hold(student_id):
            yield None

    def get_account(self, student_id: str, conn=None) -> PointsAccount:
        if not student_id:
            raise ValueError("student_id is required")
        with self.account_lock(student_id):
            balance = self._balances.setdefault(student_id, 0)
        return PointsAccount(student_id=student_id, balance=balance)

    def credit(
        self,
        student_id: str,
        amount: int,
        details: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
        conn=None,
    ) -> int:
        self._check_amount(student_id, amount, "credit")

        with self.account_lock(student_id):
            current = self._balances.setdefault(student_id, 0)
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
            )
            self._balances[student_id] = new_balance

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

        with self.account_lock(student_id):
            current = self._balances.setdefault(student_id, 0)
            if current < amount:
                self._log_movement("POINTS_DEBIT_DECLINED", student_id, amount, current)
                return DebitResult(success=False, remaining_balance=current, amount=amount)

            new_balance = current - amount
            if new_balance < 0:
                self._report_violation(student_id, "debit", "balance would go negative")

            self.journal.log(
                action=AuditAction.POINTS_DEBITED,
                student_id=student_id,
                amount=amount,
                balance_after=new_balance,
                details=details,
                timestamp=occurred_at,
            )
            self._balances[student_id] = new_balance

        self._log_movement("POINTS_DEBITED", student_id, amount, new_balance)
        return DebitResult(success=True, remaining_balance=new_balance, amount=amount)
