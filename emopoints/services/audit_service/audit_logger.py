"""Ledger journal - append-only, hash-chained record of point movements.

Every credit and debit the points ledger applies is written here inside the
same per-student critical section, so a balance change and its journal
entry exist together or not at all. AuditLogger keeps chains in process
memory; PostgresAuditJournal (audit_repository.py) persists them and joins
the ledger transaction through the `conn` argument of log().

Chains are kept per student. Two students never touch the same chain,
which keeps journal writes free of cross-student contention.
"""
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from emopoints.shared.utils import Clock, SystemClock, ensure_utc, hash_pii

logger = logging.getLogger(__name__)

GENESIS_HASH = "genesis"


class AuditAction(Enum):
    """Point movements recorded in the journal."""
    POINTS_CREDITED = "points_credited"
    POINTS_DEBITED = "points_debited"


@dataclass(frozen=True)
class AuditEntry:
    """Immutable journal entry.

    student_id_hash is the salted hash, never the raw id.
    """
    entry_id: str
    timestamp: datetime
    action: AuditAction
    student_id_hash: str
    amount: int
    balance_after: int
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = GENESIS_HASH
    entry_hash: str = ""

    def compute_hash(self) -> str:
        """SHA-256 over every field except entry_hash."""
        content = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "student_id_hash": self.student_id_hash,
            "amount": self.amount,
            "balance_after": self.balance_after,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }
        content_str = json.dumps(content, sort_keys=True, default=str)
        return hashlib.sha256(content_str.encode()).hexdigest()


class AuditLogger:
    """Writes journal entries and verifies their chains.

    Callers must hold the student's lock while calling log() for that
    student; the ledger does this. Storage goes through three hooks
    (_last_hash, _append_entry, _load_chains) that persistent journals
    override.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._chains: Dict[str, List[AuditEntry]] = {}

        logger.info("AUDIT_LOGGER_INITIALIZED")

    def _last_hash(self, student_id_hash: str, conn=None) -> str:
        chain = self._chains.get(student_id_hash)
        return chain[-1].entry_hash if chain else GENESIS_HASH

    def _append_entry(self, entry: AuditEntry, conn=None) -> None:
        self._chains.setdefault(entry.student_id_hash, []).append(entry)

    def _load_chains(self, student_id_hash: Optional[str] = None) -> Dict[str, List[AuditEntry]]:
        """Chains keyed by student hash, each oldest first."""
        if student_id_hash is not None:
            return {student_id_hash: list(self._chains.get(student_id_hash, []))}
        return {key: list(chain) for key, chain in list(self._chains.items())}

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
        """Append an entry to the student's chain.

        Args:
            action: Movement type
            student_id: Raw student id (hashed before storage)
            amount: Points moved
            balance_after: Balance once the movement applies
            details: Context such as submission_id or reward_id
            timestamp: Event time (defaults to the clock)
            conn: Connection of the ledger transaction the entry belongs to

        Returns:
            The stored AuditEntry

        Logs:
            - AUDIT_ENTRY_CREATED: After entry is stored
        """
        student_id_hash = hash_pii(student_id)
        previous_hash = self._last_hash(student_id_hash, conn)

        entry = AuditEntry(
            entry_id=f"audit_{uuid.uuid4().hex[:16]}",
            timestamp=ensure_utc(timestamp) if timestamp else self.clock.now(),
            action=action,
            student_id_hash=student_id_hash,
            amount=amount,
            balance_after=balance_after,
            details=dict(details or {}),
            previous_hash=previous_hash,
        )
        entry = replace(entry, entry_hash=entry.compute_hash())

        self._append_entry(entry, conn)

        logger.info(
            "AUDIT_ENTRY_CREATED",
            extra={
                "entry_id": entry.entry_id,
                "action": action.value,
                "student_id_hash": student_id_hash,
                "amount": amount,
                "balance_after": balance_after,
                "entry_hash": entry.entry_hash[:16],
            }
        )
        return entry

    def verify_chain(self, student_id: Optional[str] = None) -> bool:
        """Verify one student's chain, or all chains.

        Returns:
            True if every verified chain is intact
        """
        chains = self._load_chains(hash_pii(student_id) if student_id is not None else None)

        for student_id_hash, chain in chains.items():
            expected_prev = GENESIS_HASH
            for entry in chain:
                if entry.previous_hash != expected_prev:
                    logger.critical(
                        "AUDIT_CHAIN_VERIFICATION_FAILED",
                        extra={
                            "entry_id": entry.entry_id,
                            "student_id_hash": student_id_hash,
                            "expected_prev": expected_prev[:16],
                            "actual_prev": entry.previous_hash[:16],
                        }
                    )
                    return False

                computed = entry.compute_hash()
                if computed != entry.entry_hash:
                    logger.critical(
                        "AUDIT_ENTRY_HASH_MISMATCH",
                        extra={
                            "entry_id": entry.entry_id,
                            "computed": computed[:16],
                            "stored": entry.entry_hash[:16],
                        }
                    )
                    return False

                expected_prev = entry.entry_hash

        logger.info(
            "AUDIT_CHAIN_VERIFIED",
            extra={"chain_count": len(chains)}
        )
        return True

    def query(
        self,
        student_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[AuditEntry]:
        """Query entries, oldest first.

        Args:
            student_id: Filter by student (raw id)
            action: Filter by action
            start_date: Inclusive lower bound on timestamp
            end_date: Inclusive upper bound on timestamp
        """
        chains = self._load_chains(hash_pii(student_id) if student_id is not None else None)
        results = [e for chain in chains.values() for e in chain]
        if student_id is None:
            results.sort(key=lambda e: e.timestamp)

        if action:
            results = [e for e in results if e.action == action]
        if start_date:
            start_date = ensure_utc(start_date)
            results = [e for e in results if e.timestamp >= start_date]
        if end_date:
            end_date = ensure_utc(end_date)
            results = [e for e in results if e.timestamp <= end_date]

        return results
