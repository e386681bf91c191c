"""Audit Service: hash-chained journal of point movements.

Every ledger credit and debit leaves an entry. Entries are chained per
student with SHA-256 so tampering is detectable with verify_chain().
AuditLogger keeps chains in memory; PostgresAuditJournal persists them.
"""

from .audit_logger import AuditLogger, AuditAction, AuditEntry, GENESIS_HASH
from .audit_repository import PostgresAuditJournal

__all__ = [
    "AuditLogger",
    "AuditAction",
    "AuditEntry",
    "GENESIS_HASH",
    "PostgresAuditJournal",
]
