"""Points Service: the spendable points currency.

Students earn points for accepted check-ins and spend them on rewards.

Invariants:
- A balance is never negative, even under concurrent credit and debit
- Every balance change has a matching journal entry
- Accounts of different students never contend on a shared lock
"""

from .ledger import (
    PointsLedgerBase,
    PointsLedger,
    DebitResult,
    LedgerIntegrityError,
    MAX_BALANCE,
)
from .ledger_repository import PostgresPointsLedger
from .reward_catalog import RewardCatalog, RewardNotFoundError, DEFAULT_REWARDS

__all__ = [
    "PointsLedgerBase",
    "PointsLedger",
    "PostgresPointsLedger",
    "DebitResult",
    "LedgerIntegrityError",
    "MAX_BALANCE",
    "RewardCatalog",
    "RewardNotFoundError",
    "DEFAULT_REWARDS",
]
