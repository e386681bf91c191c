"""Check-in Service: daily emotion submissions.

Each student may check in once per 24 hours. The guard enforces the
cooldown at write time; the store keeps the append-only history that the
analytics service reads.

Backends:
- InMemorySubmissionStore - tests and single-node deployments
- PostgresSubmissionStore - emotion_submissions table
"""

from .submission_store import SubmissionStore, InMemorySubmissionStore
from .submission_repository import PostgresSubmissionStore, SCHEMA_SQL
from .guard import SubmissionGuard, GuardDecision, DEFAULT_COOLDOWN, hours_until

__all__ = [
    "SubmissionStore",
    "InMemorySubmissionStore",
    "PostgresSubmissionStore",
    "SCHEMA_SQL",
    "SubmissionGuard",
    "GuardDecision",
    "DEFAULT_COOLDOWN",
    "hours_until",
]
