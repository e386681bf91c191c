"""Append-only store of emotion check-ins.

SubmissionStore is the contract the guard, the engine and the analytics
aggregator depend on. InMemorySubmissionStore backs tests and single-node
deployments; PostgresSubmissionStore lives in submission_repository.py.

Writes for one student are serialized by the caller holding that student's
lock. Reads copy the per-student lists so a scan never sees a list that is
being appended to.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from emopoints.shared.database import DuplicateError, NotFoundError
from emopoints.shared.models import Submission
from emopoints.shared.utils import ensure_utc, hash_pii

logger = logging.getLogger(__name__)


class SubmissionStore(ABC):
    """Durable append-only record of check-ins."""

    @abstractmethod
    def append(self, submission: Submission, conn=None) -> Submission:
        """Record an accepted submission.

        Args:
            submission: The accepted check-in
            conn: Connection of the submit unit's transaction, for stores
                that can join one

        Raises:
            DuplicateError: If a submission with the same id exists
        """
        pass

    @abstractmethod
    def retract(self, submission: Submission) -> None:
        """Undo an append whose enclosing submit unit failed.

        Only the engine calls this, while still holding the student's lock,
        so the submission was never observable as accepted. Stores that
        joined the unit's transaction are undone by its rollback instead.
        """
        pass

    @abstractmethod
    def latest_at_or_before(self, student_id: str, at: datetime, conn=None) -> Optional[Submission]:
        """Most recent submission for the student with submitted_at <= at."""
        pass

    @abstractmethod
    def find_between(
        self,
        student_ids: Iterable[str],
        start: datetime,
        end: datetime,
    ) -> List[Submission]:
        """Submissions for the given students with start <= submitted_at <= end.

        Ordered by submitted_at ascending.
        """
        pass

    @abstractmethod
    def students_submitted_since(
        self,
        student_ids: Iterable[str],
        cutoff: datetime,
    ) -> Set[str]:
        """Subset of student_ids with at least one submission at or after cutoff."""
        pass

    @abstractmethod
    def find_by_student(self, student_id: str, limit: int = 50) -> List[Submission]:
        """A student's submissions, newest first."""
        pass


class InMemorySubmissionStore(SubmissionStore):
    """Process-local store keyed by student."""

    def __init__(self):
        self._by_student: Dict[str, List[Submission]] = {}
        self._ids: Set[str] = set()

        logger.info("SUBMISSION_STORE_INITIALIZED", extra={"backend": "memory"})

    def _history(self, student_id: str) -> List[Submission]:
        return list(self._by_student.get(student_id, ()))

    def append(self, submission: Submission, conn=None) -> Submission:
        if submission.id in self._ids:
            raise DuplicateError(f"Submission {submission.id} already exists")

        history = self._by_student.setdefault(submission.student_id, [])
        history.append(submission)
        # keep chronological order if a backfilled record arrives late
        if len(history) > 1 and history[-2].submitted_at > submission.submitted_at:
            history.sort(key=lambda s: s.submitted_at)
        self._ids.add(submission.id)

        logger.debug(
            "SUBMISSION_APPENDED",
            extra={
                "submission_id": submission.id,
                "student_id_hash": hash_pii(submission.student_id),
                "emotion": submission.emotion.value,
            }
        )
        return submission

    def retract(self, submission: Submission) -> None:
        history = self._by_student.get(submission.student_id, [])
        for index, stored in enumerate(history):
            if stored.id == submission.id:
                del history[index]
                self._ids.discard(submission.id)
                logger.warning(
                    "SUBMISSION_RETRACTED",
                    extra={
                        "submission_id": submission.id,
                        "student_id_hash": hash_pii(submission.student_id),
                    }
                )
                return
        raise NotFoundError(f"Submission {submission.id} not found")

    def latest_at_or_before(self, student_id: str, at: datetime, conn=None) -> Optional[Submission]:
        at = ensure_utc(at)
        for submission in reversed(self._history(student_id)):
            if submission.submitted_at <= at:
                return submission
        return None

    def find_between(
        self,
        student_ids: Iterable[str],
        start: datetime,
        end: datetime,
    ) -> List[Submission]:
        start, end = ensure_utc(start), ensure_utc(end)
        results = [
            s
            for student_id in set(student_ids)
            for s in self._history(student_id)
            if start <= s.submitted_at <= end
        ]
        results.sort(key=lambda s: (s.submitted_at, s.id))
        return results

    def students_submitted_since(
        self,
        student_ids: Iterable[str],
        cutoff: datetime,
    ) -> Set[str]:
        cutoff = ensure_utc(cutoff)
        submitted = set()
        for student_id in set(student_ids):
            history = self._history(student_id)
            if history and history[-1].submitted_at >= cutoff:
                submitted.add(student_id)
        return submitted

    def find_by_student(self, student_id: str, limit: int = 50) -> List[Submission]:
        return list(reversed(self._history(student_id)))[:limit]

    def __len__(self) -> int:
        return len(self._ids)
