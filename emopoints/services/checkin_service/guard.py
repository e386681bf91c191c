"""Submission cooldown guard.

A student may check in once per cooldown window (24 hours by default).
A rejection is an expected business outcome, not a failure: it is returned
as a GuardDecision and logged at INFO.

The guard only reads. Callers that go on to append must hold the student's
lock across the check and the append, otherwise two concurrent requests
can both pass.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from emopoints.shared.utils import Clock, ensure_utc, hash_pii
from .submission_store import SubmissionStore

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN = timedelta(hours=24)

_SECONDS_PER_HOUR = 3600


@dataclass(frozen=True)
class GuardDecision:
    """Outcome of a cooldown check.

    hours_remaining is 0 when allowed, otherwise the whole hours (at least
    one) until the student may submit again.
    """
    allowed: bool
    hours_remaining: int = 0
    last_submitted_at: Optional[datetime] = None


def hours_until(remaining: timedelta) -> int:
    """Round a remaining cooldown up to whole hours, minimum 1."""
    return max(1, math.ceil(remaining.total_seconds() / _SECONDS_PER_HOUR))


class SubmissionGuard:
    """Decides whether a student may submit now."""

    def __init__(
        self,
        store: SubmissionStore,
        clock: Clock,
        cooldown: timedelta = DEFAULT_COOLDOWN,
    ):
        if cooldown <= timedelta(0):
            raise ValueError("Cooldown must be positive")

        self.store = store
        self.clock = clock
        self.cooldown = cooldown

    def can_submit(
        self,
        student_id: str,
        now: Optional[datetime] = None,
        conn=None,
    ) -> GuardDecision:
        """Check the cooldown for a student.

        A submission recorded at exactly `now` counts as prior, so a second
        request at the same instant is rejected with the full window left.

        Args:
            student_id: Student identifier
            now: Instant to evaluate at (defaults to the clock)
            conn: Transaction of the submit unit, so the read sees the
                state the append will commit against

        Returns:
            GuardDecision
        """
        now = ensure_utc(now) if now is not None else self.clock.now()
        last = self.store.latest_at_or_before(student_id, now, conn=conn)

        if last is None:
            return GuardDecision(allowed=True)

        elapsed = now - last.submitted_at
        if elapsed >= self.cooldown:
            return GuardDecision(allowed=True, last_submitted_at=last.submitted_at)

        hours_remaining = hours_until(self.cooldown - elapsed)
        logger.info(
            "SUBMISSION_COOLDOWN_ACTIVE",
            extra={
                "student_id_hash": hash_pii(student_id),
                "hours_remaining": hours_remaining,
                "elapsed_seconds": int(elapsed.total_seconds()),
            }
        )
        return GuardDecision(
            allowed=False,
            hours_remaining=hours_remaining,
            last_submitted_at=last.submitted_at,
        )
