"""Engagement engine - the three operations callers see.

submit_emotion    guard check, append and point credit as one unit
redeem_reward     catalog lookup then an atomic debit with journal entry
get_class_analytics  read-only aggregate for the teacher dashboard

State lives in the injected store, ledger and journal. The engine holds a
student's ledger lock for the whole submit unit, so a second concurrent
submission for that student waits and then sees the first one. With the
PostgreSQL backends that lock is one transaction: the guard read, the
append, the credit and its journal entry commit together or not at all.
"""
import json
import logging
import os
from typing import Any, Dict, List, Optional, Union

from emopoints.shared.database import ConnectionManager, DatabaseConfig
from emopoints.shared.models import (
    Emotion,
    Reward,
    RewardRedemption,
    Submission,
    new_submission_id,
)
from emopoints.shared.utils import Clock, SystemClock, fingerprint_note, hash_pii
from emopoints.services.analytics_service import (
    AnalyticsAggregator,
    AnalyticsSnapshot,
    InMemoryRoster,
    InsightRequest,
    RosterLookup,
    SubmissionStatus,
    build_insight_request,
)
from emopoints.services.audit_service import AuditAction, AuditLogger, PostgresAuditJournal
from emopoints.services.checkin_service import (
    InMemorySubmissionStore,
    PostgresSubmissionStore,
    SubmissionGuard,
    SubmissionStore,
)
from emopoints.services.points_service import (
    PointsLedger,
    PointsLedgerBase,
    PostgresPointsLedger,
    RewardCatalog,
    RewardNotFoundError,
)
from .config import EngagementConfig
from .outcomes import (
    CooldownActive,
    InsufficientBalance,
    RedemptionSucceeded,
    RewardNotFound,
    SubmissionAccepted,
)

logger = logging.getLogger(__name__)

SubmitOutcome = Union[SubmissionAccepted, CooldownActive]
RedeemOutcome = Union[RedemptionSucceeded, InsufficientBalance, RewardNotFound]


class EngagementEngine:
    """Check-ins, points and class analytics over injected collaborators."""

    def __init__(
        self,
        store: SubmissionStore,
        ledger: PointsLedgerBase,
        catalog: RewardCatalog,
        roster: RosterLookup,
        clock: Optional[Clock] = None,
        config: Optional[EngagementConfig] = None,
        connection_manager: Optional[ConnectionManager] = None,
    ):
        """Initialize engine with dependencies.

        Args:
            store: Submission history
            ledger: Point balances (and its journal)
            catalog: Redeemable rewards
            roster: Class membership collaborator
            clock: Time source (system clock by default)
            config: Engagement policy
            connection_manager: Database pool behind the store and ledger,
                when they are PostgreSQL-backed
        """
        self.store = store
        self.ledger = ledger
        self.catalog = catalog
        self.roster = roster
        self.clock = clock or SystemClock()
        self.config = config or EngagementConfig()
        self.connection_manager = connection_manager

        self.guard = SubmissionGuard(store, self.clock, self.config.cooldown)
        self.aggregator = AnalyticsAggregator(
            store,
            roster,
            self.clock,
            reporting_tz=self.config.reporting_tz(),
            max_window_days=self.config.max_window_days,
        )

        logger.info(
            "ENGAGEMENT_ENGINE_INITIALIZED",
            extra={
                "points_per_submission": self.config.points_per_submission,
                "cooldown_hours": self.config.cooldown_hours,
                "reporting_timezone": self.config.reporting_timezone,
            }
        )

    def submit_emotion(
        self,
        student_id: str,
        emotion: Union[Emotion, str],
        note: Optional[str] = None,
    ) -> SubmitOutcome:
        """Record a check-in and award points.

        Args:
            student_id: Submitting student
            emotion: Emotion or its wire value
            note: Optional free text, stored as-is

        Returns:
            SubmissionAccepted, or CooldownActive if the student checked in
            less than the cooldown ago

        Raises:
            ValueError: Missing student id or unknown emotion
            RepositoryError: Store failure (nothing was applied)
            LedgerIntegrityError: Credit refused (append rolled back)
        """
        if not student_id:
            raise ValueError("student_id is required")
        emotion = Emotion.parse(emotion)
        student_id_hash = hash_pii(student_id)

        with self.ledger.account_lock(student_id) as conn:
            now = self.clock.now()
            decision = self.guard.can_submit(student_id, now, conn=conn)
            if not decision.allowed:
                return CooldownActive(
                    hours_remaining=decision.hours_remaining,
                    last_submitted_at=decision.last_submitted_at,
                )

            submission = Submission(
                id=new_submission_id(),
                student_id=student_id,
                emotion=emotion,
                submitted_at=now,
                note=note,
            )
            self.store.append(submission, conn=conn)
            try:
                balance = self.ledger.credit(
                    student_id,
                    self.config.points_per_submission,
                    details={"reason": "emotion_submission", "submission_id": submission.id},
                    occurred_at=now,
                    conn=conn,
                )
            except BaseException:
                # a joined transaction is rolled back by account_lock itself
                if conn is None:
                    self._rollback_submission(submission)
                raise

        logger.info(
            "SUBMISSION_ACCEPTED",
            extra={
                "submission_id": submission.id,
                "student_id_hash": student_id_hash,
                "emotion": emotion.value,
                "has_note": bool(note),
                "note_fingerprint": fingerprint_note(note),
                "points_awarded": self.config.points_per_submission,
            }
        )
        return SubmissionAccepted(
            submission=submission,
            points_awarded=self.config.points_per_submission,
            balance=balance,
        )

    def _rollback_submission(self, submission: Submission) -> None:
        try:
            self.store.retract(submission)
        except Exception as e:
            logger.critical(
                "SUBMISSION_ROLLBACK_FAILED",
                extra={
                    "submission_id": submission.id,
                    "student_id_hash": hash_pii(submission.student_id),
                    "error": str(e),
                }
            )
            return

        logger.error(
            "SUBMISSION_ROLLED_BACK",
            extra={
                "submission_id": submission.id,
                "student_id_hash": hash_pii(submission.student_id),
            }
        )

    def redeem_reward(self, student_id: str, reward_id: str) -> RedeemOutcome:
        """Spend points on a catalog reward.

        The cost charged and recorded is the catalog cost at this moment.

        Returns:
            RedemptionSucceeded, InsufficientBalance or RewardNotFound
        """
        if not student_id:
            raise ValueError("student_id is required")

        try:
            reward = self.catalog.get(reward_id)
        except RewardNotFoundError:
            logger.info(
                "REDEMPTION_REWARD_NOT_FOUND",
                extra={"student_id_hash": hash_pii(student_id), "reward_id": reward_id}
            )
            return RewardNotFound(reward_id=reward_id)

        with self.ledger.account_lock(student_id) as conn:
            redemption = RewardRedemption(
                student_id=student_id,
                reward_id=reward.id,
                cost=reward.cost,
                redeemed_at=self.clock.now(),
            )
            result = self.ledger.debit_if_affordable(
                student_id,
                reward.cost,
                details={
                    "reason": "reward_redemption",
                    "redemption_id": redemption.redemption_id,
                    "reward_id": reward.id,
                    "cost": reward.cost,
                },
                occurred_at=redemption.redeemed_at,
                conn=conn,
            )

        if not result.success:
            return InsufficientBalance(
                reward_id=reward.id,
                cost=reward.cost,
                balance=result.remaining_balance,
            )

        logger.info(
            "REWARD_REDEEMED",
            extra={
                "redemption_id": redemption.redemption_id,
                "student_id_hash": hash_pii(student_id),
                "reward_id": reward.id,
                "cost": reward.cost,
                "remaining_balance": result.remaining_balance,
            }
        )
        return RedemptionSucceeded(redemption=redemption, remaining_balance=result.remaining_balance)

    def get_class_analytics(
        self,
        class_id: str,
        window_days: Optional[int] = None,
    ) -> AnalyticsSnapshot:
        """Emotion distribution and daily trends for a class."""
        if window_days is None:
            window_days = self.config.default_window_days
        return self.aggregator.aggregate(class_id, window_days)

    def get_submission_status(self, class_id: str) -> SubmissionStatus:
        return self.aggregator.submission_status(class_id)

    def get_insight_request(
        self,
        class_id: str,
        window_days: Optional[int] = None,
    ) -> InsightRequest:
        """Prompt payload for the external class summarizer."""
        snapshot = self.get_class_analytics(class_id, window_days)
        status = self.get_submission_status(class_id)
        return build_insight_request(snapshot, status)

    def get_balance(self, student_id: str) -> int:
        return self.ledger.balance(student_id)

    def get_submissions(self, student_id: str, limit: int = 50) -> List[Submission]:
        return self.store.find_by_student(student_id, limit)

    def get_redemptions(self, student_id: str) -> List[RewardRedemption]:
        """Past redemptions for a student, oldest first, read from the journal."""
        entries = self.ledger.journal.query(student_id=student_id, action=AuditAction.POINTS_DEBITED)
        return [
            RewardRedemption(
                student_id=student_id,
                reward_id=entry.details["reward_id"],
                cost=entry.details["cost"],
                redeemed_at=entry.timestamp,
                redemption_id=entry.details["redemption_id"],
            )
            for entry in entries
            if entry.details.get("reason") == "reward_redemption"
        ]

    def list_rewards(self) -> List[Reward]:
        return self.catalog.list_rewards()

    def health_check(self) -> Dict[str, Any]:
        """Storage readiness for /ready."""
        if self.connection_manager is None:
            return {"status": "in_memory", "healthy": True}
        return self.connection_manager.health_check()


def load_roster(path: Optional[str]) -> InMemoryRoster:
    """Read a {"class_id": ["student_id", ...]} JSON file; empty if no path."""
    if not path:
        return InMemoryRoster()
    with open(path, encoding="utf-8") as f:
        return InMemoryRoster(json.load(f))


def create_engine_from_env(clock: Optional[Clock] = None) -> EngagementEngine:
    """Wire an engine from environment variables.

    With the postgres backend the submissions, balances and journal share
    one connection pool, and their tables are created if missing.

    Environment variables:
        SUBMISSION_STORE: "memory" (default) or "postgres"
        ROSTER_FILE: JSON roster file
        plus everything EngagementConfig.from_env and DatabaseConfig.load read
    """
    config = EngagementConfig.from_env()
    clock = clock or SystemClock()

    backend = os.getenv("SUBMISSION_STORE", "memory").lower()
    connection_manager = None
    if backend == "postgres":
        connection_manager = ConnectionManager(DatabaseConfig.load())
        connection_manager.initialize()
        store = PostgresSubmissionStore(connection_manager)
        journal = PostgresAuditJournal(connection_manager, clock)
        ledger = PostgresPointsLedger(connection_manager, journal)
        for repository in (store, journal, ledger):
            repository.create_schema()
    elif backend == "memory":
        store = InMemorySubmissionStore()
        ledger = PointsLedger(journal=AuditLogger(clock))
    else:
        raise ValueError(f"Unknown SUBMISSION_STORE '{backend}'")

    logger.info("ENGAGEMENT_STORAGE_SELECTED", extra={"backend": backend})
    return EngagementEngine(
        store=store,
        ledger=ledger,
        catalog=RewardCatalog(),
        roster=load_roster(os.getenv("ROSTER_FILE")),
        clock=clock,
        config=config,
        connection_manager=connection_manager,
    )
