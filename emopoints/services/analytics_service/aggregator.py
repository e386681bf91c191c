"""Class-level emotion analytics.

Turns raw check-ins into the distribution and daily trend series the
teacher dashboard charts. Everything here is read-only: the same data and
the same clock reading always produce an equal snapshot.

Day boundaries follow the configured reporting time zone (UTC unless set).
The trend series covers every calendar day the window touches, so the
per-day counts always add up to the window distribution.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Dict, List, Optional, Tuple

from emopoints.shared.models import (
    CANONICAL_EMOTION_ORDER,
    DISTRIBUTION_KEYS,
    Submission,
)
from emopoints.shared.utils import Clock
from emopoints.services.checkin_service import SubmissionStore
from .roster import RosterLookup

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7
MAX_WINDOW_DAYS = 90

_CANONICAL_RANK = {emotion.value: rank for rank, emotion in enumerate(CANONICAL_EMOTION_ORDER)}


def empty_distribution() -> Dict[str, int]:
    return {key: 0 for key in DISTRIBUTION_KEYS}


def rank_emotions(distribution: Dict[str, int]) -> List[Tuple[str, int]]:
    """Sort emotions by count descending, ties in canonical order."""
    return sorted(
        distribution.items(),
        key=lambda item: (-item[1], _CANONICAL_RANK.get(item[0], len(_CANONICAL_RANK))),
    )


@dataclass(frozen=True)
class DailyTrendPoint:
    """Distribution restricted to one reporting day."""
    day: date
    counts: Dict[str, int] = field(default_factory=empty_distribution)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "counts": dict(self.counts),
            "total": self.total,
        }


@dataclass(frozen=True)
class AnalyticsSnapshot:
    """Aggregate emotion view of one class over a window.

    Derived on demand, never persisted. Equality covers the aggregated
    data only, not the instants the window was taken at.
    """
    class_id: str
    window_days: int
    window_start: datetime = field(compare=False)
    window_end: datetime = field(compare=False)
    student_count: int
    emotion_distribution: Dict[str, int]
    total_emotions: int
    daily_trends: Tuple[DailyTrendPoint, ...]

    def ranked_emotions(self) -> List[Tuple[str, int]]:
        return rank_emotions(self.emotion_distribution)

    @property
    def top_emotion(self) -> Optional[str]:
        """Most frequent emotion, or None when nothing was submitted."""
        if self.total_emotions == 0:
            return None
        return self.ranked_emotions()[0][0]

    def percentages(self) -> Dict[str, float]:
        """Share of each emotion in percent, one decimal place."""
        if self.total_emotions == 0:
            return {key: 0.0 for key in self.emotion_distribution}
        return {
            key: round(count * 100.0 / self.total_emotions, 1)
            for key, count in self.emotion_distribution.items()
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "class_id": self.class_id,
            "window_days": self.window_days,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "student_count": self.student_count,
            "emotion_distribution": dict(self.emotion_distribution),
            "total_emotions": self.total_emotions,
            "percentages": self.percentages(),
            "top_emotion": self.top_emotion,
            "daily_trends": [point.to_dict() for point in self.daily_trends],
        }


@dataclass(frozen=True)
class SubmissionStatus:
    """Who in a class has checked in since the start of today."""
    class_id: str
    cutoff: datetime
    statuses: Dict[str, bool]

    @property
    def student_count(self) -> int:
        return len(self.statuses)

    @property
    def submitted_count(self) -> int:
        return sum(1 for submitted in self.statuses.values() if submitted)

    @property
    def submission_rate(self) -> int:
        """Whole percent of the class that has submitted; 0 for an empty class."""
        if not self.statuses:
            return 0
        return int(self.submitted_count * 100 / self.student_count + 0.5)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "class_id": self.class_id,
            "cutoff": self.cutoff.isoformat(),
            "statuses": dict(sorted(self.statuses.items())),
            "submitted_count": self.submitted_count,
            "student_count": self.student_count,
            "submission_rate": self.submission_rate,
        }


class AnalyticsAggregator:
    """Builds AnalyticsSnapshot and SubmissionStatus views."""

    def __init__(
        self,
        store: SubmissionStore,
        roster: RosterLookup,
        clock: Clock,
        reporting_tz: tzinfo = timezone.utc,
        max_window_days: int = MAX_WINDOW_DAYS,
    ):
        self.store = store
        self.roster = roster
        self.clock = clock
        self.reporting_tz = reporting_tz
        self.max_window_days = max_window_days

    def _validate_window(self, window_days: Any) -> int:
        if isinstance(window_days, bool) or not isinstance(window_days, int):
            raise ValueError(f"window_days must be an integer, got {window_days!r}")
        if not 1 <= window_days <= self.max_window_days:
            raise ValueError(
                f"window_days must be between 1 and {self.max_window_days}, got {window_days}"
            )
        return window_days

    def local_day(self, instant: datetime) -> date:
        """Reporting day an instant falls on."""
        return instant.astimezone(self.reporting_tz).date()

    def start_of_day(self, instant: datetime) -> datetime:
        """Start of the reporting day containing `instant`, as UTC."""
        local_midnight = datetime.combine(self.local_day(instant), time(0), tzinfo=self.reporting_tz)
        return local_midnight.astimezone(timezone.utc)

    def aggregate(self, class_id: str, window_days: int = DEFAULT_WINDOW_DAYS) -> AnalyticsSnapshot:
        """Aggregate a class's check-ins over [now - window_days, now].

        Args:
            class_id: Class identifier
            window_days: Lookback in days

        Returns:
            AnalyticsSnapshot with every emotion key present

        Raises:
            ValueError: window_days out of range
            RosterUnavailableError: Roster lookup failed
            RepositoryError: Store read failed
        """
        window_days = self._validate_window(window_days)
        now = self.clock.now()
        window_start = now - timedelta(days=window_days)

        students = self.roster.students_in_class(class_id)
        submissions: List[Submission] = (
            self.store.find_between(students, window_start, now) if students else []
        )

        distribution = empty_distribution()
        first_day = self.local_day(window_start)
        last_day = self.local_day(now)
        day_count = (last_day - first_day).days + 1
        per_day: Dict[date, Dict[str, int]] = {
            first_day + timedelta(days=offset): empty_distribution()
            for offset in range(day_count)
        }

        for submission in submissions:
            key = submission.emotion.value
            distribution[key] += 1
            per_day[self.local_day(submission.submitted_at)][key] += 1

        snapshot = AnalyticsSnapshot(
            class_id=class_id,
            window_days=window_days,
            window_start=window_start,
            window_end=now,
            student_count=len(students),
            emotion_distribution=distribution,
            total_emotions=sum(distribution.values()),
            daily_trends=tuple(
                DailyTrendPoint(day=day, counts=per_day[day]) for day in sorted(per_day)
            ),
        )

        logger.info(
            "CLASS_ANALYTICS_AGGREGATED",
            extra={
                "class_id": class_id,
                "window_days": window_days,
                "student_count": snapshot.student_count,
                "total_emotions": snapshot.total_emotions,
                "trend_days": len(snapshot.daily_trends),
            }
        )
        return snapshot

    def submission_status(self, class_id: str) -> SubmissionStatus:
        """Batched "submitted today" check for a whole class.

        One cutoff instant (start of the current reporting day) and one
        store query for every student.
        """
        cutoff = self.start_of_day(self.clock.now())
        students = self.roster.students_in_class(class_id)
        submitted = self.store.students_submitted_since(students, cutoff) if students else set()

        status = SubmissionStatus(
            class_id=class_id,
            cutoff=cutoff,
            statuses={student_id: student_id in submitted for student_id in students},
        )

        logger.info(
            "SUBMISSION_STATUS_RETRIEVED",
            extra={
                "class_id": class_id,
                "student_count": status.student_count,
                "submitted_count": status.submitted_count,
            }
        )
        return status
