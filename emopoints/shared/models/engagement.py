"""Engagement domain models: check-ins, point accounts and rewards.

Records are frozen dataclasses. A Submission never changes after it is
accepted and a RewardRedemption keeps the cost that was charged, even if the
catalog price moves later.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from ..utils.clock import ensure_utc


class Emotion(Enum):
    """Fixed set of emotions a student can check in with."""
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    TIRED = "tired"
    NEUTRAL = "neutral"

    @classmethod
    def parse(cls, value) -> "Emotion":
        """Parse a wire value ("Happy", " sad ") into an Emotion.

        Raises:
            ValueError: If the value is not one of the five emotions
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Emotion must be a string, got {type(value).__name__}")
        try:
            return cls(value.strip().lower())
        except ValueError:
            allowed = ", ".join(e.value for e in cls)
            raise ValueError(f"Unknown emotion '{value}'. Expected one of: {allowed}")


# Tie-break order for any ranking by count
CANONICAL_EMOTION_ORDER: Tuple[Emotion, ...] = (
    Emotion.HAPPY,
    Emotion.NEUTRAL,
    Emotion.SAD,
    Emotion.ANGRY,
    Emotion.TIRED,
)

# Order keys appear in distributions (matches the dashboard legend)
DISTRIBUTION_KEYS: Tuple[str, ...] = tuple(e.value for e in Emotion)


def new_submission_id() -> str:
    return f"sub_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class Submission:
    """One recorded emotion check-in."""
    id: str
    student_id: str
    emotion: Emotion
    submitted_at: datetime
    note: Optional[str] = None

    def __post_init__(self):
        if not self.student_id:
            raise ValueError("Submission requires a student_id")
        if not isinstance(self.emotion, Emotion):
            object.__setattr__(self, "emotion", Emotion.parse(self.emotion))
        object.__setattr__(self, "submitted_at", ensure_utc(self.submitted_at))

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "emotion": self.emotion.value,
            "note": self.note,
            "submitted_at": self.submitted_at.isoformat(),
        }


@dataclass(frozen=True)
class PointsAccount:
    """Point balance snapshot for one student."""
    student_id: str
    balance: int = 0


@dataclass(frozen=True)
class Reward:
    """Redeemable catalog item."""
    id: str
    name: str
    cost: int
    description: str = ""

    def __post_init__(self):
        if isinstance(self.cost, bool) or not isinstance(self.cost, int) or self.cost < 0:
            raise ValueError(f"Reward cost must be a non-negative integer, got {self.cost!r}")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "cost": self.cost,
            "description": self.description,
        }


@dataclass(frozen=True)
class RewardRedemption:
    """A reward that was paid for.

    Only created after the matching debit succeeded.
    """
    student_id: str
    reward_id: str
    cost: int
    redeemed_at: datetime
    redemption_id: str = field(default_factory=lambda: f"red_{uuid.uuid4().hex[:16]}")

    def to_dict(self):
        return {
            "redemption_id": self.redemption_id,
            "student_id": self.student_id,
            "reward_id": self.reward_id,
            "cost": self.cost,
            "redeemed_at": self.redeemed_at.isoformat(),
        }
