"""Result types for the engagement operations.

Business rejections (cooldown, insufficient balance, unknown reward) are
ordinary return values. Exceptions are reserved for faults.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from emopoints.shared.models import RewardRedemption, Submission


@dataclass(frozen=True)
class SubmissionAccepted:
    submission: Submission
    points_awarded: int
    balance: int

    accepted = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": True,
            "points_awarded": self.points_awarded,
            "balance": self.balance,
            "submission": self.submission.to_dict(),
        }


@dataclass(frozen=True)
class CooldownActive:
    """The student already checked in within the cooldown window."""
    hours_remaining: int
    last_submitted_at: Optional[datetime] = None

    accepted = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": False,
            "error": "cooldown_active",
            "hours_remaining": self.hours_remaining,
            "last_submitted_at": (
                self.last_submitted_at.isoformat() if self.last_submitted_at else None
            ),
        }


@dataclass(frozen=True)
class RedemptionSucceeded:
    redemption: RewardRedemption
    remaining_balance: int

    success = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remaining_balance": self.remaining_balance,
            "redemption": self.redemption.to_dict(),
        }


@dataclass(frozen=True)
class InsufficientBalance:
    reward_id: str
    cost: int
    balance: int

    success = False

    @property
    def shortfall(self) -> int:
        return self.cost - self.balance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "insufficient_balance",
            "reward_id": self.reward_id,
            "cost": self.cost,
            "balance": self.balance,
            "shortfall": self.shortfall,
        }


@dataclass(frozen=True)
class RewardNotFound:
    reward_id: str

    success = False

    def to_dict(self) -> Dict[str, Any]:
        return {"error": "reward_not_found", "reward_id": self.reward_id}
