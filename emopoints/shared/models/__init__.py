"""Shared domain models for the emopoints platform."""
from .engagement import (
    Emotion,
    CANONICAL_EMOTION_ORDER,
    DISTRIBUTION_KEYS,
    Submission,
    PointsAccount,
    Reward,
    RewardRedemption,
    new_submission_id,
)

__all__ = [
    "Emotion",
    "CANONICAL_EMOTION_ORDER",
    "DISTRIBUTION_KEYS",
    "Submission",
    "PointsAccount",
    "Reward",
    "RewardRedemption",
    "new_submission_id",
]
