"""Engagement Service: emotion check-ins that earn spendable points.

A student submits one emotion per 24 hours and earns points for it. Points
are redeemed for catalog rewards. Teachers read class-level analytics.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- GET /me - Role-specific view of the caller
- POST /students/<student_id>/emotions - Submit today's emotion
- GET /students/<student_id>/points - Current balance
- POST /students/<student_id>/redemptions - Redeem a reward
- GET /students/<student_id>/redemptions - Redemption history
- GET /rewards - Reward catalog
- GET /classes/<class_id>/analytics - Distribution and daily trends
- GET /classes/<class_id>/submission-status - Who checked in today
- GET /classes/<class_id>/insight-request - Summarizer payload
"""

from .config import EngagementConfig
from .engine import EngagementEngine, create_engine_from_env, load_roster
from .outcomes import (
    SubmissionAccepted,
    CooldownActive,
    RedemptionSucceeded,
    InsufficientBalance,
    RewardNotFound,
)
from .projections import (
    Role,
    UserRecord,
    StudentView,
    TeacherView,
    AdminView,
    project_user,
)

__all__ = [
    "EngagementConfig",
    "EngagementEngine",
    "create_engine_from_env",
    "load_roster",
    "SubmissionAccepted",
    "CooldownActive",
    "RedemptionSucceeded",
    "InsufficientBalance",
    "RewardNotFound",
    "Role",
    "UserRecord",
    "StudentView",
    "TeacherView",
    "AdminView",
    "project_user",
]
