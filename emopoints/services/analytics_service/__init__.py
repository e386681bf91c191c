"""Analytics Service: class-level emotion reporting for teachers.

This service provides:
- Emotion distribution over a lookback window, every emotion key present
- Daily trend series including days with no check-ins
- Batched "submitted today" status for a whole class
- The payload handed to the external prose summarizer

All operations are read-only.
"""

from .roster import RosterLookup, InMemoryRoster, RosterUnavailableError
from .aggregator import (
    AnalyticsAggregator,
    AnalyticsSnapshot,
    DailyTrendPoint,
    SubmissionStatus,
    rank_emotions,
    DEFAULT_WINDOW_DAYS,
    MAX_WINDOW_DAYS,
)
from .insight_payload import InsightRequest, build_insight_request, SYSTEM_PROMPT

__all__ = [
    "RosterLookup",
    "InMemoryRoster",
    "RosterUnavailableError",
    "AnalyticsAggregator",
    "AnalyticsSnapshot",
    "DailyTrendPoint",
    "SubmissionStatus",
    "rank_emotions",
    "DEFAULT_WINDOW_DAYS",
    "MAX_WINDOW_DAYS",
    "InsightRequest",
    "build_insight_request",
    "SYSTEM_PROMPT",
]
