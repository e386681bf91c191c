"""Engagement engine configuration."""
import os
from dataclasses import dataclass
from datetime import timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


@dataclass(frozen=True)
class EngagementConfig:
    """Tunable policy for check-ins, points and reporting.

    reporting_timezone is an IANA name. Its midnight is the day boundary
    for trends and for "submitted today"; it does not affect the 24 hour
    cooldown, which is measured in elapsed time.
    """
    points_per_submission: int = 10
    cooldown_hours: int = 24
    default_window_days: int = 7
    max_window_days: int = 90
    reporting_timezone: str = "UTC"

    def __post_init__(self):
        if self.points_per_submission < 0:
            raise ValueError("points_per_submission must be non-negative")
        if self.cooldown_hours <= 0:
            raise ValueError("cooldown_hours must be positive")
        if not 1 <= self.default_window_days <= self.max_window_days:
            raise ValueError("default_window_days must be between 1 and max_window_days")
        # fail at startup on an unknown zone name
        try:
            self.reporting_tz()
        except ZoneInfoNotFoundError:
            raise ValueError(f"Unknown reporting_timezone '{self.reporting_timezone}'")

    @property
    def cooldown(self) -> timedelta:
        return timedelta(hours=self.cooldown_hours)

    def reporting_tz(self) -> tzinfo:
        if self.reporting_timezone.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.reporting_timezone)

    @classmethod
    def from_env(cls) -> "EngagementConfig":
        """Create config from environment variables.

        Environment variables:
            POINTS_PER_SUBMISSION: Points per accepted check-in (default 10)
            SUBMISSION_COOLDOWN_HOURS: Hours between check-ins (default 24)
            DEFAULT_WINDOW_DAYS: Analytics lookback (default 7)
            MAX_WINDOW_DAYS: Largest allowed lookback (default 90)
            REPORTING_TIMEZONE: Day boundary zone (default UTC)
        """
        return cls(
            points_per_submission=int(os.getenv("POINTS_PER_SUBMISSION", "10")),
            cooldown_hours=int(os.getenv("SUBMISSION_COOLDOWN_HOURS", "24")),
            default_window_days=int(os.getenv("DEFAULT_WINDOW_DAYS", "7")),
            max_window_days=int(os.getenv("MAX_WINDOW_DAYS", "90")),
            reporting_timezone=os.getenv("REPORTING_TIMEZONE", "UTC"),
        )
