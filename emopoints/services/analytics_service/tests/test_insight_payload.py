"""Tests for the summarizer payload."""
import json
from datetime import datetime, timedelta, timezone

import pytest

from emopoints.shared.models import Emotion, Submission
from emopoints.shared.utils import ManualClock, configure_pii_salt
from emopoints.services.analytics_service import (
    SYSTEM_PROMPT,
    AnalyticsAggregator,
    InMemoryRoster,
    build_insight_request,
)
from emopoints.services.checkin_service import InMemorySubmissionStore


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def aggregator():
    store = InMemorySubmissionStore()
    store.append(Submission(id="sub_1", student_id="student_001", emotion=Emotion.TIRED,
                            submitted_at=NOW - timedelta(hours=2), note="stayed up late"))
    store.append(Submission(id="sub_2", student_id="student_002", emotion=Emotion.TIRED,
                            submitted_at=NOW - timedelta(days=2)))
    roster = InMemoryRoster({"class_a": ["student_001", "student_002"]})
    return AnalyticsAggregator(store, roster, ManualClock(NOW))


class TestBuildInsightRequest:
    def test_prompt_contents(self, aggregator):
        snapshot = aggregator.aggregate("class_a", 7)

        request = build_insight_request(snapshot)

        assert request.system_prompt == SYSTEM_PROMPT
        assert "Class class_a, last 7 days, 2 students, 2 check-ins." in request.user_prompt
        assert "Most frequent emotion: tired" in request.user_prompt
        assert "- tired: 2 (100.0%)" in request.user_prompt

    def test_never_includes_student_data(self, aggregator):
        request = build_insight_request(aggregator.aggregate("class_a", 7))

        assert "student_001" not in request.user_prompt
        assert "stayed up late" not in request.user_prompt

    def test_includes_submission_status(self, aggregator):
        snapshot = aggregator.aggregate("class_a", 7)
        status = aggregator.submission_status("class_a")

        request = build_insight_request(snapshot, status)

        assert "Today 1 of 2 students have checked in (50%)." in request.user_prompt
        assert request.context["submission_status"]["submission_rate"] == 50

    def test_empty_window(self):
        aggregator = AnalyticsAggregator(InMemorySubmissionStore(), InMemoryRoster(), ManualClock(NOW))

        request = build_insight_request(aggregator.aggregate("class_a", 3))

        assert "No check-ins were recorded in this window." in request.user_prompt

    def test_structured_data_matches_context(self, aggregator):
        request = build_insight_request(aggregator.aggregate("class_a", 7))

        structured = request.user_prompt.split("Structured data:\n", 1)[1]
        assert json.loads(structured) == request.context

    def test_messages(self, aggregator):
        request = build_insight_request(aggregator.aggregate("class_a", 7))

        messages = request.to_messages()

        assert [m["role"] for m in messages] == ["system", "user"]
        assert request.to_dict()["messages"] == messages
