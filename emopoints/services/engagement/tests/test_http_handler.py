"""Tests for the engagement HTTP handler."""
from datetime import datetime, timezone

import pytest
from unittest.mock import MagicMock

from emopoints.shared.database import RepositoryError
from emopoints.shared.utils import ManualClock, configure_pii_salt
from emopoints.services.analytics_service import InMemoryRoster, RosterUnavailableError
from emopoints.services.audit_service import AuditLogger
from emopoints.services.checkin_service import InMemorySubmissionStore
from emopoints.services.points_service import PointsLedger, RewardCatalog
from emopoints.services.engagement import EngagementEngine
from emopoints.services.engagement.http_handler import app, set_engine


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def client():
    """Flask test client."""
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def engine(clock):
    """Fresh engine for each test."""
    e = EngagementEngine(
        store=InMemorySubmissionStore(),
        ledger=PointsLedger(journal=AuditLogger(clock)),
        catalog=RewardCatalog(),
        roster=InMemoryRoster({"class_a": ["student_001", "student_002"]}),
        clock=clock,
    )
    set_engine(e)
    yield e
    set_engine(None)


class TestHealthEndpoints:
    def test_health_returns_200(self, client, engine):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json() == {"status": "healthy", "service": "engagement-service"}

    def test_ready_returns_200(self, client, engine):
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.get_json()["status"] == "ready"

    def test_not_ready_without_engine(self, client):
        set_engine(None)

        response = client.get("/ready")

        assert response.status_code == 503

    def test_not_ready_when_database_unhealthy(self, client, clock):
        manager = MagicMock()
        manager.health_check.return_value = {"status": "error", "healthy": False, "error": "refused"}
        set_engine(EngagementEngine(
            store=InMemorySubmissionStore(),
            ledger=PointsLedger(),
            catalog=RewardCatalog(),
            roster=InMemoryRoster(),
            clock=clock,
            connection_manager=manager,
        ))

        try:
            response = client.get("/ready")
        finally:
            set_engine(None)

        assert response.status_code == 503
        assert response.get_json()["storage"]["status"] == "error"


class TestSubmitEmotionEndpoint:
    def test_accepted(self, client, engine):
        response = client.post("/students/student_001/emotions", json={"emotion": "Happy"})

        assert response.status_code == 201
        data = response.get_json()
        assert data["accepted"] is True
        assert data["balance"] == 10
        assert data["submission"]["emotion"] == "happy"

    def test_cooldown_returns_429(self, client, engine, clock):
        client.post("/students/student_001/emotions", json={"emotion": "happy"})
        clock.advance(hours=5)

        response = client.post("/students/student_001/emotions", json={"emotion": "sad"})

        assert response.status_code == 429
        data = response.get_json()
        assert data["error"] == "cooldown_active"
        assert data["hours_remaining"] == 19
        assert response.headers["Retry-After"] == str(19 * 3600)

    def test_missing_body(self, client, engine):
        response = client.post("/students/student_001/emotions")

        assert response.status_code == 400

    def test_non_object_body(self, client, engine):
        response = client.post("/students/student_001/emotions", json="happy emotion")

        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_request"

    def test_missing_emotion(self, client, engine):
        response = client.post("/students/student_001/emotions", json={"note": "hi"})

        assert response.status_code == 400
        assert "emotion" in response.get_json()["message"]

    def test_unknown_emotion(self, client, engine):
        response = client.post("/students/student_001/emotions", json={"emotion": "ecstatic"})

        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_request"

    def test_note_must_be_string(self, client, engine):
        response = client.post("/students/student_001/emotions", json={"emotion": "happy", "note": 5})

        assert response.status_code == 400

    def test_store_failure_is_retryable(self, client, clock):
        store = MagicMock()
        store.latest_at_or_before.side_effect = RepositoryError("database unavailable")
        set_engine(EngagementEngine(
            store=store,
            ledger=PointsLedger(),
            catalog=RewardCatalog(),
            roster=InMemoryRoster(),
            clock=clock,
        ))

        try:
            response = client.post("/students/student_001/emotions", json={"emotion": "happy"})
        finally:
            set_engine(None)

        assert response.status_code == 503
        assert response.get_json()["retryable"] is True


class TestPointsAndRedemptions:
    def test_points_balance(self, client, engine):
        client.post("/students/student_001/emotions", json={"emotion": "happy"})

        response = client.get("/students/student_001/points")

        assert response.get_json() == {"student_id": "student_001", "balance": 10}

    def test_insufficient_balance_returns_409(self, client, engine):
        client.post("/students/student_001/emotions", json={"emotion": "happy"})

        response = client.post("/students/student_001/redemptions", json={"reward_id": "keychain"})

        assert response.status_code == 409
        data = response.get_json()
        assert data["error"] == "insufficient_balance"
        assert data["shortfall"] == 10

    def test_unknown_reward_returns_404(self, client, engine):
        response = client.post("/students/student_001/redemptions", json={"reward_id": "spaceship"})

        assert response.status_code == 404
        assert response.get_json()["error"] == "reward_not_found"

    def test_missing_reward_id(self, client, engine):
        response = client.post("/students/student_001/redemptions", json={})

        assert response.status_code == 400

    def test_list_body_is_rejected(self, client, engine):
        response = client.post("/students/student_001/redemptions", json=["keychain"])

        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_request"

    def test_successful_redemption_and_history(self, client, engine):
        client.post("/students/student_001/emotions", json={"emotion": "happy"})

        response = client.post("/students/student_001/redemptions", json={"reward_id": "pencil"})

        assert response.status_code == 200
        assert response.get_json()["remaining_balance"] == 0

        history = client.get("/students/student_001/redemptions").get_json()
        assert history["count"] == 1
        assert history["redemptions"][0]["reward_id"] == "pencil"

    def test_rewards_catalog(self, client, engine):
        response = client.get("/rewards")

        assert [r["id"] for r in response.get_json()["rewards"]] == ["pencil", "keychain"]


class TestClassEndpoints:
    def test_analytics(self, client, engine):
        client.post("/students/student_001/emotions", json={"emotion": "tired"})

        response = client.get("/classes/class_a/analytics")

        assert response.status_code == 200
        data = response.get_json()
        assert data["window_days"] == 7
        assert data["emotion_distribution"]["tired"] == 1
        assert data["top_emotion"] == "tired"
        assert len(data["daily_trends"]) == 8

    def test_analytics_custom_window(self, client, engine):
        response = client.get("/classes/class_a/analytics?days=30")

        assert response.get_json()["window_days"] == 30

    @pytest.mark.parametrize("days", ["abc", "0", "91"])
    def test_analytics_bad_window(self, client, engine, days):
        response = client.get(f"/classes/class_a/analytics?days={days}")

        assert response.status_code == 400

    def test_roster_failure_is_retryable(self, client, clock):
        roster = MagicMock()
        roster.students_in_class.side_effect = RosterUnavailableError("directory timeout")
        set_engine(EngagementEngine(
            store=InMemorySubmissionStore(),
            ledger=PointsLedger(),
            catalog=RewardCatalog(),
            roster=roster,
            clock=clock,
        ))

        try:
            response = client.get("/classes/class_a/analytics")
        finally:
            set_engine(None)

        assert response.status_code == 503
        assert response.get_json() == {"error": "service_unavailable", "retryable": True}

    def test_submission_status(self, client, engine):
        client.post("/students/student_002/emotions", json={"emotion": "happy"})

        data = client.get("/classes/class_a/submission-status").get_json()

        assert data["statuses"] == {"student_001": False, "student_002": True}
        assert data["submission_rate"] == 50

    def test_insight_request(self, client, engine):
        client.post("/students/student_001/emotions", json={"emotion": "sad"})

        data = client.get("/classes/class_a/insight-request?days=3").get_json()

        assert data["context"]["window_days"] == 3
        assert [m["role"] for m in data["messages"]] == ["system", "user"]
        assert "student_001" not in data["user_prompt"]


class TestMeEndpoint:
    def test_requires_identity(self, client, engine):
        assert client.get("/me").status_code == 401

    def test_student(self, client, engine):
        client.post("/students/student_001/emotions", json={"emotion": "happy"})

        response = client.get("/me", headers={
            "X-User-Id": "u1",
            "X-User-Name": "Mina",
            "X-User-Role": "student",
            "X-Student-Id": "student_001",
            "X-Class-Id": "class_a",
        })

        assert response.status_code == 200
        assert response.get_json()["points"] == 10

    def test_student_without_student_id(self, client, engine):
        response = client.get("/me", headers={"X-User-Id": "u1", "X-User-Role": "student"})

        assert response.status_code == 400

    def test_teacher(self, client, engine):
        response = client.get("/me", headers={
            "X-User-Id": "u2",
            "X-User-Name": "Mr. Park",
            "X-User-Role": "Teacher",
            "X-User-Email": "park@example.com",
            "X-Class-Ids": "class_a, class_b",
        })

        data = response.get_json()
        assert data["role"] == "teacher"
        assert data["class_ids"] == ["class_a", "class_b"]

    def test_unknown_role(self, client, engine):
        response = client.get("/me", headers={"X-User-Id": "u9", "X-User-Role": "janitor"})

        assert response.status_code == 400
