"""Engagement HTTP handler - student check-ins, rewards and teacher analytics.

Maps the engine's outcomes onto HTTP so business rejections stay
distinguishable from faults:
- 429 cooldown_active, 409 insufficient_balance, 404 reward_not_found
- 400 for invalid input
- 503 with retryable=true when the roster or the store is unavailable
- 500 for anything else

Authentication happens upstream. The gateway forwards the caller's
identity in X-User-* headers, which /me turns into a role view.

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
import logging
import os
from typing import Optional

from flask import Flask, jsonify, request

from emopoints.shared.database import RepositoryError
from emopoints.shared.utils import configure_pii_salt
from emopoints.services.analytics_service import RosterUnavailableError
from emopoints.services.points_service import LedgerIntegrityError
from .engine import EngagementEngine, create_engine_from_env
from .outcomes import CooldownActive, InsufficientBalance, RewardNotFound
from .projections import Role, UserRecord, project_user

logger = logging.getLogger(__name__)

app = Flask(__name__)

SERVICE_NAME = "engagement-service"

_engine: Optional[EngagementEngine] = None


def get_engine() -> EngagementEngine:
    """Get or create the engine serving this app."""
    global _engine
    if _engine is None:
        configure_pii_salt(
            os.getenv("PII_HASH_SALT", "default_dev_salt_change_in_production_32chars")
        )
        _engine = create_engine_from_env()
    return _engine


def set_engine(engine: Optional[EngagementEngine]) -> None:
    """Set the engine (for testing and custom wiring)."""
    global _engine
    _engine = engine


def _window_days_arg():
    raw = request.args.get("days")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"days must be an integer, got '{raw}'")


@app.errorhandler(ValueError)
def handle_value_error(e):
    return jsonify({"error": "invalid_request", "message": str(e)}), 400


@app.errorhandler(RosterUnavailableError)
@app.errorhandler(RepositoryError)
def handle_collaborator_failure(e):
    logger.error(
        "COLLABORATOR_UNAVAILABLE",
        extra={"error_type": type(e).__name__, "error": str(e), "path": request.path}
    )
    return jsonify({"error": "service_unavailable", "retryable": True}), 503


@app.errorhandler(LedgerIntegrityError)
def handle_integrity_error(e):
    # already logged at CRITICAL by the ledger
    return jsonify({"error": "internal_error", "retryable": False}), 500


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": SERVICE_NAME})


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check endpoint.

    Ready once an engine is wired and its storage answers.
    """
    if _engine is None:
        return jsonify({"status": "not_ready", "service": SERVICE_NAME}), 503

    storage = _engine.health_check()
    if not storage.get("healthy"):
        return jsonify({"status": "not_ready", "service": SERVICE_NAME, "storage": storage}), 503
    return jsonify({"status": "ready", "service": SERVICE_NAME, "storage": storage})


@app.route("/me", methods=["GET"])
def me():
    """Role-specific view of the authenticated caller.

    Headers (set by the auth gateway):
        X-User-Id, X-User-Name, X-User-Role: Required
        X-Student-Id, X-Class-Id: Students
        X-User-Email: Teachers and admins
        X-Class-Ids: Teachers, comma separated
    """
    user_id = request.headers.get("X-User-Id")
    role_value = request.headers.get("X-User-Role")
    if not user_id or not role_value:
        return jsonify({"error": "unauthenticated"}), 401

    try:
        role = Role(role_value.lower())
    except ValueError:
        return jsonify({"error": "invalid_request", "message": f"Unknown role '{role_value}'"}), 400

    class_ids = request.headers.get("X-Class-Ids", "")
    user = UserRecord(
        id=user_id,
        name=request.headers.get("X-User-Name", ""),
        role=role,
        student_id=request.headers.get("X-Student-Id"),
        class_id=request.headers.get("X-Class-Id"),
        email=request.headers.get("X-User-Email"),
        class_ids=tuple(c.strip() for c in class_ids.split(",") if c.strip()),
    )

    balance = None
    if role is Role.STUDENT and user.student_id:
        balance = get_engine().get_balance(user.student_id)

    return jsonify(project_user(user, balance).to_dict())


@app.route("/students/<student_id>/emotions", methods=["POST"])
def submit_emotion(student_id: str):
    """Submit an emotion check-in.

    Body:
        emotion: happy | sad | angry | tired | neutral
        note: Optional free text
    """
    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        return jsonify({"error": "invalid_request", "message": "JSON object body required"}), 400
    if "emotion" not in data:
        return jsonify({"error": "invalid_request", "message": "Missing field: emotion"}), 400

    note = data.get("note")
    if note is not None and not isinstance(note, str):
        return jsonify({"error": "invalid_request", "message": "note must be a string"}), 400

    outcome = get_engine().submit_emotion(student_id, data["emotion"], note or None)

    if isinstance(outcome, CooldownActive):
        response = jsonify(outcome.to_dict())
        response.headers["Retry-After"] = str(outcome.hours_remaining * 3600)
        return response, 429

    return jsonify(outcome.to_dict()), 201


@app.route("/students/<student_id>/points", methods=["GET"])
def get_points(student_id: str):
    """Current point balance."""
    return jsonify({"student_id": student_id, "balance": get_engine().get_balance(student_id)})


@app.route("/students/<student_id>/redemptions", methods=["POST"])
def redeem_reward(student_id: str):
    """Redeem a reward.

    Body:
        reward_id: Catalog reward identifier
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data.get("reward_id"):
        return jsonify({"error": "invalid_request", "message": "Missing field: reward_id"}), 400

    outcome = get_engine().redeem_reward(student_id, data["reward_id"])

    if isinstance(outcome, RewardNotFound):
        return jsonify(outcome.to_dict()), 404
    if isinstance(outcome, InsufficientBalance):
        return jsonify(outcome.to_dict()), 409
    return jsonify(outcome.to_dict()), 200


@app.route("/students/<student_id>/redemptions", methods=["GET"])
def list_redemptions(student_id: str):
    """Redemption history, oldest first."""
    redemptions = get_engine().get_redemptions(student_id)
    return jsonify({
        "student_id": student_id,
        "count": len(redemptions),
        "redemptions": [r.to_dict() for r in redemptions],
    })


@app.route("/rewards", methods=["GET"])
def list_rewards():
    """Reward catalog, cheapest first."""
    return jsonify({"rewards": [r.to_dict() for r in get_engine().list_rewards()]})


@app.route("/classes/<class_id>/analytics", methods=["GET"])
def class_analytics(class_id: str):
    """Emotion distribution and daily trends.

    Query params:
        days: Optional - Lookback period (default 7)
    """
    snapshot = get_engine().get_class_analytics(class_id, _window_days_arg())
    return jsonify(snapshot.to_dict())


@app.route("/classes/<class_id>/submission-status", methods=["GET"])
def submission_status(class_id: str):
    """Which students have checked in since the start of today."""
    return jsonify(get_engine().get_submission_status(class_id).to_dict())


@app.route("/classes/<class_id>/insight-request", methods=["GET"])
def insight_request(class_id: str):
    """Payload for the external text-generation summarizer.

    Query params:
        days: Optional - Lookback period (default 7)
    """
    payload = get_engine().get_insight_request(class_id, _window_days_arg())
    logger.info(
        "INSIGHT_REQUEST_BUILT",
        extra={"class_id": class_id, "prompt_length": len(payload.user_prompt)}
    )
    return jsonify(payload.to_dict())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    get_engine()
    port = int(os.getenv("PORT", "8080"))
    app.run(host="0.0.0.0", port=port, threaded=True)
