"""Payload for the external text-generation collaborator.

The teacher dashboard can ask a language model to describe a class's
week in prose. This module only shapes what that model receives; sending
it, retrying and handling failures belong to the caller.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .aggregator import AnalyticsSnapshot, SubmissionStatus

SYSTEM_PROMPT = (
    "You are an assistant for a homeroom teacher. You receive anonymous, "
    "class-level counts of daily emotion check-ins. Summarize the overall "
    "mood, point out notable shifts between days, and suggest one or two "
    "gentle classroom actions. Never speculate about individual students."
)


@dataclass(frozen=True)
class InsightRequest:
    """Prompt pair plus the structured context it was rendered from."""
    system_prompt: str
    user_prompt: str
    context: Dict[str, Any]

    def to_messages(self) -> List[Dict[str, str]]:
        """Chat-completion style message list."""
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.user_prompt},
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "system_prompt": self.system_prompt,
            "user_prompt": self.user_prompt,
            "context": self.context,
            "messages": self.to_messages(),
        }


def _trend_line(point: Dict[str, Any]) -> str:
    counts = ", ".join(f"{emotion} {count}" for emotion, count in point["counts"].items())
    return f"- {point['date']}: {counts} (total {point['total']})"


def build_insight_request(
    snapshot: AnalyticsSnapshot,
    status: Optional[SubmissionStatus] = None,
) -> InsightRequest:
    """Render an analytics snapshot into a prompt for the summarizer.

    Args:
        snapshot: Class analytics for the reporting window
        status: Today's submission status, if the caller has it

    Returns:
        InsightRequest ready to hand to a text-generation client
    """
    context = snapshot.to_dict()
    if status is not None:
        context["submission_status"] = {
            "submitted_count": status.submitted_count,
            "student_count": status.student_count,
            "submission_rate": status.submission_rate,
        }

    lines = [
        f"Class {snapshot.class_id}, last {snapshot.window_days} days, "
        f"{snapshot.student_count} students, {snapshot.total_emotions} check-ins.",
        "",
        "Emotion distribution:",
    ]
    percentages = snapshot.percentages()
    for emotion, count in snapshot.ranked_emotions():
        lines.append(f"- {emotion}: {count} ({percentages[emotion]}%)")

    if snapshot.top_emotion:
        lines.append(f"Most frequent emotion: {snapshot.top_emotion}")
    else:
        lines.append("No check-ins were recorded in this window.")

    lines.append("")
    lines.append("Daily trend:")
    lines.extend(_trend_line(point) for point in context["daily_trends"])

    if status is not None:
        lines.append("")
        lines.append(
            f"Today {status.submitted_count} of {status.student_count} students "
            f"have checked in ({status.submission_rate}%)."
        )

    lines.append("")
    lines.append("Structured data:")
    lines.append(json.dumps(context, sort_keys=True))

    return InsightRequest(
        system_prompt=SYSTEM_PROMPT,
        user_prompt="\n".join(lines),
        context=context,
    )
