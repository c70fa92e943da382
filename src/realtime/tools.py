"""
Tool schemas exposed to the realtime agent and their argument models.

The JSON schemas are what the agent sees in session.update; the pydantic
models validate the arguments it sends back before any session state is
touched.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from src.session.models import SessionStats, StudyItem

EVALUATE_AND_MOVE_NEXT = "evaluate_and_move_next"
OVERRIDE_EVALUATION = "override_evaluation"
END_SESSION = "end_session"


# =============================================================================
# Schemas sent to the agent
# =============================================================================

EVALUATE_AND_MOVE_NEXT_TOOL: dict[str, Any] = {
    "type": "function",
    "name": EVALUATE_AND_MOVE_NEXT,
    "description": (
        "Evaluates the user's answer, records the result, and retrieves "
        "the next card content."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "user_response_quality": {
                "type": "string",
                "enum": ["correct", "incorrect", "skipped"],
                "description": (
                    "The verdict based on semantic meaning. "
                    "Be lenient on phrasing, strict on facts."
                ),
            },
            "feedback_text": {
                "type": "string",
                "description": "Brief explanation of why it is correct or incorrect.",
            },
        },
        "required": ["user_response_quality", "feedback_text"],
    },
}

OVERRIDE_EVALUATION_TOOL: dict[str, Any] = {
    "type": "function",
    "name": OVERRIDE_EVALUATION,
    "description": "Corrects the previous evaluation when user says their answer was actually correct.",
    "parameters": {
        "type": "object",
        "properties": {
            "override_to": {
                "type": "string",
                "enum": ["correct"],
                "description": "What to change the previous evaluation to (always correct).",
            },
        },
        "required": ["override_to"],
    },
}

END_SESSION_TOOL: dict[str, Any] = {
    "type": "function",
    "name": END_SESSION,
    "description": "Ends the study session when user requests to stop.",
    "parameters": {"type": "object", "properties": {}, "required": []},
}

ALL_TOOLS: list[dict[str, Any]] = [
    EVALUATE_AND_MOVE_NEXT_TOOL,
    OVERRIDE_EVALUATION_TOOL,
    END_SESSION_TOOL,
]


# =============================================================================
# Argument models
# =============================================================================


class EvaluateAndMoveNextArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_response_quality: Literal["correct", "incorrect", "skipped"]
    feedback_text: str = ""


class OverrideEvaluationArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    override_to: Literal["correct"] = "correct"


class EndSessionArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")


ARGUMENT_MODELS: dict[str, type[BaseModel]] = {
    EVALUATE_AND_MOVE_NEXT: EvaluateAndMoveNextArgs,
    OVERRIDE_EVALUATION: OverrideEvaluationArgs,
    END_SESSION: EndSessionArgs,
}


# =============================================================================
# Results returned to the agent
# =============================================================================


class NextItem(BaseModel):
    front: str
    back: str


class EvaluationResult(BaseModel):
    """Atomic grade-and-advance result for evaluate_and_move_next."""

    status: Literal["success", "session_complete"]
    answered_item_back: str | None
    next_item: NextItem | None
    remaining: int
    stats: dict[str, int]
    session_summary: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump()
        if self.session_summary is None:
            payload.pop("session_summary")
        return payload


def format_evaluation_result(
    answered_item_back: str | None,
    next_item: StudyItem | None,
    remaining: int,
    stats: SessionStats,
) -> EvaluationResult:
    """Build the result for one evaluate_and_move_next call."""
    is_complete = next_item is None
    return EvaluationResult(
        status="session_complete" if is_complete else "success",
        answered_item_back=answered_item_back,
        next_item=NextItem(**next_item.to_prompt_dict()) if next_item else None,
        remaining=remaining,
        stats=stats.to_dict(),
        session_summary=stats.summary() if is_complete else None,
    )


def override_result(applied: bool, stats: SessionStats) -> dict[str, Any]:
    if applied:
        return {
            "status": "success",
            "message": "Previous answer marked as correct",
            "updated_stats": stats.to_dict(),
        }
    return {
        "status": "no_change",
        "message": "No incorrect answer to override",
    }


def end_session_result(stats: SessionStats) -> dict[str, Any]:
    return {
        "status": "ending",
        "total_reviewed": stats.total,
        "correct": stats.correct,
        "incorrect": stats.incorrect,
    }
