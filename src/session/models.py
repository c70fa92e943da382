"""
Data model for voice study sessions.

Holds the value types shared by the queue, the phase machine, the
tool dispatcher and the transport:
- StudyItem: one card drawn from a deck
- SessionPhase / ConnectionState: lifecycle enums
- SessionStats / SessionTransition: counters and observability records
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# =============================================================================
# Enums
# =============================================================================


class SessionPhase(str, Enum):
    """Stage of the voice conversation lifecycle."""

    IDLE = "idle"
    LOADING_ITEMS = "loading_items"
    CONNECTING = "connecting"
    READY = "ready"
    ASKING_QUESTION = "asking_question"
    AWAITING_ANSWER = "awaiting_answer"
    EVALUATING = "evaluating"
    GIVING_FEEDBACK = "giving_feedback"
    ADVANCING = "advancing"
    PAUSED = "paused"
    RECONNECTING = "reconnecting"
    SESSION_COMPLETE = "session_complete"
    ERROR = "error"


class ConnectionState(str, Enum):
    """State of the realtime transport."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class AnswerQuality(str, Enum):
    """Verdict the agent assigns to a spoken answer."""

    CORRECT = "correct"
    INCORRECT = "incorrect"
    SKIPPED = "skipped"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class StudyItem:
    """A question/answer pair loaded from a deck. Immutable once loaded."""

    item_id: int
    front: str
    back: str
    collection: str

    def to_prompt_dict(self) -> dict[str, str]:
        """Front/back payload handed to the agent."""
        return {"front": self.front, "back": self.back}


@dataclass
class SessionStats:
    """Correct/incorrect counters for the current session."""

    correct: int = 0
    incorrect: int = 0

    @property
    def total(self) -> int:
        return self.correct + self.incorrect

    @property
    def accuracy_percent(self) -> int:
        if self.total == 0:
            return 0
        return round(self.correct / self.total * 100)

    def copy(self) -> SessionStats:
        return SessionStats(correct=self.correct, incorrect=self.incorrect)

    def to_dict(self) -> dict[str, int]:
        return {"correct": self.correct, "incorrect": self.incorrect}

    def summary(self) -> dict[str, Any]:
        """Totals reported when a session finishes."""
        return {
            "total_reviewed": self.total,
            "correct": self.correct,
            "incorrect": self.incorrect,
            "accuracy_percent": self.accuracy_percent,
        }


@dataclass(frozen=True)
class SessionTransition:
    """A single phase change and what caused it."""

    from_phase: SessionPhase
    to_phase: SessionPhase
    trigger: str
    at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))
