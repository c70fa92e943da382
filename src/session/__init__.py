"""Voice study session engine: queue, phases, tool calls, interruptions."""

from src.session.exceptions import (
    EmptyQueueError,
    PresenceError,
    SyncError,
    ToolCallError,
    TransportConnectionError,
    VoiceTutorError,
)
from src.session.item_queue import ItemQueue
from src.session.models import (
    AnswerQuality,
    ConnectionState,
    SessionPhase,
    SessionStats,
    SessionTransition,
    StudyItem,
)
from src.session.phase_machine import PhaseMachine

__all__ = [
    "AnswerQuality",
    "ConnectionState",
    "EmptyQueueError",
    "ItemQueue",
    "PhaseMachine",
    "PresenceError",
    "SessionPhase",
    "SessionStats",
    "SessionTransition",
    "StudyItem",
    "SyncError",
    "ToolCallError",
    "TransportConnectionError",
    "VoiceTutorError",
]
