"""
Error taxonomy for voice study sessions.

Only TransportConnectionError and EmptyQueueError propagate out of session
startup. The rest are caught where they occur and logged.
"""

from __future__ import annotations


class VoiceTutorError(Exception):
    """Base class for session engine errors."""


class TransportConnectionError(VoiceTutorError, ConnectionError):
    """Missing credential, rejected negotiation, or connectivity timeout."""


class EmptyQueueError(VoiceTutorError):
    """The selected deck has no items due for review."""

    def __init__(self, collection: str) -> None:
        super().__init__(f"No cards due for review in deck '{collection}'")
        self.collection = collection


class ToolCallError(VoiceTutorError):
    """Malformed tool arguments or an unknown tool/call."""

    def __init__(self, message: str, call_id: str | None = None, tool_name: str | None = None) -> None:
        super().__init__(message)
        self.call_id = call_id
        self.tool_name = tool_name


class PresenceError(VoiceTutorError):
    """Background audio presence failed to start, stop or update."""


class SyncError(VoiceTutorError):
    """The item source could not be synchronized after a session."""
