"""
Realtime agent wire protocol.

Event discriminators and builders for the JSON control messages exchanged
over the data channel.
"""

from __future__ import annotations

import json
from typing import Any

# Wildcard subscription: receives every inbound message
ALL_EVENTS = "*"


class ClientEvent:
    """Outbound message types."""

    SESSION_UPDATE = "session.update"
    CONVERSATION_ITEM_CREATE = "conversation.item.create"
    RESPONSE_CREATE = "response.create"


class ServerEvent:
    """Inbound message types consumed by the session engine."""

    OUTPUT_ITEM_ADDED = "response.output_item.added"
    FUNCTION_CALL_ARGUMENTS_DONE = "response.function_call_arguments.done"
    AUDIO_DELTA = "response.audio.delta"
    AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
    RESPONSE_DONE = "response.done"
    SPEECH_STARTED = "input_audio_buffer.speech_started"
    TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
    ERROR = "error"


FUNCTION_CALL_ITEM = "function_call"
DEFAULT_MODALITIES = ("text", "audio")


def session_update(
    instructions: str,
    tools: list[dict[str, Any]],
    modalities: list[str] | tuple[str, ...] = DEFAULT_MODALITIES,
    transcription_model: str = "whisper-1",
) -> dict[str, Any]:
    return {
        "type": ClientEvent.SESSION_UPDATE,
        "session": {
            "modalities": list(modalities),
            "instructions": instructions,
            "input_audio_transcription": {"model": transcription_model},
            "tools": tools,
            "tool_choice": "auto",
        },
    }


def user_text_message(text: str) -> dict[str, Any]:
    return {
        "type": ClientEvent.CONVERSATION_ITEM_CREATE,
        "item": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": text}],
        },
    }


def function_call_output(call_id: str, result: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": ClientEvent.CONVERSATION_ITEM_CREATE,
        "item": {
            "type": "function_call_output",
            "call_id": call_id,
            "output": json.dumps(result),
        },
    }


def response_create() -> dict[str, Any]:
    return {"type": ClientEvent.RESPONSE_CREATE}


def opened_function_call(event: dict[str, Any]) -> tuple[str, str] | None:
    """
    Extract (call_id, tool_name) from an item-opened event.

    Returns None when the opened item is not a function call.
    """
    item = event.get("item") or {}
    if item.get("type") != FUNCTION_CALL_ITEM:
        return None
    call_id = item.get("call_id")
    name = item.get("name")
    if not call_id or not name:
        return None
    return call_id, name
