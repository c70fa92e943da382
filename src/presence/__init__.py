"""Background audio presence."""

from src.presence.base import AUDIO_FOCUS_CHANGE, NOTIFICATION_ACTION, BackgroundPresence
from src.presence.local import LocalPresence, PresenceStatus

__all__ = [
    "AUDIO_FOCUS_CHANGE",
    "NOTIFICATION_ACTION",
    "BackgroundPresence",
    "LocalPresence",
    "PresenceStatus",
]
