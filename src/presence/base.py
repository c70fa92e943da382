"""
Background audio presence interface.

A presence keeps the audio session alive while the tutor runs in the
background and reports two kinds of events back:
- notification_action: pause / resume / end taps on the persistent notification
- audio_focus_change: gain / loss / loss_transient / loss_transient_can_duck
"""

from __future__ import annotations

from typing import Any, Callable, Protocol

NOTIFICATION_ACTION = "notification_action"
AUDIO_FOCUS_CHANGE = "audio_focus_change"

PresenceListener = Callable[[str], Any]


class BackgroundPresence(Protocol):
    async def start(self, title: str, body: str) -> None: ...

    async def stop(self) -> None: ...

    async def update_content(self, title: str, body: str) -> None: ...

    def is_running(self) -> bool: ...

    def add_listener(self, event: str, listener: PresenceListener) -> None: ...
