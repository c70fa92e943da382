"""
In-process background presence.

Stands in for a platform notification service: it tracks the
notification content and lets a driver (terminal keys, tests) emit the
same notification and audio focus events a platform service would.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field

from loguru import logger

from src.presence.base import AUDIO_FOCUS_CHANGE, NOTIFICATION_ACTION, PresenceListener
from src.session.exceptions import PresenceError


@dataclass
class PresenceStatus:
    """Current notification state."""

    is_running: bool = False
    title: str = ""
    body: str = ""
    updates: int = 0


@dataclass
class LocalPresence:
    """
    Presence kept in the current process.

    Usage:
        presence = LocalPresence()
        presence.add_listener(NOTIFICATION_ACTION, on_action)
        await presence.start("Voice Study Session", "Studying Spanish - 20 cards")
        await presence.emit_notification_action("pause")
    """

    on_change: PresenceListener | None = None

    _status: PresenceStatus = field(default_factory=PresenceStatus)
    _listeners: dict[str, list[PresenceListener]] = field(default_factory=dict, repr=False)

    @property
    def status(self) -> PresenceStatus:
        return self._status

    async def start(self, title: str, body: str) -> None:
        if not title:
            raise PresenceError("Presence title must not be empty")
        self._status = PresenceStatus(is_running=True, title=title, body=body)
        logger.info("Background presence started: {} | {}", title, body)
        self._notify_change()

    async def stop(self) -> None:
        if not self._status.is_running:
            return
        self._status.is_running = False
        logger.info("Background presence stopped")
        self._notify_change()

    async def update_content(self, title: str, body: str) -> None:
        if not self._status.is_running:
            return
        self._status.title = title
        self._status.body = body
        self._status.updates += 1
        self._notify_change()

    def is_running(self) -> bool:
        return self._status.is_running

    def add_listener(self, event: str, listener: PresenceListener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    async def emit_notification_action(self, action: str) -> None:
        await self._emit(NOTIFICATION_ACTION, action)

    async def emit_audio_focus_change(self, state: str) -> None:
        await self._emit(AUDIO_FOCUS_CHANGE, state)

    async def _emit(self, event: str, value: str) -> None:
        logger.debug("Presence event {}: {}", event, value)
        for listener in list(self._listeners.get(event, [])):
            result = listener(value)
            if inspect.isawaitable(result):
                await result

    def _notify_change(self) -> None:
        if self.on_change is not None:
            self.on_change(self._status.body if self._status.is_running else "")
