"""
Interruption arbiter.

Reconciles OS audio interruptions and notification taps with the
conversation. Muting follows every signal unconditionally; phase changes
are guarded on the current phase so repeated or out-of-order signals
never stack transitions.
"""

from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable

from loguru import logger

from src.session.models import SessionPhase
from src.session.phase_machine import PhaseMachine


class NotificationAction(str, Enum):
    PAUSE = "pause"
    RESUME = "resume"
    END = "end"


class AudioFocusChange(str, Enum):
    GAIN = "gain"
    LOSS = "loss"
    LOSS_TRANSIENT = "loss_transient"
    LOSS_TRANSIENT_CAN_DUCK = "loss_transient_can_duck"


# Permanent focus loss leaves these phases alone
LOSS_EXEMPT_PHASES = (SessionPhase.PAUSED, SessionPhase.IDLE, SessionPhase.SESSION_COMPLETE)


class InterruptionArbiter:
    """Applies notification actions and audio focus changes to the session."""

    def __init__(
        self,
        phases: PhaseMachine,
        set_microphone_muted: Callable[[bool], None],
        terminate: Callable[[str], Awaitable[None]],
    ) -> None:
        self._phases = phases
        self._set_microphone_muted = set_microphone_muted
        self._terminate = terminate

    # ========================================
    # Notification actions
    # ========================================

    async def handle_notification_action(self, action: str) -> None:
        try:
            parsed = NotificationAction(action)
        except ValueError:
            logger.warning("Unknown notification action: {}", action)
            return

        if parsed is NotificationAction.PAUSE:
            self._set_microphone_muted(True)
            self.pause("notification_pause")
        elif parsed is NotificationAction.RESUME:
            self._set_microphone_muted(False)
            self.resume("notification_resume")
        else:
            logger.info("Session end requested from notification")
            await self._terminate("notification_end")

    # ========================================
    # Audio focus
    # ========================================

    def handle_audio_focus_change(self, state: str) -> None:
        try:
            change = AudioFocusChange(state)
        except ValueError:
            logger.warning("Unknown audio focus state: {}", state)
            return

        if change is AudioFocusChange.GAIN:
            self._set_microphone_muted(False)
            self.resume("audio_focus_gain")
            return

        # Every loss mutes; the connection stays up
        self._set_microphone_muted(True)

        if change is AudioFocusChange.LOSS:
            if not self._phases.is_in(*LOSS_EXEMPT_PHASES):
                self._phases.transition_to(SessionPhase.PAUSED, "audio_focus_loss")
        elif change is AudioFocusChange.LOSS_TRANSIENT:
            self.pause("audio_focus_loss_transient")
        else:
            self.pause("audio_focus_duck")

    # ========================================
    # Guarded transitions
    # ========================================

    def pause(self, trigger: str) -> None:
        if self._phases.phase is SessionPhase.PAUSED:
            return
        self._phases.transition_to(SessionPhase.PAUSED, trigger)

    def resume(self, trigger: str) -> None:
        if self._phases.phase is not SessionPhase.PAUSED:
            return
        self._phases.transition_to(SessionPhase.ASKING_QUESTION, trigger)
