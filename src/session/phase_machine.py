"""
Session phase machine.

Authoritative state of one voice study session: the active phase, the
answer counters and a bounded transition history. Every requested
transition overwrites the phase; guards such as "only resume when paused"
belong to the callers.
"""

from __future__ import annotations

from collections import deque
from typing import Callable

from loguru import logger

from src.session.models import AnswerQuality, SessionPhase, SessionStats, SessionTransition

TransitionListener = Callable[[SessionTransition], None]

HISTORY_LIMIT = 200


class PhaseMachine:
    """Holds the single active SessionPhase and the session stats."""

    def __init__(self, history_limit: int = HISTORY_LIMIT) -> None:
        self._phase = SessionPhase.IDLE
        self._stats = SessionStats()
        self._last_evaluation: AnswerQuality | None = None
        self._history: deque[SessionTransition] = deque(maxlen=history_limit)
        self._listeners: list[TransitionListener] = []

    # ========================================
    # State
    # ========================================

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def stats(self) -> SessionStats:
        """Snapshot of the counters (mutating it has no effect)."""
        return self._stats.copy()

    @property
    def last_evaluation(self) -> AnswerQuality | None:
        return self._last_evaluation

    @property
    def history(self) -> list[SessionTransition]:
        return list(self._history)

    def is_in(self, *phases: SessionPhase) -> bool:
        return self._phase in phases

    # ========================================
    # Transitions
    # ========================================

    def transition_to(self, phase: SessionPhase, trigger: str) -> SessionTransition:
        """
        Move to a new phase.

        Args:
            phase: Requested phase
            trigger: Short cause string recorded for observability

        Returns:
            The recorded transition
        """
        transition = SessionTransition(from_phase=self._phase, to_phase=phase, trigger=trigger)
        self._phase = phase
        self._history.append(transition)

        logger.debug(
            "Phase {} -> {} ({})",
            transition.from_phase.value,
            transition.to_phase.value,
            trigger,
        )

        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception as exc:
                logger.warning("Phase listener failed on {}: {}", trigger, exc)

        return transition

    def subscribe(self, listener: TransitionListener) -> Callable[[], None]:
        """Register a transition listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ========================================
    # Stats
    # ========================================

    def record_answer(self, quality: AnswerQuality) -> None:
        """Count a graded answer. Skipped answers are not counted."""
        if quality is AnswerQuality.CORRECT:
            self._stats.correct += 1
        elif quality is AnswerQuality.INCORRECT:
            self._stats.incorrect += 1
        else:
            return
        self._last_evaluation = quality

    def override_last_incorrect(self) -> bool:
        """
        Retroactively turn one incorrect answer into a correct one.

        Returns:
            True if the stats changed, False when there was nothing to override
        """
        if self._stats.incorrect <= 0:
            return False

        self._stats.incorrect -= 1
        self._stats.correct += 1
        self._last_evaluation = AnswerQuality.CORRECT
        logger.info("Override applied: {}", self._stats.to_dict())
        return True

    def reset(self) -> None:
        """Back to idle with zeroed stats and an empty history."""
        self._phase = SessionPhase.IDLE
        self._stats = SessionStats()
        self._last_evaluation = None
        self._history.clear()
