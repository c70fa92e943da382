"""
Tool-call dispatcher.

Maps agent tool invocations onto the item queue and phase machine and
sends the results back. The grade-and-advance tool is atomic: the queue
advances, the result carrying the new item is built from the advanced
queue, and only then is it sent.

Dependencies arrive as plain callables so the dispatcher never holds a
reference to the orchestrator.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable

from loguru import logger
from pydantic import BaseModel, ValidationError

from src.realtime import tools
from src.session.exceptions import ToolCallError
from src.session.item_queue import ItemQueue
from src.session.models import AnswerQuality, SessionPhase
from src.session.phase_machine import PhaseMachine

SendResult = Callable[[str, dict[str, Any]], bool]
CompletionRequest = Callable[[str], Awaitable[None]]
ProgressCallback = Callable[[int, int], None]

TRIGGER_NO_MORE_ITEMS = "no_more_items"
TRIGGER_USER_ENDED = "user_ended"
TRIGGER_RESULT_DROPPED = "tool_result_dropped"


class ToolCallDispatcher:
    """Handles evaluate_and_move_next, override_evaluation and end_session."""

    def __init__(
        self,
        queue: ItemQueue,
        phases: PhaseMachine,
        send_result: SendResult,
        complete_session: CompletionRequest,
        terminate_session: CompletionRequest,
        on_progress: ProgressCallback | None = None,
        grace_seconds: float = 5.0,
    ) -> None:
        """
        Args:
            queue: Item queue for the running session
            phases: Phase machine for the running session
            send_result: Sends (call_id, result); returns False if dropped
            complete_session: Runs session completion with a trigger string
            terminate_session: Tears the session down with a trigger string
            on_progress: Called with (position, total) after each advance
            grace_seconds: Delay between acknowledging end_session and completion
        """
        self._queue = queue
        self._phases = phases
        self._send_result = send_result
        self._complete_session = complete_session
        self._terminate_session = terminate_session
        self._on_progress = on_progress
        self._grace_seconds = grace_seconds

        self._pending_calls: dict[str, str] = {}
        self._grace_task: asyncio.Task[None] | None = None

    @property
    def pending_calls(self) -> dict[str, str]:
        return dict(self._pending_calls)

    @property
    def grace_pending(self) -> bool:
        return self._grace_task is not None and not self._grace_task.done()

    # ========================================
    # Call bookkeeping
    # ========================================

    def register_call(self, call_id: str, tool_name: str) -> None:
        """Bind a call identifier to the tool the agent opened."""
        self._pending_calls[call_id] = tool_name
        logger.debug("Tool call opened: {} ({})", tool_name, call_id)

    async def handle_arguments(
        self,
        call_id: str,
        raw_arguments: str | None,
        fallback_name: str | None = None,
    ) -> None:
        """
        Run the tool bound to call_id with its JSON arguments.

        Malformed arguments, unknown calls and unknown tools are logged and
        dropped; nothing is raised to the transport.
        """
        tool_name = self._pending_calls.pop(call_id, None) or fallback_name

        try:
            if not tool_name:
                raise ToolCallError(f"No tool bound to call {call_id}", call_id=call_id)
            args = self._parse_arguments(call_id, tool_name, raw_arguments)
        except ToolCallError as exc:
            logger.warning("Dropping tool call: {}", exc)
            return

        if tool_name == tools.EVALUATE_AND_MOVE_NEXT:
            await self._evaluate_and_move_next(call_id, args)
        elif tool_name == tools.OVERRIDE_EVALUATION:
            await self._override_evaluation(call_id)
        elif tool_name == tools.END_SESSION:
            await self._end_session(call_id)

    @staticmethod
    def _parse_arguments(call_id: str, tool_name: str, raw_arguments: str | None) -> BaseModel:
        model = tools.ARGUMENT_MODELS.get(tool_name)
        if model is None:
            raise ToolCallError(f"Unknown tool: {tool_name}", call_id=call_id, tool_name=tool_name)

        try:
            payload = json.loads(raw_arguments or "{}")
            return model.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            raise ToolCallError(
                f"Malformed arguments for {tool_name}: {exc}",
                call_id=call_id,
                tool_name=tool_name,
            ) from exc

    async def _deliver(self, call_id: str, result: dict[str, Any]) -> bool:
        """Send a result; a dropped result leaves the agent out of sync and ends the session."""
        if self._send_result(call_id, result):
            return True

        logger.error("Tool result for {} was dropped; agent and session are out of sync", call_id)
        self._phases.transition_to(SessionPhase.ERROR, TRIGGER_RESULT_DROPPED)
        await self._terminate_session(TRIGGER_RESULT_DROPPED)
        return False

    # ========================================
    # Tools
    # ========================================

    async def _evaluate_and_move_next(self, call_id: str, args: tools.EvaluateAndMoveNextArgs) -> None:
        quality = AnswerQuality(args.user_response_quality)
        logger.info("Evaluation: {} - {}", quality.value, args.feedback_text)

        answered = self._queue.current()
        if answered is None:
            logger.warning("Evaluation {} arrived after the last item; stats unchanged", call_id)
            await self._deliver(
                call_id,
                tools.format_evaluation_result(
                    answered_item_back=None,
                    next_item=None,
                    remaining=0,
                    stats=self._phases.stats,
                ).to_payload(),
            )
            return
        answered_back = answered.back

        if quality is not AnswerQuality.SKIPPED:
            self._phases.record_answer(quality)
            self._phases.transition_to(SessionPhase.EVALUATING, "tool_called")

        next_item = self._queue.advance()
        result = tools.format_evaluation_result(
            answered_item_back=answered_back,
            next_item=next_item,
            remaining=self._queue.remaining(),
            stats=self._phases.stats,
        )

        if not await self._deliver(call_id, result.to_payload()):
            return

        if next_item is not None:
            self._phases.transition_to(SessionPhase.ASKING_QUESTION, "next_item")
            if self._on_progress is not None:
                self._on_progress(self._queue.cursor + 1, self._queue.total)
        else:
            self._phases.transition_to(SessionPhase.SESSION_COMPLETE, TRIGGER_NO_MORE_ITEMS)
            await self._complete_session(TRIGGER_NO_MORE_ITEMS)

    async def _override_evaluation(self, call_id: str) -> None:
        applied = self._phases.override_last_incorrect()
        if not applied:
            logger.info("Override requested with no incorrect answer recorded")
        await self._deliver(call_id, tools.override_result(applied, self._phases.stats))

    async def _end_session(self, call_id: str) -> None:
        stats = self._phases.stats
        logger.info("End session requested: {}", stats.to_dict())

        if not await self._deliver(call_id, tools.end_session_result(stats)):
            return

        if self.grace_pending:
            logger.debug("End session already scheduled")
            return
        self._grace_task = asyncio.get_running_loop().create_task(
            self._complete_after_grace(), name="end-session-grace"
        )

    async def _complete_after_grace(self) -> None:
        await asyncio.sleep(self._grace_seconds)
        self._phases.transition_to(SessionPhase.SESSION_COMPLETE, TRIGGER_USER_ENDED)
        await self._complete_session(TRIGGER_USER_ENDED)

    # ========================================
    # Teardown
    # ========================================

    def cancel_pending(self) -> None:
        """Forget open calls and cancel the end-session timer."""
        self._pending_calls.clear()
        task, self._grace_task = self._grace_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
