"""
Voice study session orchestrator.

Top-level coordinator for one voice session at a time:

Startup:
1. Reset session state
2. Connect the realtime transport (if not already connected)
3. Load the due items for the selected deck
4. Configure the agent (instructions, tools, modalities)
5. Map transport events onto phase transitions
6. Send the first item, move to asking_question
7. Start background presence (best-effort)

Teardown:
1. Cancel pending tool timers
2. Stop background presence (best-effort)
3. Disconnect the transport, clear the queue, back to idle
4. Ask the item source to sync (best-effort)

All state changes run on the event loop; handlers never interleave
mid-mutation because every mutation path is synchronous between awaits.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from loguru import logger

from config import Settings, get_settings
from src.anki.item_source import ItemSource
from src.presence.base import AUDIO_FOCUS_CHANGE, NOTIFICATION_ACTION, BackgroundPresence
from src.realtime import protocol, prompts, tools
from src.realtime.protocol import ServerEvent
from src.realtime.transport import RealtimeTransport
from src.session.arbiter import InterruptionArbiter
from src.session.dispatcher import TRIGGER_NO_MORE_ITEMS, ToolCallDispatcher
from src.session.exceptions import EmptyQueueError, SyncError, TransportConnectionError
from src.session.item_queue import ItemQueue
from src.session.models import ConnectionState, SessionPhase, SessionStats
from src.session.phase_machine import PhaseMachine

# Phases in which a dropped connection does not interrupt a conversation
INACTIVE_PHASES = (
    SessionPhase.IDLE,
    SessionPhase.CONNECTING,
    SessionPhase.SESSION_COMPLETE,
    SessionPhase.ERROR,
)


@dataclass
class SessionContext:
    """State owned by the orchestrator for the current session."""

    collection: str = ""
    phases: PhaseMachine = field(default_factory=PhaseMachine)
    queue: ItemQueue = field(default_factory=ItemQueue)
    started_at: datetime | None = None

    def reset(self, collection: str) -> None:
        self.phases.reset()
        self.queue.clear()
        self.collection = collection
        self.started_at = datetime.now(tz=timezone.utc)

    @property
    def stats(self) -> SessionStats:
        return self.phases.stats


class SessionOrchestrator:
    """
    Runs voice study sessions against a realtime transport.

    Usage:
        orchestrator = SessionOrchestrator(transport, AnkiItemSource(), presence)
        await orchestrator.start_session("Spanish::Verbs")
        await orchestrator.wait_until_ended()
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        item_source: ItemSource,
        presence: BackgroundPresence | None = None,
        settings: Settings | None = None,
        context: SessionContext | None = None,
    ) -> None:
        self.transport = transport
        self.item_source = item_source
        self.presence = presence
        self.settings = settings or get_settings()
        self.context = context or SessionContext()

        self.arbiter = InterruptionArbiter(
            phases=self.context.phases,
            set_microphone_muted=self.transport.set_microphone_muted,
            terminate=self.end_session,
        )
        self.dispatcher: ToolCallDispatcher | None = None

        self._registered: list[tuple[str, Callable[[dict[str, Any]], Any]]] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closing_task: asyncio.Task[None] | None = None
        self._closing_spoken = asyncio.Event()
        self._closing_audio_seen = False
        self._phase_before_reconnect: SessionPhase | None = None
        self._torn_down = True
        self._ended = asyncio.Event()

        self.transport.add_state_listener(self._on_connection_state)
        if self.presence is not None:
            self.presence.add_listener(NOTIFICATION_ACTION, self.arbiter.handle_notification_action)
            self.presence.add_listener(AUDIO_FOCUS_CHANGE, self.arbiter.handle_audio_focus_change)

    @property
    def phase(self) -> SessionPhase:
        return self.context.phases.phase

    @property
    def stats(self) -> SessionStats:
        return self.context.stats

    # ========================================
    # Startup
    # ========================================

    async def start_session(self, collection: str) -> None:
        """
        Start a session for a deck.

        Raises:
            TransportConnectionError: The realtime connection could not be made,
                or the control channel dropped the session setup
            EmptyQueueError: No items are due in the deck
        """
        if not collection:
            raise ValueError("No deck selected")

        ctx = self.context
        phases = ctx.phases
        ctx.reset(collection)
        self._torn_down = False
        self._ended.clear()
        self._closing_spoken.clear()
        self._closing_audio_seen = False

        try:
            if not self.transport.is_connected:
                phases.transition_to(SessionPhase.CONNECTING, "start_session")
                await self.transport.connect()

            phases.transition_to(SessionPhase.LOADING_ITEMS, "start_session")
            items = await self.item_source.list_due_items(collection)
            if not items:
                raise EmptyQueueError(collection)
            ctx.queue.load(items)
            logger.info("Loaded {} due items from '{}'", len(items), collection)

            phases.transition_to(SessionPhase.READY, "items_loaded")
            if not self._configure_agent(collection, len(items)):
                raise TransportConnectionError("Control channel closed before the agent was configured")

            self.dispatcher = ToolCallDispatcher(
                queue=ctx.queue,
                phases=phases,
                send_result=self.transport.send_tool_result,
                complete_session=self.complete_session,
                terminate_session=self.end_session,
                on_progress=self._report_progress,
                grace_seconds=self.settings.end_session_grace_seconds,
            )
            self._register_event_handlers()

            first = ctx.queue.current()
            if not self.transport.send_text_message(prompts.get_initial_message(first)):
                raise TransportConnectionError("Control channel closed before the first item was sent")
            phases.transition_to(SessionPhase.ASKING_QUESTION, "first_item_sent")

        except Exception as exc:
            logger.error("Session start failed: {}", exc)
            phases.transition_to(SessionPhase.ERROR, "start_failed")
            raise

        await self._start_presence(collection, len(items))

    def _configure_agent(self, collection: str, item_count: int) -> bool:
        return self.transport.update_session(
            instructions=prompts.get_system_prompt(collection, item_count),
            tools=tools.ALL_TOOLS,
            modalities=protocol.DEFAULT_MODALITIES,
        )

    # ========================================
    # Event wiring
    # ========================================

    def _register_event_handlers(self) -> None:
        self._unregister_event_handlers()
        mapping: list[tuple[str, Callable[[dict[str, Any]], Any]]] = [
            (ServerEvent.OUTPUT_ITEM_ADDED, self._on_output_item_added),
            (ServerEvent.FUNCTION_CALL_ARGUMENTS_DONE, self._on_function_call_arguments),
            (ServerEvent.AUDIO_DELTA, self._on_audio_delta),
            (ServerEvent.RESPONSE_DONE, self._on_response_done),
            (ServerEvent.SPEECH_STARTED, self._on_speech_started),
            (ServerEvent.TRANSCRIPTION_COMPLETED, self._on_transcription_completed),
            (ServerEvent.AUDIO_TRANSCRIPT_DONE, self._on_agent_transcript),
            (ServerEvent.ERROR, self._on_server_error),
        ]
        for event_type, handler in mapping:
            self.transport.on(event_type, handler)
        self._registered = mapping

    def _unregister_event_handlers(self) -> None:
        for event_type, handler in self._registered:
            self.transport.off(event_type, handler)
        self._registered = []

    def _on_output_item_added(self, event: dict[str, Any]) -> None:
        opened = protocol.opened_function_call(event)
        if opened is not None and self.dispatcher is not None:
            self.dispatcher.register_call(*opened)

    async def _on_function_call_arguments(self, event: dict[str, Any]) -> None:
        if self.dispatcher is None:
            return
        await self.dispatcher.handle_arguments(
            call_id=event.get("call_id", ""),
            raw_arguments=event.get("arguments"),
            fallback_name=event.get("name"),
        )

    def _on_audio_delta(self, _event: dict[str, Any]) -> None:
        phases = self.context.phases
        if phases.phase is SessionPhase.EVALUATING:
            phases.transition_to(SessionPhase.GIVING_FEEDBACK, "agent_speaking")
        elif phases.phase is SessionPhase.SESSION_COMPLETE:
            self._closing_audio_seen = True

    def _on_response_done(self, _event: dict[str, Any]) -> None:
        phases = self.context.phases
        if phases.is_in(SessionPhase.GIVING_FEEDBACK, SessionPhase.ASKING_QUESTION):
            phases.transition_to(SessionPhase.AWAITING_ANSWER, "agent_done")
        elif phases.phase is SessionPhase.SESSION_COMPLETE and self._closing_audio_seen:
            self._closing_spoken.set()

    def _on_speech_started(self, _event: dict[str, Any]) -> None:
        if self.context.phases.phase is SessionPhase.AWAITING_ANSWER:
            logger.debug("User started speaking")

    def _on_transcription_completed(self, event: dict[str, Any]) -> None:
        logger.info("[User]: {}", event.get("transcript", ""))
        phases = self.context.phases
        if phases.phase is SessionPhase.AWAITING_ANSWER:
            phases.transition_to(SessionPhase.EVALUATING, "user_answered")

    def _on_agent_transcript(self, event: dict[str, Any]) -> None:
        logger.info("[Tutor]: {}", event.get("transcript", ""))

    def _on_server_error(self, event: dict[str, Any]) -> None:
        logger.error("Realtime agent error: {}", event.get("error"))

    def _on_connection_state(self, state: ConnectionState) -> None:
        if self._torn_down:
            return
        phases = self.context.phases

        if state is ConnectionState.RECONNECTING and not phases.is_in(*INACTIVE_PHASES):
            self._phase_before_reconnect = phases.phase
            phases.transition_to(SessionPhase.RECONNECTING, "connection_interrupted")
        elif state is ConnectionState.CONNECTED and phases.phase is SessionPhase.RECONNECTING:
            restored = self._phase_before_reconnect or SessionPhase.AWAITING_ANSWER
            self._phase_before_reconnect = None
            phases.transition_to(restored, "connection_restored")
        elif state is ConnectionState.FAILED and not phases.is_in(*INACTIVE_PHASES):
            phases.transition_to(SessionPhase.ERROR, "connection_failed")
            self._spawn(self.end_session("connection_failed"))

    # ========================================
    # User controls
    # ========================================

    def pause(self) -> None:
        self.transport.set_microphone_muted(True)
        self.arbiter.pause("user_paused")

    def resume(self) -> None:
        self.transport.set_microphone_muted(False)
        self.arbiter.resume("user_resumed")

    # ========================================
    # Completion / Teardown
    # ========================================

    async def complete_session(self, trigger: str) -> None:
        """
        Finish the study part of the session.

        After the last item the agent still speaks its summary, so teardown
        waits for that closing response (bounded). Other triggers tear
        down straight away.
        """
        phases = self.context.phases
        if phases.phase is not SessionPhase.SESSION_COMPLETE:
            phases.transition_to(SessionPhase.SESSION_COMPLETE, trigger)
        logger.info("Session complete ({}): {}", trigger, phases.stats.summary())

        await self._stop_presence()

        if trigger == TRIGGER_NO_MORE_ITEMS:
            if self._closing_task is None or self._closing_task.done():
                self._closing_task = self._spawn(self._teardown_after_closing())
        else:
            await self.end_session(trigger)

    async def _teardown_after_closing(self) -> None:
        timeout = self.settings.closing_timeout_seconds
        try:
            await asyncio.wait_for(self._closing_spoken.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("No closing response within {:g}s, ending session", timeout)
        await self.end_session("closing_remarks_done")

    async def end_session(self, trigger: str = "session_ended") -> None:
        """Tear the session down. Safe to call more than once."""
        if self._torn_down:
            return
        self._torn_down = True

        if self.dispatcher is not None:
            self.dispatcher.cancel_pending()
        closing, self._closing_task = self._closing_task, None
        if closing is not None and closing is not asyncio.current_task() and not closing.done():
            closing.cancel()

        self._unregister_event_handlers()
        await self._stop_presence()
        await self.transport.disconnect()
        self.context.queue.clear()
        self.context.phases.transition_to(SessionPhase.IDLE, trigger)
        logger.info("Session ended ({})", trigger)

        await self._request_sync()
        self._ended.set()

    async def wait_until_ended(self) -> None:
        await self._ended.wait()

    # ========================================
    # Best-effort collaborators
    # ========================================

    async def _start_presence(self, collection: str, item_count: int) -> None:
        if self.presence is None:
            return
        try:
            await self.presence.start(
                self.settings.presence_title,
                prompts.get_presence_body(collection, item_count),
            )
        except Exception as exc:
            logger.warning("Failed to start background presence: {}", exc)

    async def _stop_presence(self) -> None:
        if self.presence is None:
            return
        try:
            await self.presence.stop()
        except Exception as exc:
            logger.warning("Failed to stop background presence: {}", exc)

    def _report_progress(self, position: int, total: int) -> None:
        if self.presence is None:
            return
        self._spawn(self._update_presence(prompts.get_progress_body(position, total)))

    async def _update_presence(self, body: str) -> None:
        try:
            if self.presence is not None and self.presence.is_running():
                await self.presence.update_content(self.settings.presence_title, body)
        except Exception as exc:
            logger.warning("Failed to update background presence: {}", exc)

    async def _request_sync(self) -> None:
        try:
            await self.item_source.trigger_sync()
        except SyncError as exc:
            logger.warning("{}", exc)
        except Exception as exc:
            logger.warning("Failed to trigger sync: {}", exc)

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
