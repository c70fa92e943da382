"""
Realtime transport to the tutor agent.

Holds one WebRTC session with the OpenAI Realtime endpoint:
- one microphone track up, one agent voice track down
- one ordered data channel carrying JSON control events

Connection flow:
1. Resolve the API key
2. Open the microphone and attach it as a mutable track
3. Create the data channel and the SDP offer
4. POST the offer to the realtime endpoint, apply the SDP answer
5. Wait (bounded) for ICE to report connected and the data channel to open

Any failure releases everything acquired so far before
TransportConnectionError propagates. Inbound events are queued and
handed to subscribers one at a time by a single dispatch task.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from typing import Any, Awaitable, Callable

import httpx
from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from loguru import logger

from config import Settings, get_settings
from src.realtime import protocol
from src.realtime.audio import MutableAudioTrack, create_audio_sink, open_microphone
from src.realtime.credentials import CredentialStore, SettingsCredentialStore
from src.session.exceptions import TransportConnectionError
from src.session.models import ConnectionState

EventHandler = Callable[[dict[str, Any]], Awaitable[None] | None]
StateListener = Callable[[ConnectionState], None]

ICE_READY_STATES = {"connected", "completed"}
ICE_FAILED_STATES = {"failed", "closed", "disconnected"}


class RealtimeTransport:
    """WebRTC connection to the realtime agent with typed event subscription."""

    def __init__(
        self,
        settings: Settings | None = None,
        credentials: CredentialStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        peer_factory: Callable[..., Any] | None = None,
        microphone_factory: Callable[[], Any] | None = None,
        sink_factory: Callable[[], Any] | None = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            settings: Settings (default from config)
            credentials: API key source (default reads settings)
            http_client: Client used for the SDP exchange (created per connect if None)
            peer_factory: Builds the peer connection from an RTCConfiguration
            microphone_factory: Opens local capture; result exposes an ``audio`` track
            sink_factory: Builds the playback sink for the agent's voice
        """
        self.settings = settings or get_settings()
        self._credentials = credentials or SettingsCredentialStore(self.settings)
        self._http_client = http_client
        self._peer_factory = peer_factory or (
            lambda configuration: RTCPeerConnection(configuration=configuration)
        )
        self._microphone_factory = microphone_factory or (lambda: open_microphone(self.settings))
        self._sink_factory = sink_factory or (lambda: create_audio_sink(self.settings))

        self._state = ConnectionState.DISCONNECTED
        self._pc: Any | None = None
        self._channel: Any | None = None
        self._microphone: Any | None = None
        self._local_track: MutableAudioTrack | None = None
        self._sink: Any | None = None
        self._remote_track: Any | None = None
        self._ice_waiter: asyncio.Future[None] | None = None
        self._channel_waiter: asyncio.Future[None] | None = None

        self._inbox: asyncio.Queue[dict[str, Any]] | None = None
        self._dispatch_task: asyncio.Task[None] | None = None
        self._handlers: dict[str, list[EventHandler]] = {}
        self._state_listeners: list[StateListener] = []

    # ========================================
    # State
    # ========================================

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def microphone_muted(self) -> bool:
        return self._local_track is not None and not self._local_track.enabled

    @property
    def holds_resources(self) -> bool:
        """True while any peer, channel or capture resource is still held."""
        return any(
            resource is not None
            for resource in (self._pc, self._channel, self._microphone, self._local_track, self._sink)
        )

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._state_listeners:
            self._state_listeners.remove(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug("Transport state {} -> {}", self._state.value, state.value)
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception as exc:
                logger.warning("Connection state listener failed: {}", exc)

    # ========================================
    # Connect / Disconnect
    # ========================================

    async def connect(self) -> None:
        """
        Establish the realtime session.

        Raises:
            TransportConnectionError: Missing key, rejected negotiation,
                or ICE and control channel not ready
                within the timeout
        """
        if self._state is ConnectionState.CONNECTED:
            logger.debug("Transport already connected")
            return

        if self.holds_resources:
            await self._release()
        self._set_state(ConnectionState.CONNECTING)

        try:
            api_key = await self._credentials.get_api_key()
            if not api_key:
                raise TransportConnectionError(
                    "No API key found. Set OPENAI_API_KEY or add it to .env."
                )

            self._microphone = self._microphone_factory()
            source = getattr(self._microphone, "audio", None)
            if source is None:
                raise TransportConnectionError("No audio capture track available")
            self._local_track = MutableAudioTrack(source)

            self._sink = self._sink_factory()

            pc = self._peer_factory(
                RTCConfiguration(iceServers=[RTCIceServer(urls=self.settings.stun_server)])
            )
            self._pc = pc
            pc.addTrack(self._local_track)
            pc.on("track", self._on_remote_track)
            pc.on("iceconnectionstatechange", self._on_ice_state_change)

            self._channel_waiter = asyncio.get_running_loop().create_future()
            channel = pc.createDataChannel(self.settings.data_channel_label, ordered=True)
            self._channel = channel
            channel.on("open", self._on_channel_open)
            channel.on("close", self._on_channel_close)
            channel.on("message", self._on_channel_message)
            self._start_dispatch_loop()

            offer = await pc.createOffer()
            await pc.setLocalDescription(offer)

            answer_sdp = await self._exchange_sdp(api_key, pc.localDescription.sdp)
            if self._pc is not pc:
                raise TransportConnectionError("Disconnected while connecting")
            await pc.setRemoteDescription(RTCSessionDescription(sdp=answer_sdp, type="answer"))

            await self._wait_until_ready()

        except asyncio.CancelledError:
            await self._release()
            self._set_state(ConnectionState.DISCONNECTED)
            raise

        except Exception as exc:
            logger.error("Realtime connection failed: {}", exc)
            await self._release()
            if self._state is not ConnectionState.DISCONNECTED:
                self._set_state(ConnectionState.FAILED)
            if isinstance(exc, TransportConnectionError):
                raise
            raise TransportConnectionError(f"Realtime connection failed: {exc}") from exc

        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected to realtime agent ({})", self.settings.realtime_model)

    async def _exchange_sdp(self, api_key: str, offer_sdp: str) -> str:
        """POST the SDP offer and return the SDP answer."""
        client = self._http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.negotiation_timeout_seconds)
        )
        try:
            response = await client.post(
                self.settings.realtime_url,
                params={"model": self.settings.realtime_model},
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/sdp",
                },
                content=offer_sdp,
            )
        finally:
            if client is not self._http_client:
                await client.aclose()

        if response.is_error:
            raise TransportConnectionError(
                f"Realtime API error: {response.status_code} - {response.text}"
            )
        return response.text

    async def _wait_until_ready(self) -> None:
        """Wait (bounded) for ICE to connect and then for the control channel to open."""
        timeout = self.settings.ice_connect_timeout_seconds
        loop = asyncio.get_running_loop()
        ice_waiter = self._ice_waiter = loop.create_future()
        channel_waiter = self._channel_waiter or loop.create_future()
        self._channel_waiter = channel_waiter
        self._on_ice_state_change()
        if self._channel is not None and self._channel.readyState == "open":
            self._on_channel_open()

        try:
            await asyncio.wait_for(self._both_ready(ice_waiter, channel_waiter), timeout=timeout)
        except asyncio.TimeoutError as exc:
            if ice_waiter.done() and not ice_waiter.cancelled():
                raise TransportConnectionError(
                    f"Control channel did not open within {timeout:g}s"
                ) from exc
            raise TransportConnectionError(
                f"ICE connection timeout after {timeout:g}s"
            ) from exc
        finally:
            # Mark failures as retrieved
            for waiter in (ice_waiter, channel_waiter):
                if waiter.done() and not waiter.cancelled():
                    waiter.exception()
            self._ice_waiter = None
            self._channel_waiter = None

    @staticmethod
    async def _both_ready(ice_waiter: asyncio.Future[None], channel_waiter: asyncio.Future[None]) -> None:
        await ice_waiter
        await channel_waiter

    def _fail_waiters(self, exc: Exception) -> None:
        for waiter in (self._ice_waiter, self._channel_waiter):
            if waiter is not None and not waiter.done():
                waiter.set_exception(exc)

    async def disconnect(self) -> None:
        """Release every connection resource. Safe to call repeatedly."""
        if not self.holds_resources and self._state is ConnectionState.DISCONNECTED:
            return

        self._fail_waiters(TransportConnectionError("Disconnected while connecting"))

        self._set_state(ConnectionState.DISCONNECTED)
        await self._release()
        self._handlers.clear()
        logger.info("Disconnected from realtime agent")

    async def _release(self) -> None:
        """Close channel, stop capture, close peer and sink."""
        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                channel.close()
            except Exception as exc:
                logger.warning("Failed to close control channel: {}", exc)

        track, self._local_track = self._local_track, None
        microphone, self._microphone = self._microphone, None
        if track is not None:
            track.stop()
        elif microphone is not None and getattr(microphone, "audio", None) is not None:
            microphone.audio.stop()

        pc, self._pc = self._pc, None
        if pc is not None:
            try:
                await pc.close()
            except Exception as exc:
                logger.warning("Failed to close peer connection: {}", exc)

        sink, self._sink = self._sink, None
        if sink is not None:
            try:
                await sink.stop()
            except Exception as exc:
                logger.warning("Failed to stop audio sink: {}", exc)

        self._remote_track = None
        self._channel_waiter = None
        self._stop_dispatch_loop()

    # ========================================
    # Peer callbacks
    # ========================================

    async def _on_remote_track(self, track: Any) -> None:
        if track.kind != "audio" or self._sink is None:
            return
        self._remote_track = track
        self._sink.addTrack(track)
        await self._sink.start()
        logger.info("Remote audio track received")

    def _on_ice_state_change(self) -> None:
        if self._pc is None:
            return
        ice_state = self._pc.iceConnectionState
        waiter = self._ice_waiter

        if waiter is not None and not waiter.done():
            if ice_state in ICE_READY_STATES:
                waiter.set_result(None)
            elif ice_state in ICE_FAILED_STATES:
                waiter.set_exception(
                    TransportConnectionError(f"ICE connection failed: {ice_state}")
                )
            return

        if ice_state == "disconnected" and self._state is ConnectionState.CONNECTED:
            logger.warning("ICE connection interrupted")
            self._set_state(ConnectionState.RECONNECTING)
        elif ice_state in ICE_READY_STATES and self._state is ConnectionState.RECONNECTING:
            logger.info("ICE connection restored")
            self._set_state(ConnectionState.CONNECTED)
        elif ice_state == "failed" and self._state in (
            ConnectionState.CONNECTED,
            ConnectionState.RECONNECTING,
        ):
            logger.error("ICE connection failed")
            self._set_state(ConnectionState.FAILED)

    def _on_channel_open(self) -> None:
        waiter = self._channel_waiter
        if waiter is not None and not waiter.done():
            logger.debug("Control channel opened")
            waiter.set_result(None)

    def _on_channel_close(self) -> None:
        logger.debug("Control channel closed")
        waiter = self._channel_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(TransportConnectionError("Control channel closed"))

    # ========================================
    # Outbound
    # ========================================

    def send_event(self, message: dict[str, Any]) -> bool:
        """
        Send a control message, or drop it if the channel is not open.

        Returns:
            True if the message was handed to the channel, False if dropped
        """
        channel = self._channel
        if channel is None or channel.readyState != "open":
            logger.warning("Control channel not open, dropping {}", message.get("type"))
            return False

        try:
            channel.send(json.dumps(message))
        except Exception as exc:
            logger.warning("Failed to send {}: {}", message.get("type"), exc)
            return False
        return True

    def update_session(
        self,
        instructions: str,
        tools: list[dict[str, Any]],
        modalities: list[str] | tuple[str, ...] = protocol.DEFAULT_MODALITIES,
    ) -> bool:
        return self.send_event(
            protocol.session_update(
                instructions=instructions,
                tools=tools,
                modalities=modalities,
                transcription_model=self.settings.transcription_model,
            )
        )

    def send_text_message(self, text: str) -> bool:
        """Add a user text message and ask the agent to respond."""
        sent = self.send_event(protocol.user_text_message(text))
        return self.send_event(protocol.response_create()) and sent

    def send_tool_result(self, call_id: str, result: dict[str, Any]) -> bool:
        """
        Return a tool result and ask the agent to continue.

        Returns:
            True only if both the output item and response.create were sent
        """
        sent = self.send_event(protocol.function_call_output(call_id, result))
        if not sent:
            return False
        return self.send_event(protocol.response_create())

    def set_microphone_muted(self, muted: bool) -> None:
        track = self._local_track
        if track is None:
            return
        track.enabled = not muted
        logger.debug("Microphone {}", "muted" if muted else "unmuted")

    # ========================================
    # Inbound
    # ========================================

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to an inbound event type ('*' receives everything)."""
        self._handlers.setdefault(event_type, []).append(handler)

    def off(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def _on_channel_message(self, data: str | bytes) -> None:
        try:
            message = json.loads(data)
        except (TypeError, ValueError) as exc:
            logger.error("Failed to parse control message: {}", exc)
            return
        if not isinstance(message, dict):
            logger.warning("Ignoring non-object control message")
            return
        if self._inbox is not None:
            self._inbox.put_nowait(message)

    async def dispatch(self, message: dict[str, Any]) -> None:
        """Deliver one inbound message to its subscribers, then wildcard subscribers."""
        event_type = message.get("type", "")
        handlers = list(self._handlers.get(event_type, []))
        if event_type != protocol.ALL_EVENTS:
            handlers += self._handlers.get(protocol.ALL_EVENTS, [])

        for handler in handlers:
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # pylint: disable=broad-except
                logger.exception("Handler for {} failed: {}", event_type, exc)

    def _start_dispatch_loop(self) -> None:
        self._inbox = asyncio.Queue()
        self._dispatch_task = asyncio.get_running_loop().create_task(
            self._dispatch_loop(self._inbox), name="realtime-dispatch"
        )

    def _stop_dispatch_loop(self) -> None:
        task, self._dispatch_task = self._dispatch_task, None
        self._inbox = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _dispatch_loop(self, inbox: asyncio.Queue[dict[str, Any]]) -> None:
        while True:
            message = await inbox.get()
            await self.dispatch(message)
            if self._inbox is not inbox:
                return
