"""
Unit tests for the realtime transport.

The peer connection, microphone and sink are replaced with fakes and the
SDP exchange goes through httpx.MockTransport, so no media stack or
network is touched.
"""

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest
from aiortc import RTCSessionDescription
from unittest.mock import AsyncMock, Mock

from config import Settings
from src.realtime.credentials import StaticCredentialStore
from src.realtime.protocol import ALL_EVENTS, ClientEvent, ServerEvent
from src.realtime.transport import RealtimeTransport
from src.session.exceptions import TransportConnectionError
from src.session.models import ConnectionState


class FakeChannel:
    def __init__(self, label):
        self.label = label
        self.readyState = "connecting"
        self.sent = []
        self.handlers = {}
        self.closed = False

    def on(self, event, handler):
        self.handlers[event] = handler

    def open(self):
        self.readyState = "open"
        self.handlers["open"]()

    def send(self, data):
        self.sent.append(json.loads(data))

    def close(self):
        self.closed = True
        self.readyState = "closed"


class FakePeerConnection:
    def __init__(self, ice_state="connected", auto_open=True):
        self.iceConnectionState = ice_state
        self.auto_open = auto_open
        self.configuration = None
        self.tracks = []
        self.handlers = {}
        self.channel = None
        self.localDescription = None
        self.remoteDescription = None
        self.closed = False

    def addTrack(self, track):
        self.tracks.append(track)

    def on(self, event, handler):
        self.handlers[event] = handler

    def createDataChannel(self, label, ordered=True):
        self.channel = FakeChannel(label)
        return self.channel

    async def createOffer(self):
        return RTCSessionDescription(sdp="v=0 offer", type="offer")

    async def setLocalDescription(self, description):
        self.localDescription = description

    async def setRemoteDescription(self, description):
        self.remoteDescription = description
        if self.auto_open:
            asyncio.get_running_loop().call_soon(self.channel.open)

    async def close(self):
        self.closed = True

    def change_ice_state(self, state):
        self.iceConnectionState = state
        self.handlers["iceconnectionstatechange"]()


class FakeSourceTrack:
    kind = "audio"

    def __init__(self):
        self.stopped = False

    def stop(self):
        self.stopped = True


@pytest.fixture
def settings():
    return Settings(_env_file=None, ice_connect_timeout_seconds=0.05)


@pytest.fixture
def peer():
    return FakePeerConnection()


@pytest.fixture
def microphone():
    return SimpleNamespace(audio=FakeSourceTrack())


@pytest.fixture
def sink():
    return SimpleNamespace(addTrack=Mock(), start=AsyncMock(), stop=AsyncMock())


@pytest.fixture
def requests_seen():
    return []


def sdp_client(requests_seen, status=201, body="v=0 answer"):
    def handler(request):
        requests_seen.append(request)
        return httpx.Response(status, text=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def build_transport(settings, peer, microphone, sink, http_client, api_key="sk-test"):
    transport = RealtimeTransport(
        settings=settings,
        credentials=StaticCredentialStore(api_key),
        http_client=http_client,
        peer_factory=lambda configuration: peer,
        microphone_factory=lambda: microphone,
        sink_factory=lambda: sink,
    )
    return transport


@pytest.fixture
def transport(settings, peer, microphone, sink, requests_seen):
    return build_transport(settings, peer, microphone, sink, sdp_client(requests_seen))


class TestConnect:
    """Tests for connection establishment."""

    @pytest.mark.asyncio
    async def test_connect_negotiates_and_reports_connected(self, transport, peer, requests_seen, settings):
        states = []
        transport.add_state_listener(states.append)

        await transport.connect()

        assert transport.is_connected
        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
        assert peer.channel.label == "oai-events"
        assert peer.remoteDescription.sdp == "v=0 answer"
        assert peer.remoteDescription.type == "answer"
        assert len(peer.tracks) == 1

        request = requests_seen[0]
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert request.headers["Content-Type"] == "application/sdp"
        assert request.url.params["model"] == settings.realtime_model
        assert request.content == b"v=0 offer"

    @pytest.mark.asyncio
    async def test_connect_when_connected_is_noop(self, transport, requests_seen):
        await transport.connect()
        await transport.connect()

        assert len(requests_seen) == 1

    @pytest.mark.asyncio
    async def test_missing_api_key(self, settings, peer, microphone, sink, requests_seen):
        factory = Mock(return_value=microphone)
        transport = RealtimeTransport(
            settings=settings,
            credentials=StaticCredentialStore(None),
            http_client=sdp_client(requests_seen),
            peer_factory=lambda configuration: peer,
            microphone_factory=factory,
            sink_factory=lambda: sink,
        )

        with pytest.raises(TransportConnectionError, match="No API key"):
            await transport.connect()

        factory.assert_not_called()
        assert transport.connection_state is ConnectionState.FAILED
        assert requests_seen == []

    @pytest.mark.asyncio
    async def test_rejected_negotiation_releases_resources(self, settings, peer, microphone, sink, requests_seen):
        transport = build_transport(
            settings, peer, microphone, sink, sdp_client(requests_seen, status=401, body="invalid key")
        )

        with pytest.raises(TransportConnectionError, match="401"):
            await transport.connect()

        assert transport.connection_state is ConnectionState.FAILED
        assert not transport.holds_resources
        assert microphone.audio.stopped
        assert peer.closed
        assert peer.channel.closed
        sink.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ice_timeout_releases_resources(self, settings, microphone, sink, requests_seen):
        peer = FakePeerConnection(ice_state="checking")
        transport = build_transport(settings, peer, microphone, sink, sdp_client(requests_seen))

        with pytest.raises(TransportConnectionError, match="ICE connection timeout"):
            await transport.connect()

        assert transport.connection_state is ConnectionState.FAILED
        assert not transport.holds_resources
        assert microphone.audio.stopped
        assert peer.closed

    @pytest.mark.asyncio
    async def test_ice_failure_during_connect(self, settings, microphone, sink, requests_seen):
        peer = FakePeerConnection(ice_state="failed")
        transport = build_transport(settings, peer, microphone, sink, sdp_client(requests_seen))

        with pytest.raises(TransportConnectionError, match="ICE connection failed"):
            await transport.connect()

        assert not transport.holds_resources

    @pytest.mark.asyncio
    async def test_waits_for_control_channel_to_open(self, settings, microphone, sink, requests_seen):
        peer = FakePeerConnection(auto_open=False)
        transport = build_transport(
            settings.model_copy(update={"ice_connect_timeout_seconds": 5.0}),
            peer, microphone, sink, sdp_client(requests_seen),
        )

        task = asyncio.create_task(transport.connect())
        while peer.remoteDescription is None:
            await asyncio.sleep(0)
        await asyncio.sleep(0.01)

        assert not task.done()
        assert transport.connection_state is ConnectionState.CONNECTING
        assert transport.update_session(instructions="Be kind", tools=[]) is False

        peer.channel.open()
        await asyncio.wait_for(task, 1.0)

        assert transport.is_connected
        assert transport.update_session(instructions="Be kind", tools=[]) is True
        assert peer.channel.sent[0]["type"] == ClientEvent.SESSION_UPDATE

    @pytest.mark.asyncio
    async def test_channel_never_opening_releases_resources(self, settings, microphone, sink, requests_seen):
        peer = FakePeerConnection(auto_open=False)
        transport = build_transport(settings, peer, microphone, sink, sdp_client(requests_seen))

        with pytest.raises(TransportConnectionError, match="Control channel did not open"):
            await transport.connect()

        assert transport.connection_state is ConnectionState.FAILED
        assert not transport.holds_resources
        assert microphone.audio.stopped
        assert peer.closed

    @pytest.mark.asyncio
    async def test_channel_closing_before_open_fails_connect(self, settings, microphone, sink, requests_seen):
        peer = FakePeerConnection(auto_open=False)
        transport = build_transport(
            settings.model_copy(update={"ice_connect_timeout_seconds": 5.0}),
            peer, microphone, sink, sdp_client(requests_seen),
        )

        task = asyncio.create_task(transport.connect())
        while peer.remoteDescription is None:
            await asyncio.sleep(0)
        peer.channel.handlers["close"]()

        with pytest.raises(TransportConnectionError, match="Control channel closed"):
            await asyncio.wait_for(task, 1.0)

        assert transport.connection_state is ConnectionState.FAILED
        assert not transport.holds_resources


class TestDisconnect:
    """Tests for teardown."""

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, transport, peer, microphone, sink):
        states = []
        await transport.connect()
        transport.add_state_listener(states.append)

        await transport.disconnect()
        await transport.disconnect()

        assert states == [ConnectionState.DISCONNECTED]
        assert not transport.holds_resources
        assert peer.closed
        assert peer.channel.closed
        assert microphone.audio.stopped
        sink.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disconnect_while_connecting(self, settings, microphone, sink, requests_seen):
        peer = FakePeerConnection(ice_state="checking")
        transport = build_transport(
            settings.model_copy(update={"ice_connect_timeout_seconds": 5.0}),
            peer, microphone, sink, sdp_client(requests_seen),
        )

        task = asyncio.create_task(transport.connect())
        while peer.remoteDescription is None:
            await asyncio.sleep(0)

        await transport.disconnect()

        with pytest.raises(TransportConnectionError, match="Disconnected while connecting"):
            await asyncio.wait_for(task, 1.0)

        assert transport.connection_state is ConnectionState.DISCONNECTED
        assert not transport.holds_resources
        assert microphone.audio.stopped
        assert peer.closed
        sink.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disconnect_before_connect(self, transport):
        await transport.disconnect()
        assert transport.connection_state is ConnectionState.DISCONNECTED


class TestIceStateChanges:
    """Tests for connectivity changes after connect."""

    @pytest.mark.asyncio
    async def test_interruption_and_recovery(self, transport, peer):
        await transport.connect()

        peer.change_ice_state("disconnected")
        assert transport.connection_state is ConnectionState.RECONNECTING

        peer.change_ice_state("connected")
        assert transport.connection_state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_failure_after_connect(self, transport, peer):
        await transport.connect()

        peer.change_ice_state("disconnected")
        peer.change_ice_state("failed")

        assert transport.connection_state is ConnectionState.FAILED


class TestOutbound:
    """Tests for sending control messages."""

    def test_send_without_channel_is_dropped(self, transport):
        assert transport.send_event({"type": ClientEvent.RESPONSE_CREATE}) is False

    @pytest.mark.asyncio
    async def test_send_on_closed_channel_is_dropped(self, transport, peer):
        await transport.connect()
        peer.channel.readyState = "closing"

        assert transport.send_event({"type": ClientEvent.RESPONSE_CREATE}) is False
        assert peer.channel.sent == []

    @pytest.mark.asyncio
    async def test_tool_result_followed_by_response_create(self, transport, peer):
        await transport.connect()

        assert transport.send_tool_result("call_1", {"status": "success"}) is True

        output, follow_up = peer.channel.sent
        assert output["type"] == ClientEvent.CONVERSATION_ITEM_CREATE
        assert output["item"]["type"] == "function_call_output"
        assert output["item"]["call_id"] == "call_1"
        assert json.loads(output["item"]["output"]) == {"status": "success"}
        assert follow_up == {"type": ClientEvent.RESPONSE_CREATE}

    def test_tool_result_reports_drop(self, transport):
        assert transport.send_tool_result("call_1", {"status": "success"}) is False

    @pytest.mark.asyncio
    async def test_update_session_payload(self, transport, peer):
        await transport.connect()

        transport.update_session(instructions="Be kind", tools=[{"name": "end_session"}])

        session = peer.channel.sent[0]["session"]
        assert session["instructions"] == "Be kind"
        assert session["modalities"] == ["text", "audio"]
        assert session["input_audio_transcription"] == {"model": "whisper-1"}
        assert session["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_microphone_mute(self, transport, peer):
        transport.set_microphone_muted(True)
        assert not transport.microphone_muted

        await transport.connect()
        transport.set_microphone_muted(True)
        assert transport.microphone_muted
        assert peer.tracks[0].enabled is False

        transport.set_microphone_muted(False)
        assert not transport.microphone_muted


class TestInbound:
    """Tests for event subscription and dispatch."""

    @pytest.mark.asyncio
    async def test_type_handlers_run_before_wildcard(self, transport):
        calls = []

        async def typed(message):
            calls.append("typed")

        transport.on(ALL_EVENTS, lambda message: calls.append("wildcard"))
        transport.on(ServerEvent.RESPONSE_DONE, typed)

        await transport.dispatch({"type": ServerEvent.RESPONSE_DONE})

        assert calls == ["typed", "wildcard"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self, transport):
        second = Mock()
        transport.on(ServerEvent.ERROR, Mock(side_effect=RuntimeError("boom")))
        transport.on(ServerEvent.ERROR, second)

        await transport.dispatch({"type": ServerEvent.ERROR, "error": {}})

        second.assert_called_once()

    @pytest.mark.asyncio
    async def test_off_removes_handler(self, transport):
        handler = Mock()
        transport.on(ServerEvent.RESPONSE_DONE, handler)
        transport.off(ServerEvent.RESPONSE_DONE, handler)

        await transport.dispatch({"type": ServerEvent.RESPONSE_DONE})

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_channel_messages_are_dispatched_in_order(self, transport, peer):
        received = []
        transport.on(ALL_EVENTS, lambda message: received.append(message["type"]))
        await transport.connect()

        on_message = peer.channel.handlers["message"]
        on_message(json.dumps({"type": ServerEvent.SPEECH_STARTED}))
        on_message("not json")
        on_message(json.dumps({"type": ServerEvent.RESPONSE_DONE}))
        for _ in range(5):
            await asyncio.sleep(0)

        assert received == [ServerEvent.SPEECH_STARTED, ServerEvent.RESPONSE_DONE]
