"""
Local audio plumbing for the realtime transport.

- MutableAudioTrack: relays microphone frames, emitting silence while muted
- open_microphone / create_audio_sink: FFmpeg-backed capture and playback
"""

from __future__ import annotations

from typing import Any

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder
from av import AudioFrame
from loguru import logger

from config import Settings


class MutableAudioTrack(MediaStreamTrack):
    """
    Audio track that can be muted without renegotiating the session.

    While disabled, frames keep flowing with the same timing but carry
    silence, so the remote side sees a live but quiet microphone.
    """

    kind = "audio"

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self._source = source
        self.enabled = True

    @property
    def source(self) -> MediaStreamTrack:
        return self._source

    async def recv(self) -> AudioFrame:
        frame = await self._source.recv()
        if self.enabled:
            return frame
        return self._silence_like(frame)

    def stop(self) -> None:
        super().stop()
        self._source.stop()

    @staticmethod
    def _silence_like(frame: AudioFrame) -> AudioFrame:
        silent = AudioFrame(
            format=frame.format.name,
            layout=frame.layout.name,
            samples=frame.samples,
        )
        for plane in silent.planes:
            plane.update(bytes(plane.buffer_size))
        silent.pts = frame.pts
        silent.sample_rate = frame.sample_rate
        silent.time_base = frame.time_base
        return silent


def open_microphone(settings: Settings) -> MediaPlayer:
    """Start capturing from the configured input device."""
    logger.debug(
        "Opening microphone: device={}, format={}",
        settings.audio_input_device,
        settings.audio_input_format,
    )
    return MediaPlayer(
        settings.audio_input_device,
        format=settings.audio_input_format,
        options={"channels": "1"},
    )


def create_audio_sink(settings: Settings) -> Any:
    """
    Create the sink for the agent's voice.

    Returns a MediaRecorder bound to the playback device, or a
    MediaBlackhole when no output device is configured.
    """
    if not settings.audio_output_device:
        return MediaBlackhole()
    return MediaRecorder(settings.audio_output_device, format=settings.audio_output_format)
