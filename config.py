"""
Configuration settings for voice-tutor.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Realtime Agent (OpenAI Realtime over WebRTC)
    # ========================================
    openai_api_key: SecretStr | None = Field(
        default=None,
        description="OpenAI API key used for the realtime SDP exchange",
    )
    realtime_url: str = Field(
        default="https://api.openai.com/v1/realtime",
        description="Realtime endpoint that accepts the SDP offer",
    )
    realtime_model: str = Field(
        default="gpt-4o-realtime-preview-2024-12-17",
        description="Realtime model name passed as ?model=",
    )
    transcription_model: str = Field(
        default="whisper-1",
        description="Model used to transcribe the learner's speech",
    )
    stun_server: str = Field(
        default="stun:stun.l.google.com:19302",
        description="STUN server for ICE candidate gathering",
    )
    data_channel_label: str = Field(
        default="oai-events",
        description="Label of the ordered control-message channel",
    )
    ice_connect_timeout_seconds: float = Field(
        default=30.0,
        description="Max wait for the ICE connection after the answer is applied",
    )
    negotiation_timeout_seconds: float = Field(
        default=20.0,
        description="HTTP timeout for the offer/answer exchange",
    )
    end_session_grace_seconds: float = Field(
        default=5.0,
        description="Delay between acknowledging end_session and teardown",
    )
    closing_timeout_seconds: float = Field(
        default=30.0,
        description="Max wait for the closing summary after the last card",
    )

    # ========================================
    # Local audio
    # ========================================
    audio_input_device: str = Field(
        default="default",
        description="Capture device handed to the media player",
    )
    audio_input_format: str | None = Field(
        default="pulse",
        description="FFmpeg input format for capture (pulse, alsa, avfoundation...)",
    )
    audio_output_device: str | None = Field(
        default="default",
        description="Playback device for the agent's voice (None discards audio)",
    )
    audio_output_format: str | None = Field(
        default="pulse",
        description="FFmpeg output format for playback",
    )

    # ========================================
    # Anki Integration
    # ========================================
    anki_connect_url: str = Field(
        default="http://127.0.0.1:8765",
        description="AnkiConnect plugin URL",
    )
    anki_deck_name: str = Field(
        default="Default",
        description="Deck studied when none is given on the command line",
    )
    anki_due_card_limit: int = Field(
        default=100,
        description="Max due cards loaded into one session",
    )

    # ========================================
    # Background presence
    # ========================================
    presence_title: str = Field(
        default="Voice Study Session",
        description="Title shown by the background audio presence",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_file: str | None = Field(
        default="logs/voice_tutor.log",
        description="Log file path (None for stderr only)",
    )

    def has_ai_configured(self) -> bool:
        """Check if a realtime API key is available."""
        return bool(self.openai_api_key and self.openai_api_key.get_secret_value())

    def has_anki_configured(self) -> bool:
        """Check if AnkiConnect is configured."""
        return bool(self.anki_connect_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
