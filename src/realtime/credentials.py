"""Credential sources for the realtime API key."""

from __future__ import annotations

from typing import Protocol

from config import Settings, get_settings


class CredentialStore(Protocol):
    async def get_api_key(self) -> str | None: ...


class SettingsCredentialStore:
    """Reads the API key from settings (environment or .env)."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    async def get_api_key(self) -> str | None:
        secret = self._settings.openai_api_key
        if secret is None:
            return None
        return secret.get_secret_value() or None


class StaticCredentialStore:
    """Fixed key, e.g. passed on the command line."""

    def __init__(self, api_key: str | None) -> None:
        self._api_key = api_key

    async def get_api_key(self) -> str | None:
        return self._api_key or None
