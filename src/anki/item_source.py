"""
Item source used by the session orchestrator.

AnkiClient speaks blocking HTTP, so the adapter runs it in a worker thread
to keep the event loop free while cards load.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import requests

from src.anki.anki_client import AnkiClient
from src.session.exceptions import SyncError
from src.session.models import StudyItem


class ItemSource(Protocol):
    async def list_due_items(self, collection: str) -> list[StudyItem]: ...

    async def trigger_sync(self) -> None: ...


class AnkiItemSource:
    """ItemSource backed by AnkiConnect."""

    def __init__(self, client: AnkiClient | None = None) -> None:
        self.client = client or AnkiClient()

    async def list_due_items(self, collection: str) -> list[StudyItem]:
        return await asyncio.to_thread(self.client.get_due_items, collection)

    async def list_collections(self) -> list[str]:
        return await asyncio.to_thread(self.client.get_deck_names)

    async def trigger_sync(self) -> None:
        try:
            await asyncio.to_thread(self.client.trigger_sync)
        except (RuntimeError, requests.RequestException) as exc:
            raise SyncError(f"Anki sync failed: {exc}") from exc
