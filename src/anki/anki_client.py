"""
AnkiConnect client for voice-tutor.

Provides HTTP wrapper around AnkiConnect API for:
- Listing decks available for study
- Fetching the cards due for review in a deck
- Triggering an AnkiWeb sync once a session ends

Based on AnkiConnect API v6.

Hardening:
- Connection check with graceful degradation
- Configurable timeout with retry logic
- Detection of Anki modal dialogs (blocks API)
"""

from __future__ import annotations

import time
from typing import Any

import requests
from loguru import logger
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config import get_settings
from src.anki.text_utils import clean_anki_text, extract_cloze_answer, is_cloze_card, mask_cloze
from src.session.models import StudyItem

# Default retry configuration for AnkiConnect
DEFAULT_RETRIES = 3
DEFAULT_BACKOFF_FACTOR = 0.5  # 0.5, 1.0, 2.0 seconds between retries
RETRY_STATUS_CODES = [500, 502, 503, 504]  # Retry on server errors

# Sub-decks of the built-in default deck are never offered for study
HIDDEN_DECK_PREFIX = "Default::"


class AnkiClient:
    """
    Best-effort wrapper around the AnkiConnect API.

    AnkiConnect must be installed in Anki and running on port 8765.
    See: https://foosoft.net/projects/anki-connect/
    """

    def __init__(
        self,
        base_url: str | None = None,
        due_limit: int | None = None,
        timeout: int = 30,
        retries: int = DEFAULT_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    ) -> None:
        """
        Initialize AnkiConnect client with retry logic.

        Args:
            base_url: AnkiConnect URL (default from config)
            due_limit: Max due cards per deck (default from config)
            timeout: Request timeout in seconds
            retries: Number of retry attempts for failed requests
            backoff_factor: Exponential backoff factor between retries
        """
        settings = get_settings()
        self.base_url = base_url or settings.anki_connect_url
        self.due_limit = due_limit or settings.anki_due_card_limit
        self.timeout = timeout
        self._last_connection_check = 0.0
        self._connection_available = False

        # Configure session with retry logic
        self.session = requests.Session()

        retry_strategy = Retry(
            total=retries,
            backoff_factor=backoff_factor,
            status_forcelist=RETRY_STATUS_CODES,
            allowed_methods=["POST"],  # AnkiConnect only uses POST
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        logger.debug(
            "Initialized AnkiConnect client: url={}, due_limit={}, timeout={}s, retries={}",
            self.base_url,
            self.due_limit,
            self.timeout,
            retries,
        )

    # ========================================
    # Core API Methods
    # ========================================

    def _invoke(self, action: str, params: dict[str, Any] | None = None) -> Any:
        """
        Invoke an AnkiConnect API action.

        Args:
            action: AnkiConnect action name (e.g., "version", "findCards")
            params: Action parameters

        Returns:
            Result from AnkiConnect API

        Raises:
            RuntimeError: If AnkiConnect returns an error
            requests.RequestException: If HTTP request fails
        """
        payload = {
            "action": action,
            "version": 6,
            "params": params or {},
        }

        # Truncate large params for logging to avoid verbose output
        log_params = params
        if params:
            log_params = {}
            for k, v in params.items():
                if isinstance(v, list) and len(v) > 10:
                    log_params[k] = f"[{len(v)} items]"
                else:
                    log_params[k] = v
        logger.debug("AnkiConnect request: action={}, params={}", action, log_params)

        response = self.session.post(
            self.base_url,
            json=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()

        data = response.json()

        if data.get("error"):
            raise RuntimeError(f"AnkiConnect error: {data['error']}")

        return data.get("result")

    def check_connection(self, cache_seconds: float = 30.0) -> bool:
        """
        Check if AnkiConnect is running and accessible.

        Uses cached result to avoid hammering Anki on repeated checks.
        Detects common failure modes:
        - Anki not running
        - AnkiConnect addon not installed
        - Modal dialog blocking API (e.g., "Check Database")

        Args:
            cache_seconds: Seconds to cache the connection status

        Returns:
            True if connection successful, False otherwise
        """
        now = time.monotonic()
        if (now - self._last_connection_check) < cache_seconds:
            return self._connection_available

        try:
            version = self._invoke("version")
            self._connection_available = True
            self._last_connection_check = now
            logger.debug("AnkiConnect version detected: {}", version)
            return True

        except requests.exceptions.ConnectionError:
            self._connection_available = False
            self._last_connection_check = now
            logger.warning(
                "Anki not running or AnkiConnect not installed. "
                "Start Anki and ensure AnkiConnect addon is enabled."
            )
            return False

        except requests.exceptions.Timeout:
            self._connection_available = False
            self._last_connection_check = now
            logger.warning(
                "AnkiConnect request timed out. "
                "Anki may have a modal dialog open (e.g., 'Check Database', 'Sync'). "
                "Close any dialogs and try again."
            )
            return False

        except (RuntimeError, requests.RequestException, ValueError) as exc:
            self._connection_available = False
            self._last_connection_check = now
            logger.warning("AnkiConnect error: {}", exc)
            return False

    def require_connection(self) -> None:
        """
        Raise an exception if Anki is not available.

        Use at the start of operations that require Anki.
        """
        if not self.check_connection():
            raise RuntimeError(
                "Anki is not available. Ensure Anki is running with "
                "AnkiConnect addon enabled and no modal dialogs are open."
            )

    # ========================================
    # Decks and Due Cards
    # ========================================

    def get_deck_names(self) -> list[str]:
        """Deck names offered for study, sorted, without Default:: sub-decks."""
        names = self._invoke("deckNames") or []
        return sorted(name for name in names if not name.startswith(HIDDEN_DECK_PREFIX))

    def get_due_items(self, deck_name: str) -> list[StudyItem]:
        """
        Fetch the cards due for review in a deck.

        Args:
            deck_name: Deck to query (sub-decks included)

        Returns:
            StudyItems in Anki's due order, at most ``due_limit`` of them
        """
        query = f'deck:"{deck_name}" is:due'
        card_ids = self._invoke("findCards", {"query": query}) or []

        if not card_ids:
            logger.info("No due cards for query '{}'", query)
            return []

        card_ids = card_ids[: self.due_limit]
        cards = self._invoke("cardsInfo", {"cards": card_ids}) or []

        items: list[StudyItem] = []
        for card in cards:
            item = self._map_card_to_item(card, deck_name)
            if item is not None:
                items.append(item)

        logger.debug("Loaded {} due cards from '{}'", len(items), deck_name)
        return items

    def trigger_sync(self) -> None:
        """Ask Anki to sync the collection with AnkiWeb."""
        self._invoke("sync")
        logger.info("Triggered Anki sync")

    # ========================================
    # Mapping Helpers
    # ========================================

    def _map_card_to_item(self, card: dict[str, Any], deck_name: str) -> StudyItem | None:
        """Map a cardsInfo entry to a StudyItem (first two fields = front/back)."""
        card_id = card.get("cardId")
        if card_id is None:
            return None

        fields = sorted(
            (card.get("fields") or {}).values(),
            key=lambda f: f.get("order", 0) if isinstance(f, dict) else 0,
        )
        raw_front = self._field_value(fields[0]) if fields else ""
        raw_back = self._field_value(fields[1]) if len(fields) > 1 else ""

        if is_cloze_card(raw_front):
            front = mask_cloze(raw_front)
            back = clean_anki_text(extract_cloze_answer(raw_front))
        else:
            front = clean_anki_text(raw_front)
            back = clean_anki_text(raw_back)

        if not front:
            logger.warning("Skipping card {} with empty front", card_id)
            return None

        return StudyItem(
            item_id=int(card_id),
            front=front,
            back=back,
            collection=card.get("deckName") or deck_name,
        )

    @staticmethod
    def _field_value(field: dict[str, Any] | None) -> str:
        """Extract string value from Anki field dictionary."""
        if not field:
            return ""

        if isinstance(field, dict):
            if "value" in field:
                return str(field["value"]).strip()
            if "text" in field:
                return str(field["text"]).strip()

        return str(field).strip()
