"""
Unit tests for Anki client.

Tests client initialization, deck filtering and card mapping
WITHOUT requiring Anki to be running.
"""

import pytest
import requests
from unittest.mock import Mock, patch

from src.anki.anki_client import AnkiClient


@pytest.fixture
def client():
    """AnkiClient with patched settings."""
    with patch("src.anki.anki_client.get_settings") as mock_settings:
        mock_settings.return_value = Mock(
            anki_connect_url="http://localhost:8765",
            anki_due_card_limit=100,
        )
        yield AnkiClient()


class TestAnkiClientInit:
    """Tests for AnkiClient initialization."""

    def test_default_initialization(self):
        """Client should initialize with default settings."""
        with patch("src.anki.anki_client.get_settings") as mock_settings:
            mock_settings.return_value = Mock(
                anki_connect_url="http://localhost:8765",
                anki_due_card_limit=100,
            )
            client = AnkiClient()

            assert client.base_url == "http://localhost:8765"
            assert client.due_limit == 100
            assert client.timeout == 30

    def test_custom_initialization(self):
        """Client should accept custom parameters."""
        with patch("src.anki.anki_client.get_settings") as mock_settings:
            mock_settings.return_value = Mock(
                anki_connect_url="http://localhost:8765",
                anki_due_card_limit=100,
            )
            client = AnkiClient(base_url="http://custom:9999", due_limit=5, timeout=10)

            assert client.base_url == "http://custom:9999"
            assert client.due_limit == 5
            assert client.timeout == 10


class TestConnectionCheck:
    """Tests for connection checking."""

    def test_connection_ok(self, client):
        client._invoke = Mock(return_value=6)
        assert client.check_connection(cache_seconds=0) is True

    def test_connection_refused(self, client):
        client._invoke = Mock(side_effect=requests.exceptions.ConnectionError("refused"))
        assert client.check_connection(cache_seconds=0) is False

    def test_result_is_cached(self, client):
        client._invoke = Mock(return_value=6)
        client.check_connection(cache_seconds=0)
        client.check_connection(cache_seconds=60)
        assert client._invoke.call_count == 1

    def test_require_connection_raises(self, client):
        client._invoke = Mock(side_effect=requests.exceptions.Timeout())
        with pytest.raises(RuntimeError, match="Anki is not available"):
            client.require_connection()


class TestDeckNames:
    """Tests for deck listing."""

    def test_default_subdecks_are_hidden(self, client):
        client._invoke = Mock(return_value=["Spanish", "Default::Imported", "Default", "Biology"])
        assert client.get_deck_names() == ["Biology", "Default", "Spanish"]

    def test_no_decks(self, client):
        client._invoke = Mock(return_value=None)
        assert client.get_deck_names() == []


class TestDueItems:
    """Tests for fetching due cards."""

    def test_query_and_mapping(self, client, sample_card_info):
        """get_due_items should query due cards and map first two fields."""
        calls = []

        def fake_invoke(action, params=None):
            calls.append((action, params))
            if action == "findCards":
                return [sample_card_info["cardId"]]
            if action == "cardsInfo":
                return [sample_card_info]
            return None

        client._invoke = fake_invoke
        items = client.get_due_items("Geography")

        assert calls[0] == ("findCards", {"query": 'deck:"Geography" is:due'})
        assert len(items) == 1
        assert items[0].item_id == 1700000000001
        assert items[0].front == "Capital of France?"
        assert items[0].back == "Paris"
        assert items[0].collection == "Geography"

    def test_no_due_cards_skips_cards_info(self, client):
        client._invoke = Mock(return_value=[])
        assert client.get_due_items("Empty") == []
        client._invoke.assert_called_once()

    def test_due_limit_caps_card_ids(self, client):
        client.due_limit = 2
        requested = {}

        def fake_invoke(action, params=None):
            if action == "findCards":
                return [1, 2, 3, 4]
            requested["cards"] = params["cards"]
            return []

        client._invoke = fake_invoke
        client.get_due_items("Deck")

        assert requested["cards"] == [1, 2]

    def test_cloze_card_is_masked(self, client):
        """Cloze answers should be hidden from the question and used as the back."""
        card = {
            "cardId": 7,
            "deckName": "History",
            "fields": {
                "Text": {"value": "The war ended in {{c1::1945}}", "order": 0},
                "Extra": {"value": "", "order": 1},
            },
        }
        item = client._map_card_to_item(card, "History")

        assert item.front == "The war ended in [...]"
        assert item.back == "1945"

    def test_card_with_empty_front_is_skipped(self, client):
        card = {"cardId": 8, "fields": {"Front": {"value": "<br>", "order": 0}}}
        assert client._map_card_to_item(card, "Deck") is None


class TestFieldMapping:
    """Tests for field mapping from Anki cards."""

    def test_field_value_extraction(self):
        """_field_value should extract value from field dict."""
        assert AnkiClient._field_value({"value": "test"}) == "test"
        assert AnkiClient._field_value({"text": "test"}) == "test"
        assert AnkiClient._field_value(None) == ""
        assert AnkiClient._field_value({}) == ""

    def test_field_value_strips_whitespace(self):
        """_field_value should strip whitespace."""
        assert AnkiClient._field_value({"value": "  test  "}) == "test"
