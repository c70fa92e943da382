"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import pytest
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.session.models import StudyItem  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def sample_items():
    """Three due cards from one deck, in presentation order."""
    return [
        StudyItem(item_id=101, front="Capital of France?", back="Paris", collection="Geography"),
        StudyItem(item_id=102, front="Capital of Japan?", back="Tokyo", collection="Geography"),
        StudyItem(item_id=103, front="Capital of Peru?", back="Lima", collection="Geography"),
    ]


@pytest.fixture
def sample_card_info():
    """A cardsInfo entry as returned by AnkiConnect."""
    return {
        "cardId": 1700000000001,
        "deckName": "Geography",
        "fields": {
            "Front": {"value": "Capital of <b>France</b>?", "order": 0},
            "Back": {"value": "Paris&nbsp;", "order": 1},
        },
    }
