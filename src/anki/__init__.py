"""Anki card source."""

from src.anki.anki_client import AnkiClient
from src.anki.item_source import AnkiItemSource, ItemSource
from src.anki.text_utils import clean_anki_text, extract_cloze_answer, is_cloze_card, mask_cloze

__all__ = [
    "AnkiClient",
    "AnkiItemSource",
    "ItemSource",
    # Text helpers
    "clean_anki_text",
    "extract_cloze_answer",
    "is_cloze_card",
    "mask_cloze",
]
