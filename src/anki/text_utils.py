"""
Card text cleanup.

Anki fields carry HTML and cloze markup that must not be read aloud.
"""

from __future__ import annotations

import re

HTML_TAG = re.compile(r"<[^>]*>")
CLOZE_MARKER = re.compile(r"\{\{c\d+::|\}\}")
CLOZE_ANSWER = re.compile(r"\{\{c\d+::([^}]+)\}\}")
WHITESPACE = re.compile(r"\s+")

HTML_ENTITIES = {
    "&nbsp;": " ",
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
}


def clean_anki_text(text: str | None) -> str:
    """
    Strip HTML, decode common entities and drop cloze markers.

    "The capital of <b>France</b> is {{c1::Paris}}" -> "The capital of France is Paris"
    """
    if not text:
        return ""
    cleaned = HTML_TAG.sub("", text)
    for entity, replacement in HTML_ENTITIES.items():
        cleaned = cleaned.replace(entity, replacement)
    cleaned = CLOZE_MARKER.sub("", cleaned)
    return WHITESPACE.sub(" ", cleaned).strip()


def extract_cloze_answer(text: str) -> str | None:
    """First cloze deletion answer, e.g. "Paris" from "{{c1::Paris}}"."""
    match = CLOZE_ANSWER.search(text or "")
    return match.group(1).split("::")[0] if match else None


def is_cloze_card(text: str) -> bool:
    return CLOZE_ANSWER.search(text or "") is not None


def mask_cloze(text: str) -> str:
    """Replace cloze deletions with a blank so the question does not give the answer away."""
    return clean_anki_text(CLOZE_ANSWER.sub("[...]", text or ""))
