"""
Single-pass queue of study items.

Insertion order is presentation order. There is no retry or priority
reordering: once the cursor runs off the end the queue stays exhausted
until it is loaded again.
"""

from __future__ import annotations

from collections.abc import Iterable

from src.session.models import StudyItem


class ItemQueue:
    """Ordered study items with a zero-based cursor (0 <= cursor <= length)."""

    def __init__(self) -> None:
        self._items: list[StudyItem] = []
        self._cursor = 0

    def load(self, items: Iterable[StudyItem]) -> None:
        """Replace contents and rewind to the first item."""
        self._items = list(items)
        self._cursor = 0

    def current(self) -> StudyItem | None:
        """Item under the cursor, or None when empty or exhausted."""
        if self._cursor < len(self._items):
            return self._items[self._cursor]
        return None

    def advance(self) -> StudyItem | None:
        """
        Move past the current item.

        Returns:
            The new current item, or None once the queue is exhausted.
            The cursor never moves beyond the queue length.
        """
        if self._cursor < len(self._items):
            self._cursor += 1
        return self.current()

    def remaining(self) -> int:
        return max(0, len(self._items) - self._cursor)

    def clear(self) -> None:
        self._items = []
        self._cursor = 0

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def total(self) -> int:
        return len(self._items)

    @property
    def is_exhausted(self) -> bool:
        return self._cursor >= len(self._items)

    def __len__(self) -> int:
        return len(self._items)
