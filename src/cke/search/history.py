"""In-memory search history backed by the bounded KV log."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import replace

from cke.db.models import SearchHistoryItem


class SearchHistory:
    """Bounded search history shared by the searcher and the indexer.

    Appends happen under a short lock; readers get snapshot copies. The
    ``dirty`` flag tells the indexer to rewrite the persisted log at its
    next commit.
    """

    def __init__(self, max_items: int = 100, items: list[SearchHistoryItem] | None = None) -> None:
        self.max_items = max(0, max_items)
        self._items: deque[SearchHistoryItem] = deque(maxlen=self.max_items)
        self._items.extend(items or [])
        self._dirty = False
        self._lock = threading.Lock()

    def append(self, item: SearchHistoryItem) -> None:
        if self.max_items == 0:
            return
        with self._lock:
            self._items.append(item)
            self._dirty = True

    def record_click(self, query: str, element_id: str) -> bool:
        """Attach a clicked result to the newest history item for *query*.

        Returns False when no history item carries that query.
        """
        with self._lock:
            for index in range(len(self._items) - 1, -1, -1):
                item = self._items[index]
                if item.query != query:
                    continue
                if element_id not in item.clicked_result_ids:
                    self._items[index] = replace(
                        item, clicked_result_ids=[*item.clicked_result_ids, element_id]
                    )
                    self._dirty = True
                return True
        return False

    def snapshot(self, last: int | None = None) -> list[SearchHistoryItem]:
        """Copy of the newest *last* items (all when None), oldest first."""
        with self._lock:
            items = list(self._items)
        if last is not None:
            items = items[-last:] if last > 0 else []
        return items

    def take_dirty(self) -> list[SearchHistoryItem] | None:
        """Snapshot to persist, or None when nothing changed since the last call."""
        with self._lock:
            if not self._dirty:
                return None
            self._dirty = False
            return list(self._items)

    def mark_dirty(self) -> None:
        """Flag the log for rewrite again after a rolled-back flush."""
        with self._lock:
            self._dirty = True

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._dirty = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
