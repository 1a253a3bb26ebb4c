"""Bounded index of previously seen query texts for near-duplicate reuse."""

from __future__ import annotations

import re
import threading
from collections import OrderedDict
from dataclasses import dataclass

from rapidfuzz import fuzz

_WHITESPACE = re.compile(r"\s+")


def normalize_query(text: str) -> str:
    return _WHITESPACE.sub(" ", (text or "").strip().lower())


def similarity(a: str, b: str) -> float:
    """Normalized InDel similarity in [0, 1]."""

    return fuzz.ratio(normalize_query(a), normalize_query(b)) / 100.0


@dataclass(slots=True)
class IndexedQuery:
    text: str
    cache_key: str | None = None
    count: int = 0


class SimilarityIndex:
    """LRU-bounded map of normalized query text to its cached answer key.

    Entries are tracked independently of the exact-key cache. When the index
    is full the least recently touched query is evicted. All mutations happen
    under one mutex so concurrent appends and evictions stay consistent.
    """

    def __init__(self, max_entries: int = 512) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, IndexedQuery] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def touch(self, text: str) -> None:
        """Record one occurrence of a query for popularity tracking."""

        normalized = normalize_query(text)
        if not normalized:
            return
        with self._lock:
            entry = self._upsert(normalized)
            entry.count += 1

    def link(self, text: str, cache_key: str) -> None:
        """Associate a query text with the cache key holding its answer."""

        normalized = normalize_query(text)
        if not normalized:
            return
        with self._lock:
            self._upsert(normalized).cache_key = cache_key

    def best_match(self, text: str, *, exclude_key: str | None = None) -> tuple[str, float] | None:
        """Return (cache_key, similarity) of the closest linked query."""

        normalized = normalize_query(text)
        if not normalized:
            return None
        with self._lock:
            candidates = [
                (entry.cache_key, entry.text)
                for entry in self._entries.values()
                if entry.cache_key and entry.cache_key != exclude_key
            ]

        best: tuple[str, float] | None = None
        for cache_key, candidate in candidates:
            score = fuzz.ratio(normalized, candidate) / 100.0
            if best is None or score > best[1]:
                best = (cache_key, score)
        return best

    def forget_keys(self, cache_keys: set[str]) -> None:
        with self._lock:
            for entry in self._entries.values():
                if entry.cache_key in cache_keys:
                    entry.cache_key = None

    def popular(self, limit: int = 10) -> list[tuple[str, int]]:
        with self._lock:
            ranked = sorted(
                ((entry.text, entry.count) for entry in self._entries.values() if entry.count),
                key=lambda item: item[1],
                reverse=True,
            )
        return ranked[:limit]

    def _upsert(self, normalized: str) -> IndexedQuery:
        entry = self._entries.get(normalized)
        if entry is None:
            entry = IndexedQuery(text=normalized)
            self._entries[normalized] = entry
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        else:
            self._entries.move_to_end(normalized)
        return entry
