"""Cache layer: TTL-keyed exact cache, tag invalidation, similarity reuse."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from cachetools import TLRUCache
from pydantic import BaseModel, Field

from pathway_advisor.cache.similarity import SimilarityIndex
from pathway_advisor.config import CacheConfig
from pathway_advisor.errors import CacheUnavailable
from pathway_advisor.types import CallPriority

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
Clock = Callable[[], float]


@dataclass(slots=True)
class CacheEntry:
    key: str
    value: str
    expires_at: float
    tags: frozenset[str]
    created_at: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CacheOptions:
    ttl_seconds: float
    tags: tuple[str, ...] = ()
    similarity_text: str | None = None


class CacheBackend(Protocol):
    """Key-value storage with per-entry expiry and tag enumeration."""

    def get(self, key: str) -> CacheEntry | None:
        """Return a live entry or None."""

    def set(self, entry: CacheEntry) -> None:
        """Store an entry, replacing any previous value for the key."""

    def delete(self, key: str) -> bool:
        """Remove a live entry; return whether one was removed."""

    def keys_for_tag(self, tag: str) -> set[str]:
        """Return keys ever associated with `tag`."""

    def size(self) -> int:
        """Return the number of live entries."""


class _EvictingTLRUCache(TLRUCache):
    """`TLRUCache` that reports every entry it drops on expiry or capacity."""

    def __init__(self, maxsize: int, ttu: Callable, timer: Clock, on_evict: Callable[[CacheEntry], None]) -> None:
        super().__init__(maxsize=maxsize, ttu=ttu, timer=timer)
        self._on_evict = on_evict

    def popitem(self) -> tuple[str, CacheEntry]:
        key, entry = super().popitem()
        self._on_evict(entry)
        return key, entry

    def expire(self, time: float | None = None) -> list[tuple[str, CacheEntry]]:
        expired = super().expire(time)
        for _key, entry in expired:
            self._on_evict(entry)
        return expired


class InMemoryCacheBackend:
    """Process-local backend on `cachetools.TLRUCache`.

    Expiry is lazy: an entry past its `expires_at` is invisible to reads and
    dropped by the underlying cache the next time it is touched. Dropped
    entries leave the tag map at the same moment.
    """

    def __init__(self, *, max_entries: int = 2048, clock: Clock = time.monotonic) -> None:
        self._cache: TLRUCache[str, CacheEntry] = _EvictingTLRUCache(
            maxsize=max_entries,
            ttu=lambda _key, entry, _now: entry.expires_at,
            timer=clock,
            on_evict=self._untag,
        )
        self._tags: dict[str, set[str]] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._cache.get(key)

    def set(self, entry: CacheEntry) -> None:
        with self._lock:
            previous = self._cache.get(entry.key)
            if previous is not None:
                self._untag(previous)
            self._cache[entry.key] = entry
            for tag in entry.tags:
                self._tags.setdefault(tag, set()).add(entry.key)

    def delete(self, key: str) -> bool:
        with self._lock:
            entry = self._cache.pop(key, None)
            if entry is None:
                return False
            self._untag(entry)
            return True

    def keys_for_tag(self, tag: str) -> set[str]:
        with self._lock:
            self._cache.expire()
            return set(self._tags.get(tag, ()))

    def size(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)

    def _untag(self, entry: CacheEntry) -> None:
        for tag in entry.tags:
            keys = self._tags.get(tag)
            if keys is None:
                continue
            keys.discard(entry.key)
            if not keys:
                del self._tags[tag]


class PopularQuery(BaseModel):
    text: str
    count: int


class CacheStats(BaseModel):
    entry_count: int
    hits: int
    misses: int
    hit_rate: float
    similarity_index_size: int
    popular_queries: list[PopularQuery] = Field(default_factory=list)


class TTLPolicy:
    """Chooses TTLs per data class.

    Primary tool results expire sooner than supporting ones; answers that found
    nothing expire quickly so a transient miss heals itself.
    """

    def __init__(self, config: CacheConfig | None = None) -> None:
        self.config = config or CacheConfig()

    def for_tool(self, priority: CallPriority, *, statistics: bool = False) -> int:
        if statistics:
            return self.config.stats_ttl_seconds
        if priority is CallPriority.PRIMARY:
            return self.config.primary_ttl_seconds
        return self.config.supporting_ttl_seconds

    def for_answer(self, total_results: int) -> int:
        if total_results <= 0:
            return self.config.empty_answer_ttl_seconds
        return self.config.answer_ttl_seconds


class CacheLayer:
    """Memoizes tool results and synthesized answers.

    Backend failures never propagate: a failed read is a miss and a failed
    write is dropped after logging. Concurrent writes to one key are
    last-write-wins.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        backend: CacheBackend | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._backend = backend or InMemoryCacheBackend(
            max_entries=self.config.max_entries, clock=clock
        )
        self._index = SimilarityIndex(self.config.similarity_max_entries)
        self.ttl_policy = TTLPolicy(self.config)
        self._hits = 0
        self._misses = 0
        self._counter_lock = threading.Lock()

    def get(self, key: str, model: type[ModelT] | None = None) -> Any:
        """Return the stored value, or None on miss, expiry, or any read failure.

        An entry whose payload no longer deserializes is evicted and counted
        as a miss.
        """

        try:
            entry = self._backend.get(key)
        except Exception as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            entry = None

        if entry is None or entry.expires_at <= self._clock():
            self._count(hit=False)
            logger.debug("Cache miss: %s", key)
            return None

        try:
            if model is not None:
                value = model.model_validate_json(entry.value)
            else:
                value = json.loads(entry.value)
        except ValueError as exc:
            logger.warning("Evicting unreadable cache entry %s: %s", key, exc)
            self._evict(key)
            self._count(hit=False)
            return None

        self._count(hit=True)
        logger.debug("Cache hit: %s", key)
        return value

    def set(
        self,
        key: str,
        value: Any,
        options: CacheOptions,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Store `value` for `options.ttl_seconds`; return False if dropped."""

        try:
            payload = _serialize(value)
            now = self._clock()
            entry = CacheEntry(
                key=key,
                value=payload,
                expires_at=now + options.ttl_seconds,
                tags=frozenset(options.tags),
                created_at=now,
                metadata=dict(metadata or {}),
            )
            self._backend.set(entry)
        except (CacheUnavailable, TypeError, ValueError) as exc:
            logger.warning("Cache write dropped for %s: %s", key, exc)
            return False

        if options.similarity_text:
            self._index.link(options.similarity_text, key)
        return True

    def find_similar(
        self,
        query_text: str,
        threshold: float,
        model: type[ModelT] | None = None,
    ) -> Any:
        """Return the answer cached for the most similar prior query.

        Every call records `query_text` for popularity tracking. A threshold
        of 0 (or less) only records and always misses.
        """

        self._index.touch(query_text)
        if threshold <= 0:
            return None

        match = self._index.best_match(query_text)
        if match is None:
            return None
        cache_key, score = match
        if score < threshold:
            logger.debug("No similar query above %.2f (best %.2f)", threshold, score)
            return None
        logger.debug("Similar query reuse (%.2f): %s", score, cache_key)
        return self.get(cache_key, model)

    def invalidate_by_tag(self, tag: str) -> int:
        try:
            keys = self._backend.keys_for_tag(tag)
            removed = sum(1 for key in keys if self._backend.delete(key))
        except CacheUnavailable as exc:
            logger.warning("Tag invalidation failed for %s: %s", tag, exc)
            return 0
        self._index.forget_keys(keys)
        logger.info("Invalidated %d cache entries tagged %r", removed, tag)
        return removed

    def describe(self, key: str) -> dict[str, Any] | None:
        """Introspection only: the metadata stored alongside a live entry."""

        try:
            entry = self._backend.get(key)
        except CacheUnavailable:
            return None
        if entry is None:
            return None
        return {
            "tags": sorted(entry.tags),
            "created_at": entry.created_at,
            "expires_at": entry.expires_at,
            "metadata": dict(entry.metadata),
        }

    def stats(self) -> CacheStats:
        try:
            entry_count = self._backend.size()
        except CacheUnavailable:
            entry_count = 0
        with self._counter_lock:
            hits, misses = self._hits, self._misses
        total = hits + misses
        return CacheStats(
            entry_count=entry_count,
            hits=hits,
            misses=misses,
            hit_rate=(hits / total) if total else 0.0,
            similarity_index_size=len(self._index),
            popular_queries=[
                PopularQuery(text=text, count=count)
                for text, count in self._index.popular(self.config.popular_queries_limit)
            ],
        )

    def _evict(self, key: str) -> None:
        try:
            self._backend.delete(key)
        except Exception as exc:
            logger.warning("Cache eviction failed for %s: %s", key, exc)
        self._index.forget_keys({key})

    def _count(self, *, hit: bool) -> None:
        with self._counter_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1


def _serialize(value: Any) -> str:
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    return json.dumps(value, ensure_ascii=False)
