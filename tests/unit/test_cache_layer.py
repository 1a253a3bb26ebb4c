from __future__ import annotations

import threading

import pytest

from pathway_advisor.cache.store import CacheEntry, CacheLayer, CacheOptions, InMemoryCacheBackend, TTLPolicy
from pathway_advisor.config import CacheConfig
from pathway_advisor.errors import CacheUnavailable
from pathway_advisor.types import CallPriority, EducationProgram, ScoredRecord, ToolResult


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BrokenBackend:
    def get(self, key: str) -> CacheEntry | None:
        raise CacheUnavailable("backend offline")

    def set(self, entry: CacheEntry) -> None:
        raise CacheUnavailable("backend offline")

    def delete(self, key: str) -> bool:
        raise CacheUnavailable("backend offline")

    def keys_for_tag(self, tag: str) -> set[str]:
        raise CacheUnavailable("backend offline")

    def size(self) -> int:
        raise CacheUnavailable("backend offline")


def _result() -> ToolResult:
    program = EducationProgram(id="p-1", program_name="Nursing, AS", degree="AS")
    return ToolResult(
        records=[ScoredRecord(record=program, score=50.0, source_tool="get_education_programs")],
        total_available=1,
    )


def test_set_then_get_round_trips_until_ttl_elapses() -> None:
    clock = FakeClock()
    cache = CacheLayer(clock=clock)
    value = _result()

    assert cache.set("tool:k", value, CacheOptions(ttl_seconds=300))
    assert cache.get("tool:k", ToolResult) == value

    clock.advance(299)
    assert cache.get("tool:k", ToolResult) == value

    clock.advance(2)
    assert cache.get("tool:k", ToolResult) is None


def test_hit_rate_counts_reads() -> None:
    cache = CacheLayer(clock=FakeClock())
    cache.set("k", {"answer": 1}, CacheOptions(ttl_seconds=60))

    assert cache.get("k") == {"answer": 1}
    assert cache.get("missing") is None

    stats = cache.stats()
    assert stats.entry_count == 1
    assert stats.hits == 1
    assert stats.misses == 1
    assert stats.hit_rate == pytest.approx(0.5)
    assert CacheLayer().stats().hit_rate == 0.0


def test_invalidate_by_tag_removes_only_tagged_entries() -> None:
    cache = CacheLayer(clock=FakeClock())
    cache.set("a1", "x", CacheOptions(ttl_seconds=60, tags=("answer", "route:search")))
    cache.set("a2", "y", CacheOptions(ttl_seconds=60, tags=("answer",)))
    cache.set("t1", "z", CacheOptions(ttl_seconds=60, tags=("tool",)))

    assert cache.invalidate_by_tag("answer") == 2
    assert cache.get("a1") is None
    assert cache.get("a2") is None
    assert cache.get("t1") == "z"
    assert cache.invalidate_by_tag("answer") == 0


def test_backend_failures_degrade_to_miss_and_dropped_write() -> None:
    cache = CacheLayer(backend=BrokenBackend())

    assert cache.set("k", {"v": 1}, CacheOptions(ttl_seconds=60)) is False
    assert cache.get("k") is None
    assert cache.invalidate_by_tag("answer") == 0
    assert cache.stats().entry_count == 0


def test_unserializable_value_is_dropped_not_raised() -> None:
    cache = CacheLayer()

    assert cache.set("k", {"v": object()}, CacheOptions(ttl_seconds=60)) is False
    assert cache.get("k") is None


def test_find_similar_respects_threshold() -> None:
    cache = CacheLayer(clock=FakeClock())
    cache.set(
        "answer:marine",
        {"answer": "marine biology options"},
        CacheOptions(ttl_seconds=600, tags=("answer",), similarity_text="marine biology program options"),
    )

    assert cache.find_similar("marine biology programs", 0.8) == {"answer": "marine biology options"}
    assert cache.find_similar("marine biology programs", 0.95) is None


def test_zero_threshold_only_records_popularity() -> None:
    cache = CacheLayer(clock=FakeClock())
    cache.set("k", "v", CacheOptions(ttl_seconds=60, similarity_text="nursing programs"))

    assert cache.find_similar("nursing programs", 0) is None
    assert cache.find_similar("Nursing   Programs", 0) is None
    assert cache.find_similar("welding", 0) is None

    popular = cache.stats().popular_queries
    assert popular[0].text == "nursing programs"
    assert popular[0].count == 2


def test_similar_match_misses_after_invalidation() -> None:
    cache = CacheLayer(clock=FakeClock())
    cache.set("k", "v", CacheOptions(ttl_seconds=60, tags=("answer",), similarity_text="nursing programs"))
    cache.invalidate_by_tag("answer")

    assert cache.find_similar("nursing programs", 0.5) is None


def test_ttl_policy_by_data_class() -> None:
    policy = TTLPolicy(CacheConfig())

    assert policy.for_tool(CallPriority.PRIMARY) < policy.for_tool(CallPriority.SUPPORTING)
    assert policy.for_tool(CallPriority.PRIMARY, statistics=True) == 3600
    assert policy.for_answer(0) == 60
    assert policy.for_answer(3) == 3600


def test_describe_exposes_metadata_without_affecting_lookup() -> None:
    cache = CacheLayer(clock=FakeClock())
    cache.set("k", "v", CacheOptions(ttl_seconds=60, tags=("tool",)), metadata={"tool": "search_programs"})

    described = cache.describe("k")

    assert described is not None
    assert described["metadata"] == {"tool": "search_programs"}
    assert described["tags"] == ["tool"]
    assert cache.describe("missing") is None


class FlakyBackend(BrokenBackend):
    def get(self, key: str) -> CacheEntry | None:
        raise RuntimeError("socket closed")


def test_expired_entries_leave_the_tag_map() -> None:
    clock = FakeClock()
    backend = InMemoryCacheBackend(clock=clock)
    cache = CacheLayer(backend=backend, clock=clock)
    for i in range(1000):
        cache.set(f"answer:{i}", i, CacheOptions(ttl_seconds=1, tags=("answer",)))

    clock.advance(10)

    assert cache.stats().entry_count == 0
    assert backend.keys_for_tag("answer") == set()
    assert cache.invalidate_by_tag("answer") == 0


def test_capacity_eviction_untags_the_evicted_entry() -> None:
    clock = FakeClock()
    backend = InMemoryCacheBackend(max_entries=2, clock=clock)
    cache = CacheLayer(backend=backend, clock=clock)

    cache.set("a1", "x", CacheOptions(ttl_seconds=30, tags=("answer",)))
    cache.set("a2", "y", CacheOptions(ttl_seconds=60, tags=("answer",)))
    cache.set("t1", "z", CacheOptions(ttl_seconds=90, tags=("tool",)))

    assert cache.get("a1") is None
    assert backend.keys_for_tag("answer") == {"a2"}
    assert backend.keys_for_tag("tool") == {"t1"}


def test_unreadable_payload_is_evicted_and_counted_as_miss() -> None:
    clock = FakeClock()
    backend = InMemoryCacheBackend(clock=clock)
    cache = CacheLayer(backend=backend, clock=clock)
    backend.set(
        CacheEntry(
            key="tool:stats",
            value='{"records": "not-a-list"}',
            expires_at=clock() + 60,
            tags=frozenset({"tool"}),
            created_at=clock(),
        )
    )
    backend.set(
        CacheEntry(key="raw", value="not json", expires_at=clock() + 60, tags=frozenset(), created_at=clock())
    )

    assert cache.get("tool:stats", ToolResult) is None
    assert cache.get("raw") is None
    assert backend.get("tool:stats") is None
    assert backend.get("raw") is None
    assert cache.stats().misses == 2
    assert cache.stats().hits == 0


def test_unexpected_backend_read_error_is_a_miss() -> None:
    cache = CacheLayer(backend=FlakyBackend())

    assert cache.get("k") is None
    assert cache.stats().misses == 1


def test_similarity_index_evicts_least_recently_touched_query() -> None:
    cache = CacheLayer(CacheConfig(similarity_max_entries=2), clock=FakeClock())

    cache.find_similar("nursing", 0)
    cache.find_similar("welding", 0)
    cache.find_similar("nursing", 0)
    cache.find_similar("culinary arts", 0)

    stats = cache.stats()
    assert stats.similarity_index_size == 2
    assert {query.text for query in stats.popular_queries} == {"nursing", "culinary arts"}


def test_concurrent_appends_keep_the_index_bounded_and_counts_exact() -> None:
    bounded = CacheLayer(CacheConfig(similarity_max_entries=8), clock=FakeClock())
    counted = CacheLayer(CacheConfig(similarity_max_entries=4), clock=FakeClock())
    texts = ["nursing", "welding", "culinary arts", "marine biology"]

    def worker(offset: int) -> None:
        for i in range(100):
            bounded.find_similar(f"query {offset}-{i}", 0)
            for text in texts:
                counted.find_similar(text, 0)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert bounded.stats().similarity_index_size == 8
    stats = counted.stats()
    assert stats.similarity_index_size == 4
    assert {(query.text, query.count) for query in stats.popular_queries} == {(text, 800) for text in texts}
