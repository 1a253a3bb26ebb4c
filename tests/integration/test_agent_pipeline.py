import threading
import time

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.runnables import RunnableLambda

from pathway_advisor.agent.advisor import PathwayAdvisor
from pathway_advisor.agent.analyzer import LLMQueryAnalyzer
from pathway_advisor.agent.registry import ToolRegistry
from pathway_advisor.agent.synthesizer import LLMAnswerSynthesizer
from pathway_advisor.agent.tools import register_builtin_tools
from pathway_advisor.cache.store import CacheLayer
from pathway_advisor.errors import InvalidRequest
from pathway_advisor.retrieval.gateway import RetrievalGateway
from pathway_advisor.retrieval.record_store import InMemoryRecordStore, RecordFilter
from pathway_advisor.types import (
    CareerStat,
    EducationProgram,
    LinkedProgram,
    PathwayCourseSequence,
    QueryIntent,
    UserProfileContext,
)


def _store_kwargs() -> dict[str, list]:
    return dict(
        programs=[
            EducationProgram(
                id="p-1",
                program_name="Nursing, AS",
                degree="AS",
                campus="Kapiolani CC",
                search_keywords=["nursing", "health"],
                career_outcomes=["registered nurse"],
            ),
            EducationProgram(
                id="p-2",
                program_name="Marine Biology, BS",
                degree="BS",
                campus="UH Hilo",
                search_keywords=["marine biology", "ocean"],
            ),
            EducationProgram(id="p-3", program_name="Culinary Arts, AAS", degree="AAS", campus="Kapiolani CC"),
        ],
        pathways=[
            PathwayCourseSequence(
                id="hs-1",
                program_of_study="Health Services",
                career_cluster="Health Science",
                search_keywords=["nursing", "health"],
                course_sequence={"9": ["Health Foundations"], "10": ["Anatomy"]},
                linked_programs=[LinkedProgram(campus="Kapiolani CC", program_name="Nursing", degree="AS")],
            )
        ],
        careers=[CareerStat(id="c-1", subject_area="Nursing", median_salary=98000, unique_postings=40)],
    )


def _store() -> InMemoryRecordStore:
    return InMemoryRecordStore(**_store_kwargs())


def _advisor(**kwargs: object) -> PathwayAdvisor:
    registry = ToolRegistry()
    register_builtin_tools(registry, _store())
    return PathwayAdvisor(gateway=RetrievalGateway(registry, CacheLayer()), **kwargs)


def test_search_request_answers_then_reuses_exact_and_similar_cache() -> None:
    advisor = _advisor()
    try:
        fresh = advisor.handle("show me nursing programs")
        advisor.drain()
        cached = advisor.handle("show me nursing programs")
        similar = advisor.handle("show me nursing program")
    finally:
        advisor.close()

    assert fresh.answer_source == "fresh"
    assert fresh.route == "search"
    assert fresh.total_results >= 3
    assert fresh.queries_executed[0] == "search_programs"
    assert "get_collection_stats" in fresh.queries_executed
    assert "Nursing, AS" in fresh.answer
    assert fresh.suggested_questions
    assert fresh.trace_id is not None

    assert cached.answer_source == "cache"
    assert cached.answer == fresh.answer
    assert similar.answer_source == "similar"
    assert advisor.trace_store.summary()["cached_answers"] == 2


def test_coursework_request_for_ninth_grader() -> None:
    advisor = _advisor()
    profile = UserProfileContext(education_level="high_school", grade_level=9, interests=["nursing"])
    try:
        reply = advisor.handle("what classes next year", profile)
    finally:
        advisor.close()

    assert reply.route == "coursework_focused"
    assert reply.queries_executed[0] == "get_pathway_programs"
    assert "Health Services" in reply.answer
    assert "What courses do I need for Health Services?" in reply.suggested_questions


def test_answers_are_isolated_per_profile() -> None:
    advisor = _advisor()
    try:
        advisor.handle("nursing", UserProfileContext(education_level="high_school", grade_level=10))
        advisor.drain()
        other = advisor.handle("nursing", UserProfileContext(education_level="bachelors"))
    finally:
        advisor.close()

    assert other.answer_source == "fresh"


def test_invalidating_answers_forces_a_fresh_answer() -> None:
    advisor = _advisor()
    try:
        advisor.handle("show me marine biology programs")
        advisor.drain()
        removed = advisor.cache.invalidate_by_tag("answer")
        again = advisor.handle("show me marine biology programs")
    finally:
        advisor.close()

    assert removed == 1
    assert again.answer_source == "fresh"


def test_blank_message_is_rejected() -> None:
    advisor = _advisor()
    try:
        with pytest.raises(InvalidRequest):
            advisor.handle("   ")
    finally:
        advisor.close()


def test_warm_up_populates_answers() -> None:
    advisor = _advisor()
    try:
        first = advisor.warm_up(["nursing", "marine biology"])
        second = advisor.warm_up(["nursing"])
    finally:
        advisor.close()

    assert first == {"nursing": "warmed", "marine biology": "warmed"}
    assert second == {"nursing": "cached"}
    assert advisor.cache.stats().entry_count >= 3


class _BrokenStructuredModel:
    def with_structured_output(self, schema: type) -> RunnableLambda:
        def _fail(_: object) -> object:
            raise RuntimeError("model unavailable")

        return RunnableLambda(_fail)


class _StructuredModel:
    def with_structured_output(self, schema: type) -> RunnableLambda:
        return RunnableLambda(
            lambda _: schema(
                improved_query="nursing programs",
                search_terms=["Nursing"],
                intent="search",
                ignore_profile=True,
            )
        )


def test_llm_analyzer_degrades_instead_of_raising() -> None:
    degraded = LLMQueryAnalyzer(_BrokenStructuredModel()).analyze("anything about nursing?")
    analysis = LLMQueryAnalyzer(_StructuredModel()).analyze("nurse stuff")

    assert degraded.degraded is True
    assert degraded.intent is QueryIntent.PROFILE_BASED
    assert degraded.search_terms == ()
    assert analysis.search_terms == ("nursing",)
    assert analysis.intent is QueryIntent.SEARCH


def test_llm_pipeline_uses_model_narration_and_survives_failures() -> None:
    narrated = _advisor(
        analyzer=LLMQueryAnalyzer(_BrokenStructuredModel()),
        synthesizer=LLMAnswerSynthesizer(FakeListChatModel(responses=["Here are your nursing options."])),
    )
    try:
        reply = narrated.handle("anything about nursing?")
    finally:
        narrated.close()

    assert reply.answer == "Here are your nursing options."
    assert reply.route == "profile_based"
    assert reply.queries_executed


class _SlowStore(InMemoryRecordStore):
    def find_education_programs(self, record_filter: RecordFilter) -> list[EducationProgram]:
        time.sleep(0.1)
        return super().find_education_programs(record_filter)

    def find_pathway_programs(self, record_filter: RecordFilter) -> list[PathwayCourseSequence]:
        time.sleep(0.1)
        return super().find_pathway_programs(record_filter)


class _RaisingSynthesizer:
    def synthesize(self, response: object, analysis: object, profile: object = None) -> str:
        raise RuntimeError("model endpoint unavailable")


def test_concurrent_requests_keep_their_own_tool_traces() -> None:
    registry = ToolRegistry()
    register_builtin_tools(registry, _SlowStore(**_store_kwargs()))
    advisor = PathwayAdvisor(gateway=RetrievalGateway(registry, CacheLayer()))
    replies = {}

    def ask(message: str) -> None:
        replies[message] = advisor.handle(message)

    threads = [threading.Thread(target=ask, args=(m,)) for m in ("nursing advice", "welding advice")]
    try:
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
    finally:
        advisor.close()

    for reply in replies.values():
        traced = advisor.trace_store.get(reply.trace_id).tool_traces
        planned = reply.queries_executed + [failure.tool_name for failure in reply.response.failed_queries]
        assert sorted(trace.name for trace in traced) == sorted(planned)


def test_failing_synthesizer_falls_back_to_template_answer() -> None:
    advisor = _advisor(synthesizer=_RaisingSynthesizer())
    try:
        reply = advisor.handle("show me nursing programs")
    finally:
        advisor.close()

    assert reply.answer.startswith('Here is what I found for "')
    assert reply.total_results >= 1
