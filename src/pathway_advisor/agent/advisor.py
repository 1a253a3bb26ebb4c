"""End-to-end request pipeline for pathway recommendations."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Literal

from pydantic import BaseModel, Field

from pathway_advisor.agent.aggregator import Aggregator
from pathway_advisor.agent.analyzer import KeywordQueryAnalyzer, QueryAnalyzer
from pathway_advisor.agent.planner import QueryPlan, QueryPlanner
from pathway_advisor.agent.synthesizer import AnswerSynthesizer, TemplateAnswerSynthesizer
from pathway_advisor.agent.tools import ToolCall, ToolName
from pathway_advisor.cache.keys import generate_key, profile_fingerprint
from pathway_advisor.cache.similarity import normalize_query
from pathway_advisor.cache.store import CacheOptions
from pathway_advisor.config import AdvisorConfig
from pathway_advisor.errors import InvalidRequest, ToolExecutionFailed
from pathway_advisor.obs.tracing import Timer, TraceStore
from pathway_advisor.retrieval.gateway import RetrievalGateway
from pathway_advisor.types import (
    AnalyzedQuery,
    RecordKind,
    ToolTrace,
    UnifiedResponse,
    UserProfileContext,
)

logger = logging.getLogger(__name__)

AnswerSource = Literal["fresh", "cache", "similar"]


class AdvisorReply(BaseModel):
    """What one request returns; the cached form of a full answer."""

    answer: str
    route: str
    response: UnifiedResponse
    suggested_questions: list[str] = Field(default_factory=list)
    profile_fingerprint: str | None = None
    answer_source: AnswerSource = "fresh"
    trace_id: str | None = None
    latency_ms: float = 0.0

    @property
    def queries_executed(self) -> list[str]:
        return self.response.queries_executed

    @property
    def total_results(self) -> int:
        return self.response.total_results


class PathwayAdvisor:
    """Analyze, plan, retrieve, narrate, and cache one learner message.

    Nothing after input validation aborts a request: failed retrieval calls,
    cache outages, and synthesis errors all degrade to a smaller answer.
    """

    def __init__(
        self,
        *,
        gateway: RetrievalGateway,
        analyzer: QueryAnalyzer | None = None,
        synthesizer: AnswerSynthesizer | None = None,
        planner: QueryPlanner | None = None,
        trace_store: TraceStore | None = None,
        config: AdvisorConfig | None = None,
    ) -> None:
        self.gateway = gateway
        self.cache = gateway.cache
        self.analyzer = analyzer or KeywordQueryAnalyzer()
        self.synthesizer = synthesizer or TemplateAnswerSynthesizer()
        self.planner = planner or QueryPlanner()
        self.aggregator = Aggregator(gateway)
        self.trace_store = trace_store or TraceStore()
        self.config = config or AdvisorConfig()
        self._fallback_synthesizer = TemplateAnswerSynthesizer()
        self._synthesis_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="synthesis")

    def handle(self, message: str, profile: UserProfileContext | None = None) -> AdvisorReply:
        if not isinstance(message, str) or not message.strip():
            raise InvalidRequest("message must be a non-empty string")

        observed: list[ToolTrace] = []
        with Timer() as timer:
            fingerprint = None if self.config.share_answers_across_profiles else profile_fingerprint(profile)
            key = answer_cache_key(message, fingerprint)
            reply = self._lookup(message, key, fingerprint)
            if reply is None:
                reply = self._answer(message, profile, key, fingerprint, observed.append)

        record = self.trace_store.create_record(
            message=message,
            route=reply.route,
            tool_traces=observed,
            total_results=reply.total_results,
            latency_ms=timer.elapsed_ms,
            answer_source=reply.answer_source,
        )
        return reply.model_copy(update={"trace_id": record.trace_id, "latency_ms": timer.elapsed_ms})

    def warm_up(self, messages: list[str], profile: UserProfileContext | None = None) -> dict[str, str]:
        """Pre-populate the statistics call and answers for `messages`.

        Returns a status per message: `cached` if it was already answered,
        `warmed` if it was answered now.
        """

        statuses: dict[str, str] = {}
        try:
            self.gateway.execute(ToolCall.create(ToolName.GET_COLLECTION_STATS))
        except ToolExecutionFailed as exc:
            logger.warning("Statistics warm-up failed: %s", exc.reason)

        fingerprint = None if self.config.share_answers_across_profiles else profile_fingerprint(profile)
        for message in messages:
            if not message or not message.strip():
                continue
            if self.cache.get(answer_cache_key(message, fingerprint)) is not None:
                statuses[message] = "cached"
                continue
            self.handle(message, profile)
            statuses[message] = "warmed"
        self.gateway.drain()
        logger.info("Warmed %d of %d messages", list(statuses.values()).count("warmed"), len(statuses))
        return statuses

    def drain(self) -> None:
        self.gateway.drain()

    def close(self) -> None:
        self._synthesis_pool.shutdown(wait=False, cancel_futures=True)
        self.gateway.close()

    def _lookup(self, message: str, key: str, fingerprint: str | None) -> AdvisorReply | None:
        cached = self.cache.get(key, AdvisorReply)
        if cached is not None:
            # Threshold 0 only records the query for popularity.
            self.cache.find_similar(message, 0)
            return cached.model_copy(update={"answer_source": "cache"})

        similar = self.cache.find_similar(message, self.config.similarity_threshold, AdvisorReply)
        if similar is not None and similar.profile_fingerprint == fingerprint:
            logger.info("Reusing answer of a similar query for %r", message)
            return similar.model_copy(update={"answer_source": "similar"})
        return None

    def _answer(
        self,
        message: str,
        profile: UserProfileContext | None,
        key: str,
        fingerprint: str | None,
        observer: Callable[[ToolTrace], None],
    ) -> AdvisorReply:
        analysis = self.analyzer.analyze(message, profile)
        if analysis.degraded:
            logger.warning("Planning with degraded analysis for %r", message)
        plan = self.planner.plan(analysis, profile, message)
        logger.debug("Plan %s: %s", plan.route.value, plan.tool_names())
        response = self.aggregator.aggregate(plan, observer)
        answer = self._synthesize(response, analysis, profile)

        reply = AdvisorReply(
            answer=answer,
            route=plan.route.value,
            response=response,
            suggested_questions=suggest_questions(
                response,
                plan,
                profile,
                limit=self.config.max_suggested_questions,
            ),
            profile_fingerprint=fingerprint,
        )
        self.gateway.submit_write(
            key,
            reply,
            CacheOptions(
                ttl_seconds=self.cache.ttl_policy.for_answer(response.total_results),
                tags=("answer", f"route:{plan.route.value}"),
                similarity_text=message,
            ),
            {"route": plan.route.value, "total_results": response.total_results},
        )
        return reply

    def _synthesize(
        self,
        response: UnifiedResponse,
        analysis: AnalyzedQuery,
        profile: UserProfileContext | None,
    ) -> str:
        timeout = self.config.synthesis_timeout_seconds
        future = self._synthesis_pool.submit(self.synthesizer.synthesize, response, analysis, profile)
        try:
            return future.result(timeout=timeout)
        except TimeoutError:
            future.cancel()
            logger.warning("Answer synthesis timed out after %.1fs", timeout)
        except Exception as exc:
            logger.warning("Answer synthesis failed, using template: %s", exc)
        return self._fallback_synthesizer.synthesize(response, analysis, profile)


def answer_cache_key(message: str, fingerprint: str | None) -> str:
    return generate_key("answer", {"message": normalize_query(message)}, fingerprint)


def suggest_questions(
    response: UnifiedResponse,
    plan: QueryPlan,
    profile: UserProfileContext | None,
    *,
    limit: int = 5,
) -> list[str]:
    """Follow-up questions based on which kinds of data came back."""

    questions: list[str] = []
    pathways = response.results_for(RecordKind.PATHWAY_PROGRAM)
    if pathways:
        name = pathways[0].record.program_of_study
        questions.append(f"What courses do I need for {name}?")
        questions.append(f"Which schools offer {name}?")
    if response.results_for(RecordKind.EDUCATION_PROGRAM):
        questions.append("What university programs can I pursue?")
        questions.append("What are the admission requirements?")
    if response.results_for(RecordKind.CAREER_STAT):
        questions.append("What careers can I pursue in this field?")
        questions.append("What is the salary potential?")
    if profile is not None and not plan.extracted_context.get("ignore_profile"):
        if profile.education_level == "high_school":
            questions.append("How do I prepare for college in this field?")
        if profile.location:
            questions.append(f"What programs are available on {profile.location}?")
    questions.append("Show me related career pathways")
    questions.append("What are similar programs I could explore?")

    deduped: list[str] = []
    for question in questions:
        if question not in deduped:
            deduped.append(question)
    return deduped[:limit]
