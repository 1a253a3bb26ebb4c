"""Query planner: turns one analyzed query into an ordered list of tool calls."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, assert_never

from pydantic import BaseModel, ConfigDict, field_validator

from pathway_advisor.agent.tools import ToolCall, ToolName
from pathway_advisor.retrieval.expander import expand_all
from pathway_advisor.types import AnalyzedQuery, CallPriority, QueryIntent, UserProfileContext

COURSEWORK_KEYWORDS = (
    "class",
    "classes",
    "course",
    "courses",
    "coursework",
    "schedule",
    "elective",
    "electives",
    "next year",
    "next semester",
    "semester",
    "sign up for",
    "register for",
)

PRE_TERTIARY_LEVELS = frozenset({"high_school", "middle_school"})


class PlanRoute(str, Enum):
    SEARCH = "search"
    PROFILE_BASED = "profile_based"
    MIXED = "mixed"
    COURSEWORK_FOCUSED = "coursework_focused"
    DEFAULT = "default"


class QueryPlan(BaseModel):
    """Ordered tool calls for one request; read-only once built."""

    model_config = ConfigDict(frozen=True)

    route: PlanRoute
    intent: QueryIntent
    calls: tuple[ToolCall, ...]
    extracted_context: dict[str, Any]

    @field_validator("calls")
    @classmethod
    def _non_empty(cls, calls: tuple[ToolCall, ...]) -> tuple[ToolCall, ...]:
        if not calls:
            raise ValueError("a query plan needs at least one tool call")
        return calls

    @property
    def primary_calls(self) -> list[ToolCall]:
        return [call for call in self.calls if call.priority is CallPriority.PRIMARY]

    def tool_names(self) -> list[str]:
        return [call.tool_name for call in self.calls]


class QueryPlanner:
    """Deterministic planner with no I/O and no state across requests.

    Every plan ends with a statistics call, and with a labor-market call when
    any search terms or profile interests are in play, so a request that
    matches nothing still returns overview data.
    """

    def __init__(self, *, coursework_keywords: tuple[str, ...] = COURSEWORK_KEYWORDS) -> None:
        self._coursework = re.compile(
            r"\b(?:" + "|".join(re.escape(k) for k in coursework_keywords) + r")\b"
        )

    def is_coursework_request(self, message: str) -> bool:
        return bool(self._coursework.search((message or "").lower()))

    def select_route(
        self,
        analysis: AnalyzedQuery,
        message: str = "",
    ) -> PlanRoute:
        if not analysis.ignore_profile and self.is_coursework_request(message):
            return PlanRoute.COURSEWORK_FOCUSED
        if analysis.intent is QueryIntent.SEARCH:
            if _query_text(analysis, message):
                return PlanRoute.SEARCH
            return PlanRoute.DEFAULT
        if analysis.intent is QueryIntent.PROFILE_BASED:
            return PlanRoute.PROFILE_BASED
        if analysis.intent is QueryIntent.MIXED:
            return PlanRoute.MIXED
        assert_never(analysis.intent)

    def plan(
        self,
        analysis: AnalyzedQuery,
        profile: UserProfileContext | None = None,
        message: str = "",
    ) -> QueryPlan:
        route = self.select_route(analysis, message)
        # A request that opts out of the profile plans as if none were given.
        effective = UserProfileContext() if analysis.ignore_profile or profile is None else profile
        terms = list(analysis.search_terms)

        if route is PlanRoute.COURSEWORK_FOCUSED:
            calls = _pathway_anchored_calls(effective, terms)
        elif route is PlanRoute.SEARCH:
            calls = _search_calls(analysis, terms, message)
        elif route is PlanRoute.PROFILE_BASED:
            if _is_pre_tertiary(effective):
                calls = _pathway_anchored_calls(effective, terms)
            else:
                calls = [
                    _program_call(
                        effective,
                        effective.interests or tuple(terms),
                        ignore_profile=analysis.ignore_profile,
                    )
                ]
        elif route is PlanRoute.MIXED:
            calls = [
                _program_call(
                    effective,
                    _merge(terms, effective.interests),
                    ignore_profile=analysis.ignore_profile,
                )
            ]
        elif route is PlanRoute.DEFAULT:
            calls = _default_calls(analysis, effective, message)
        else:
            assert_never(route)

        calls.append(ToolCall.create(ToolName.GET_COLLECTION_STATS))
        if route is PlanRoute.SEARCH:
            career_terms = _search_terms(analysis, terms, message)
        else:
            career_terms = _merge(terms, effective.interests)
        if career_terms:
            calls.append(ToolCall.create(ToolName.GET_CAREER_DATA, interests=tuple(career_terms)))

        return QueryPlan(
            route=route,
            intent=analysis.intent,
            calls=tuple(calls),
            extracted_context=_extracted_context(analysis, effective, route),
        )


def _query_text(analysis: AnalyzedQuery, message: str) -> str:
    if analysis.search_terms:
        return " ".join(analysis.search_terms)
    return (analysis.improved_query or message or "").strip()


def _is_pre_tertiary(profile: UserProfileContext) -> bool:
    level = (profile.education_level or "").strip().lower()
    if level in PRE_TERTIARY_LEVELS:
        return True
    return profile.grade_level is not None and profile.grade_level <= 12


def _merge(*groups: Any) -> list[str]:
    merged: list[str] = []
    for group in groups:
        for term in group:
            if term and term not in merged:
                merged.append(term)
    return merged


def _pathway_anchored_calls(profile: UserProfileContext, terms: list[str]) -> list[ToolCall]:
    interests = profile.interests or tuple(terms)
    return [
        ToolCall.create(
            ToolName.GET_PATHWAY_PROGRAMS,
            priority=CallPriority.PRIMARY,
            interests=interests,
            career_goals=profile.career_goals,
            grade_level=profile.grade_level,
        ),
        ToolCall.create(
            ToolName.GET_EDUCATION_PATHWAYS,
            interests=interests,
            grade_level=profile.grade_level,
            location=profile.location,
        ),
        _program_call(profile, interests, priority=CallPriority.SUPPORTING),
    ]


def _program_call(
    profile: UserProfileContext,
    interests: Any,
    *,
    priority: CallPriority = CallPriority.PRIMARY,
    ignore_profile: bool = False,
) -> ToolCall:
    return ToolCall.create(
        ToolName.GET_EDUCATION_PROGRAMS,
        priority=priority,
        ignore_profile=ignore_profile,
        interests=tuple(interests),
        career_goals=profile.career_goals,
        education_level=profile.education_level,
        grade_level=profile.grade_level,
        location=profile.location,
    )


def _search_terms(analysis: AnalyzedQuery, terms: list[str], message: str) -> list[str]:
    if terms:
        return terms
    query = _query_text(analysis, message)
    return [query.lower()] if query else []


def _search_calls(analysis: AnalyzedQuery, terms: list[str], message: str) -> list[ToolCall]:
    query = _query_text(analysis, message)
    search_terms = _search_terms(analysis, terms, message)
    return [
        ToolCall.create(
            ToolName.SEARCH_PROGRAMS,
            priority=CallPriority.PRIMARY,
            query=query,
            expanded_terms=tuple(expand_all(search_terms)),
            ignore_profile=True,
        ),
        ToolCall.create(
            ToolName.GET_EDUCATION_PROGRAMS,
            interests=tuple(search_terms),
            ignore_profile=True,
        ),
        ToolCall.create(
            ToolName.GET_PATHWAY_PROGRAMS,
            interests=tuple(search_terms),
            ignore_profile=True,
        ),
    ]


def _default_calls(
    analysis: AnalyzedQuery,
    profile: UserProfileContext,
    message: str,
) -> list[ToolCall]:
    query = _query_text(analysis, message)
    if query:
        return [
            ToolCall.create(
                ToolName.SEARCH_PROGRAMS,
                priority=CallPriority.PRIMARY,
                query=query,
                ignore_profile=analysis.ignore_profile,
            )
        ]
    return [_program_call(profile, profile.interests, ignore_profile=analysis.ignore_profile)]


def _extracted_context(
    analysis: AnalyzedQuery,
    profile: UserProfileContext,
    route: PlanRoute,
) -> dict[str, Any]:
    context: dict[str, Any] = {
        "improved_query": analysis.improved_query,
        "search_terms": list(analysis.search_terms),
        "intent": analysis.intent.value,
        "ignore_profile": analysis.ignore_profile,
        "degraded": analysis.degraded,
    }
    if route is not PlanRoute.SEARCH:
        context["profile"] = profile.model_dump(exclude_none=True, exclude_defaults=True)
    return context
