"""Query-analysis collaborators.

`KeywordQueryAnalyzer` is a deterministic heuristic used offline and as the
fallback path. `LLMQueryAnalyzer` asks a chat model for a structured analysis
and degrades to `AnalyzedQuery.degraded_default` on any failure.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol

from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel, Field

from pathway_advisor.errors import UpstreamAnalysisDegraded
from pathway_advisor.retrieval.expander import ABBREVIATIONS
from pathway_advisor.types import AnalyzedQuery, QueryIntent, UserProfileContext

logger = logging.getLogger(__name__)

SEARCH_INDICATORS = (
    "show me",
    "search",
    "find",
    "programs for",
    "programs in",
    "list",
)

_SEARCH_INDICATOR = re.compile(
    r"\b(?:" + "|".join(re.escape(indicator) for indicator in SEARCH_INDICATORS) + r")\b"
)

STOP_WORDS = frozenset(
    {
        "a", "about", "an", "and", "any", "are", "can", "classes", "could",
        "course", "courses", "do", "find", "for", "from", "get", "give", "have",
        "help", "how", "i", "in", "interested", "is", "it", "it's", "list", "looking",
        "me", "my", "next", "of", "on", "options", "or", "program", "programs",
        "search", "should", "show", "some", "take", "tell", "that", "the",
        "there", "to", "want", "what", "where", "which", "with", "year", "you",
    }
)

_TOKEN = re.compile(r"[a-z0-9][a-z0-9\-']*")


class QueryAnalyzer(Protocol):
    def analyze(self, message: str, profile: UserProfileContext | None = None) -> AnalyzedQuery:
        """Return an analysis; never raises."""


class KeywordQueryAnalyzer:
    """Heuristic intent detection and term extraction without a model."""

    def analyze(self, message: str, profile: UserProfileContext | None = None) -> AnalyzedQuery:
        lowered = (message or "").lower()
        is_search = _SEARCH_INDICATOR.search(lowered) is not None
        terms = extract_search_terms(lowered)

        if is_search:
            intent = QueryIntent.SEARCH
        elif terms and profile is not None and profile.interests:
            intent = QueryIntent.MIXED
        elif terms and (profile is None or not profile.interests):
            intent = QueryIntent.SEARCH
        else:
            intent = QueryIntent.PROFILE_BASED

        return AnalyzedQuery(
            improved_query=(message or "").strip(),
            search_terms=terms,
            intent=intent,
            ignore_profile=is_search,
        )


def extract_search_terms(text: str) -> list[str]:
    """Known abbreviations first, then the remaining content words."""

    lowered = (text or "").lower()
    terms: list[str] = []
    consumed = lowered
    # Longest abbreviations first so "comp sci" wins over a bare token.
    for abbr in sorted(ABBREVIATIONS, key=len, reverse=True):
        if abbr in STOP_WORDS:
            continue
        pattern = re.compile(rf"\b{re.escape(abbr)}\b")
        if pattern.search(consumed):
            terms.append(abbr)
            consumed = pattern.sub(" ", consumed)

    for token in _TOKEN.findall(consumed):
        token = token.strip("-'")
        if len(token) <= 2 or token in STOP_WORDS or token.isdigit():
            continue
        if token not in terms:
            terms.append(token)
    return terms


class _StructuredAnalysis(BaseModel):
    """Schema requested from the chat model."""

    improved_query: str = Field(description="The question rewritten as a clear search request.")
    search_terms: list[str] = Field(
        default_factory=list,
        description="Subject or career keywords, lower-case, no filler words.",
    )
    intent: QueryIntent = Field(
        description="search for explicit lookups, profile_based for advice, mixed for both.",
    )
    ignore_profile: bool = Field(
        default=False,
        description="True when the learner asks about something unrelated to their profile.",
    )


_ANALYSIS_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            "You analyze questions sent to an education and career pathway advisor.\n"
            "Rewrite the question as a clear search request, extract subject keywords, "
            "and decide whether the learner wants a direct search, advice based on their "
            "profile, or both. Expand abbreviations such as 'comp sci'.",
        ),
        ("human", "Learner profile: {profile}\n\nQuestion: {message}"),
    ]
)


class LLMQueryAnalyzer:
    """Structured-output analysis through a LangChain chat model."""

    def __init__(self, llm: Any) -> None:
        self.llm = llm
        self._chain = _ANALYSIS_PROMPT | llm.with_structured_output(_StructuredAnalysis)

    def analyze(self, message: str, profile: UserProfileContext | None = None) -> AnalyzedQuery:
        try:
            return self._analyze(message, profile)
        except UpstreamAnalysisDegraded as exc:
            logger.warning("Query analysis degraded: %s", exc)
            return AnalyzedQuery.degraded_default(message)

    def _analyze(self, message: str, profile: UserProfileContext | None) -> AnalyzedQuery:
        profile_text = profile.model_dump_json(exclude_none=True) if profile else "none"
        try:
            raw = self._chain.invoke({"message": message, "profile": profile_text})
        except Exception as exc:
            raise UpstreamAnalysisDegraded(f"{type(exc).__name__}: {exc}") from exc
        if not isinstance(raw, _StructuredAnalysis):
            raise UpstreamAnalysisDegraded(f"unexpected analysis payload: {type(raw).__name__}")
        return AnalyzedQuery(
            improved_query=raw.improved_query or message,
            search_terms=raw.search_terms,
            intent=raw.intent,
            ignore_profile=raw.ignore_profile,
        )
