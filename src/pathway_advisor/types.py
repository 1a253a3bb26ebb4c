"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RecordKind(str, Enum):
    EDUCATION_PROGRAM = "education_program"
    PATHWAY_PROGRAM = "pathway_program"
    CAREER_STAT = "career_stat"


class EducationProgram(BaseModel):
    """A post-secondary program listing (degree or certificate at a campus)."""

    kind: Literal["education_program"] = "education_program"
    id: str
    program_name: str
    campus: str | None = None
    degree: str | None = None
    cip_category: str | None = None
    description: str | None = None
    search_keywords: list[str] = Field(default_factory=list)
    career_outcomes: list[str] = Field(default_factory=list)
    estimated_duration: str | None = None
    delivery_mode: str | None = None


class LinkedProgram(BaseModel):
    campus: str | None = None
    program_name: str
    degree: str | None = None


class PathwayCourseSequence(BaseModel):
    """A secondary-school program of study with its course sequence."""

    kind: Literal["pathway_program"] = "pathway_program"
    id: str
    program_of_study: str
    career_cluster: str | None = None
    search_keywords: list[str] = Field(default_factory=list)
    course_sequence: dict[str, list[str]] = Field(default_factory=dict)
    grad_requirements: list[str] = Field(default_factory=list)
    linked_programs: list[LinkedProgram] = Field(default_factory=list)


class CareerStat(BaseModel):
    """Labor-market statistics for one subject area."""

    kind: Literal["career_stat"] = "career_stat"
    id: str
    cip_code: str | None = None
    subject_area: str
    median_salary: float | None = None
    unique_companies: int = 0
    unique_postings: int = 0


Record = Annotated[
    EducationProgram | PathwayCourseSequence | CareerStat,
    Field(discriminator="kind"),
]


class ScoredRecord(BaseModel):
    """A candidate record with its relevance score and originating tool."""

    record: Record
    score: float
    source_tool: str


class CollectionStats(BaseModel):
    total_education_programs: int = 0
    total_pathway_programs: int = 0
    total_linked_pathways: int = 0
    total_career_stats: int = 0
    campuses: list[str] = Field(default_factory=list)
    degrees: list[str] = Field(default_factory=list)
    career_clusters: list[str] = Field(default_factory=list)


class ToolResult(BaseModel):
    """Output of one tool execution; this is what the gateway caches."""

    records: list[ScoredRecord] = Field(default_factory=list)
    total_available: int = 0
    stats: CollectionStats | None = None


def _normalize_terms(values: Any) -> tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        values = [values]
    seen: list[str] = []
    for value in values:
        term = str(value).strip().lower()
        if term and term not in seen:
            seen.append(term)
    return tuple(seen)


class UserProfileContext(BaseModel):
    """Caller-owned learner profile; read-only inside the core."""

    model_config = ConfigDict(frozen=True)

    education_level: str | None = None
    grade_level: int | None = Field(default=None, ge=1, le=12)
    interests: tuple[str, ...] = ()
    career_goals: tuple[str, ...] = ()
    location: str | None = None
    timeline: str | None = None

    @field_validator("interests", "career_goals", mode="before")
    @classmethod
    def _dedupe(cls, value: Any) -> tuple[str, ...]:
        return _normalize_terms(value)


class CallPriority(str, Enum):
    PRIMARY = "primary"
    SUPPORTING = "supporting"


class QueryIntent(str, Enum):
    SEARCH = "search"
    PROFILE_BASED = "profile_based"
    MIXED = "mixed"


class AnalyzedQuery(BaseModel):
    """Result of the external query analysis for one request."""

    model_config = ConfigDict(frozen=True)

    improved_query: str
    search_terms: tuple[str, ...] = ()
    intent: QueryIntent = QueryIntent.PROFILE_BASED
    ignore_profile: bool = False
    degraded: bool = False

    @field_validator("search_terms", mode="before")
    @classmethod
    def _dedupe(cls, value: Any) -> tuple[str, ...]:
        return _normalize_terms(value)

    @classmethod
    def degraded_default(cls, message: str) -> "AnalyzedQuery":
        """Fallback used when analysis fails upstream."""
        return cls(
            improved_query=message,
            search_terms=(),
            intent=QueryIntent.PROFILE_BASED,
            ignore_profile=False,
            degraded=True,
        )


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    result_count: int
    latency_ms: float
    cached: bool = False
    error: str | None = None


class CallFailure(BaseModel):
    tool_name: str
    error: str


class UnifiedResponse(BaseModel):
    """Merged, already ranked and capped output of one query plan."""

    per_source_results: dict[str, list[ScoredRecord]] = Field(default_factory=dict)
    queries_executed: list[str] = Field(default_factory=list)
    failed_queries: list[CallFailure] = Field(default_factory=list)
    total_results: int = 0
    collection_stats: CollectionStats | None = None

    def results_for(self, kind: RecordKind) -> list[ScoredRecord]:
        return self.per_source_results.get(kind.value, [])
