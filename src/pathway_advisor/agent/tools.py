"""Retrieval tool parameters, tool calls, and built-in tool implementations."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

from pathway_advisor.agent.registry import ToolRegistry, ToolSpec
from pathway_advisor.config import RetrievalConfig
from pathway_advisor.retrieval.expander import expand_all
from pathway_advisor.retrieval.record_store import RecordFilter, RecordStore
from pathway_advisor.retrieval.scoring import (
    rank,
    resolve_region,
    score_career,
    score_pathway_profile,
    score_pathway_search,
    score_program_profile,
    score_program_search,
)
from pathway_advisor.types import CallPriority, ScoredRecord, ToolResult, UserProfileContext


class ToolName(str, Enum):
    GET_EDUCATION_PROGRAMS = "get_education_programs"
    GET_PATHWAY_PROGRAMS = "get_pathway_programs"
    GET_EDUCATION_PATHWAYS = "get_education_pathways"
    SEARCH_PROGRAMS = "search_programs"
    GET_COLLECTION_STATS = "get_collection_stats"
    GET_CAREER_DATA = "get_career_data"


class _ToolParams(BaseModel):
    """Fields shared by every tool.

    Keys a tool does not declare are kept in `extra_params` instead of being
    rejected; they never influence retrieval or cache keys.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    ignore_profile: bool = False
    get_all_matches: bool = False
    limit: int | None = Field(default=None, ge=1)
    extra_params: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_extras(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        known: set[str] = set()
        for name, info in cls.model_fields.items():
            known.add(name)
            if info.alias:
                known.add(info.alias)
        extras = dict(data.get("extra_params") or data.get("extraParams") or {})
        cleaned: dict[str, Any] = {}
        for key, value in data.items():
            if key in ("extra_params", "extraParams"):
                continue
            if key in known:
                cleaned[key] = value
            else:
                extras[key] = value
        cleaned["extra_params"] = extras
        return cleaned

    def cache_params(self) -> dict[str, Any]:
        """Params that identify the request, in JSON form."""
        return self.model_dump(mode="json", exclude={"extra_params"}, exclude_none=True)


class EducationProgramsParams(_ToolParams):
    tool: Literal["get_education_programs"] = "get_education_programs"
    interests: tuple[str, ...] = ()
    career_goals: tuple[str, ...] = ()
    education_level: str | None = None
    grade_level: int | None = Field(default=None, ge=1, le=12)
    location: str | None = None
    degree_types: tuple[str, ...] = ()
    campuses: tuple[str, ...] = ()


class PathwayProgramsParams(_ToolParams):
    tool: Literal["get_pathway_programs"] = "get_pathway_programs"
    interests: tuple[str, ...] = ()
    career_goals: tuple[str, ...] = ()
    grade_level: int | None = Field(default=None, ge=1, le=12)
    career_clusters: tuple[str, ...] = ()


class EducationPathwaysParams(_ToolParams):
    tool: Literal["get_education_pathways"] = "get_education_pathways"
    pathway_program_id: str | None = None
    interests: tuple[str, ...] = ()
    grade_level: int | None = Field(default=None, ge=1, le=12)
    location: str | None = None


class SearchProgramsParams(_ToolParams):
    tool: Literal["search_programs"] = "search_programs"
    query: str = Field(min_length=1)
    expanded_terms: tuple[str, ...] | None = None
    scope: Literal["all", "programs", "pathways"] = "all"


class CollectionStatsParams(_ToolParams):
    tool: Literal["get_collection_stats"] = "get_collection_stats"


class CareerDataParams(_ToolParams):
    tool: Literal["get_career_data"] = "get_career_data"
    interests: tuple[str, ...] = ()
    program_name: str | None = None


ToolParams = Annotated[
    EducationProgramsParams
    | PathwayProgramsParams
    | EducationPathwaysParams
    | SearchProgramsParams
    | CollectionStatsParams
    | CareerDataParams,
    Field(discriminator="tool"),
]

_PARAMS_ADAPTER: TypeAdapter[ToolParams] = TypeAdapter(ToolParams)


class ToolCall(BaseModel):
    """One planned retrieval call; consumed exactly once by the aggregator."""

    model_config = ConfigDict(frozen=True)

    params: ToolParams
    priority: CallPriority = CallPriority.SUPPORTING

    @property
    def tool_name(self) -> str:
        return self.params.tool

    @classmethod
    def create(
        cls,
        tool: ToolName | str,
        *,
        priority: CallPriority = CallPriority.SUPPORTING,
        **params: Any,
    ) -> "ToolCall":
        name = tool.value if isinstance(tool, ToolName) else tool
        return cls(
            params=_PARAMS_ADAPTER.validate_python({**params, "tool": name}),
            priority=priority,
        )


def register_builtin_tools(
    registry: ToolRegistry,
    store: RecordStore,
    *,
    config: RetrievalConfig | None = None,
) -> None:
    """Register the retrieval tools backed by `store`.

    Tools:
    - `get_education_programs`: post-secondary programs, profile or search scored.
    - `get_pathway_programs`: secondary pathways with course sequences.
    - `get_education_pathways`: pathways linked to downstream programs.
    - `search_programs`: cross-collection keyword search.
    - `get_collection_stats`: overview counts.
    - `get_career_data`: labor-market statistics with demand boosts.

    Handlers return every scored candidate in rank order; capping is the
    gateway's job.
    """

    cfg = config or RetrievalConfig()

    def _fetch_limit(params: _ToolParams) -> int | None:
        return None if params.get_all_matches else cfg.max_initial_fetch

    def _education_programs(params: EducationProgramsParams) -> ToolResult:
        raw_terms = [*params.interests, *params.career_goals]
        terms = expand_all(raw_terms)
        candidates = store.find_education_programs(
            RecordFilter(
                terms=tuple(terms),
                degree_types=params.degree_types,
                campuses=params.campuses,
                fetch_limit=_fetch_limit(params),
            )
        )
        if params.ignore_profile:
            scored = [
                ScoredRecord(record=c, score=score_program_search(c, terms), source_tool=params.tool)
                for c in candidates
            ]
        else:
            profile = _profile_from(params)
            scored = [
                ScoredRecord(record=c, score=score_program_profile(c, profile), source_tool=params.tool)
                for c in candidates
            ]
        return ToolResult(records=rank(scored), total_available=len(candidates))

    def _pathway_programs(params: PathwayProgramsParams) -> ToolResult:
        terms = expand_all([*params.interests, *params.career_goals])
        candidates = store.find_pathway_programs(
            RecordFilter(
                terms=tuple(terms),
                career_clusters=params.career_clusters,
                fetch_limit=_fetch_limit(params),
            )
        )
        return ToolResult(
            records=_score_pathways(candidates, params, terms),
            total_available=len(candidates),
        )

    def _education_pathways(params: EducationPathwaysParams) -> ToolResult:
        terms = expand_all(params.interests)
        candidates = store.find_linked_pathways(
            RecordFilter(
                terms=tuple(terms),
                region=resolve_region(params.location),
                pathway_program_id=params.pathway_program_id,
                fetch_limit=_fetch_limit(params),
            )
        )
        return ToolResult(
            records=_score_pathways(candidates, params, terms),
            total_available=len(candidates),
        )

    def _search(params: SearchProgramsParams) -> ToolResult:
        terms = list(params.expanded_terms) if params.expanded_terms else expand_all([params.query])
        record_filter = RecordFilter(terms=tuple(terms), fetch_limit=_fetch_limit(params))
        scored: list[ScoredRecord] = []
        total = 0
        if params.scope in ("all", "programs"):
            programs = store.find_education_programs(record_filter)
            total += len(programs)
            scored.extend(
                ScoredRecord(record=p, score=score_program_search(p, terms), source_tool=params.tool)
                for p in programs
            )
        if params.scope in ("all", "pathways"):
            pathways = store.find_pathway_programs(record_filter)
            total += len(pathways)
            scored.extend(
                ScoredRecord(record=p, score=score_pathway_search(p, terms), source_tool=params.tool)
                for p in pathways
            )
        return ToolResult(records=rank(scored), total_available=total)

    def _collection_stats(params: CollectionStatsParams) -> ToolResult:
        del params
        return ToolResult(stats=store.collection_stats())

    def _career_data(params: CareerDataParams) -> ToolResult:
        raw_terms = [*params.interests]
        if params.program_name:
            raw_terms.append(params.program_name)
        terms = expand_all(raw_terms)
        candidates = store.find_career_stats(RecordFilter(fetch_limit=_fetch_limit(params)))
        scored = [
            ScoredRecord(record=c, score=score_career(c, terms), source_tool=params.tool)
            for c in candidates
        ]
        if terms:
            scored = [item for item in scored if item.score > 0]
        return ToolResult(records=rank(scored), total_available=len(candidates))

    def _score_pathways(
        candidates: list[Any],
        params: PathwayProgramsParams | EducationPathwaysParams,
        terms: list[str],
    ) -> list[ScoredRecord]:
        if params.ignore_profile:
            scored = [
                ScoredRecord(record=c, score=score_pathway_search(c, terms), source_tool=params.tool)
                for c in candidates
            ]
        else:
            profile = UserProfileContext(interests=params.interests, grade_level=params.grade_level)
            scored = [
                ScoredRecord(record=c, score=score_pathway_profile(c, profile), source_tool=params.tool)
                for c in candidates
            ]
        return rank(scored)

    registry.register(
        ToolSpec(
            name=ToolName.GET_EDUCATION_PROGRAMS.value,
            description="Post-secondary programs ranked against the learner profile or search terms.",
            args_schema=EducationProgramsParams,
            handler=_education_programs,
            default_limit=cfg.education_programs_limit,
            tags=["programs"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.GET_PATHWAY_PROGRAMS.value,
            description="Secondary-school pathway programs with grade-by-grade course sequences.",
            args_schema=PathwayProgramsParams,
            handler=_pathway_programs,
            default_limit=cfg.pathway_programs_limit,
            tags=["pathways", "coursework"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.GET_EDUCATION_PATHWAYS.value,
            description="Pathways linking secondary programs to downstream programs, by region.",
            args_schema=EducationPathwaysParams,
            handler=_education_pathways,
            default_limit=cfg.education_pathways_limit,
            tags=["pathways"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.SEARCH_PROGRAMS.value,
            description="Keyword search across programs and pathways with term expansion.",
            args_schema=SearchProgramsParams,
            handler=_search,
            default_limit=cfg.search_limit,
            tags=["search"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.GET_COLLECTION_STATS.value,
            description="Overview counts for every record collection.",
            args_schema=CollectionStatsParams,
            handler=_collection_stats,
            tags=["statistics"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.GET_CAREER_DATA.value,
            description="Labor-market statistics for subject areas, boosted by posting volume.",
            args_schema=CareerDataParams,
            handler=_career_data,
            default_limit=cfg.career_data_limit,
            tags=["careers", "labor-market"],
        )
    )


def _profile_from(params: EducationProgramsParams) -> UserProfileContext:
    return UserProfileContext(
        education_level=params.education_level,
        grade_level=params.grade_level,
        interests=params.interests,
        career_goals=params.career_goals,
        location=params.location,
    )
