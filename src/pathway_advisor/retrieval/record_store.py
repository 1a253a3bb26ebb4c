"""Record store interfaces and a deterministic in-memory adapter."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from pathway_advisor.retrieval.scoring import resolve_region
from pathway_advisor.types import (
    CareerStat,
    CollectionStats,
    EducationProgram,
    PathwayCourseSequence,
    Record,
)

logger = logging.getLogger(__name__)

_RECORD_ADAPTER: TypeAdapter[Record] = TypeAdapter(Record)


@dataclass(frozen=True, slots=True)
class RecordFilter:
    """Candidate filter built from tool parameters.

    `terms` are already expanded; a record passes when any term occurs in one
    of its searchable text fields. Empty sequences mean "no constraint".
    """

    terms: tuple[str, ...] = ()
    degree_types: tuple[str, ...] = ()
    campuses: tuple[str, ...] = ()
    career_clusters: tuple[str, ...] = ()
    region: str | None = None
    pathway_program_id: str | None = None
    fetch_limit: int | None = None


class RecordStore(Protocol):
    """Read-only record collections, one retrieval function per tool."""

    def find_education_programs(self, record_filter: RecordFilter) -> list[EducationProgram]:
        """Return unscored post-secondary program candidates."""

    def find_pathway_programs(self, record_filter: RecordFilter) -> list[PathwayCourseSequence]:
        """Return unscored secondary pathway candidates."""

    def find_linked_pathways(self, record_filter: RecordFilter) -> list[PathwayCourseSequence]:
        """Return pathways that link to at least one downstream program."""

    def find_career_stats(self, record_filter: RecordFilter) -> list[CareerStat]:
        """Return labor-market candidates."""

    def collection_stats(self) -> CollectionStats:
        """Return overview counts for every collection."""


class InMemoryRecordStore:
    """Deterministic record store used for tests and local serving.

    Each collection is kept sorted by record id, which pins the candidate order
    every retrieval function returns.
    """

    def __init__(
        self,
        *,
        programs: list[EducationProgram] | None = None,
        pathways: list[PathwayCourseSequence] | None = None,
        careers: list[CareerStat] | None = None,
    ) -> None:
        self._programs = sorted(programs or [], key=lambda r: r.id)
        self._pathways = sorted(pathways or [], key=lambda r: r.id)
        self._careers = sorted(careers or [], key=lambda r: r.id)

    @classmethod
    def from_jsonl(cls, *paths: str | Path) -> "InMemoryRecordStore":
        """Load records of any kind from JSONL files, dispatching on `kind`."""

        programs: list[EducationProgram] = []
        pathways: list[PathwayCourseSequence] = []
        careers: list[CareerStat] = []
        for path in paths:
            with Path(path).open(encoding="utf-8") as handle:
                for line_no, line in enumerate(handle, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = _RECORD_ADAPTER.validate_python(json.loads(line))
                    except (json.JSONDecodeError, ValidationError) as exc:
                        logger.warning("Skipping invalid record %s:%d: %s", path, line_no, exc)
                        continue
                    if isinstance(record, EducationProgram):
                        programs.append(record)
                    elif isinstance(record, PathwayCourseSequence):
                        pathways.append(record)
                    else:
                        careers.append(record)
        logger.info(
            "Loaded %d programs, %d pathways, %d career stats",
            len(programs),
            len(pathways),
            len(careers),
        )
        return cls(programs=programs, pathways=pathways, careers=careers)

    @classmethod
    def from_directory(cls, directory: str | Path) -> "InMemoryRecordStore":
        return cls.from_jsonl(*sorted(Path(directory).glob("*.jsonl")))

    def find_education_programs(self, record_filter: RecordFilter) -> list[EducationProgram]:
        degree_types = {d.lower() for d in record_filter.degree_types}
        campuses = {c.lower() for c in record_filter.campuses}
        matches: list[EducationProgram] = []
        for program in self._programs:
            if degree_types and (program.degree or "").lower() not in degree_types:
                continue
            if campuses and (program.campus or "").lower() not in campuses:
                continue
            if not _matches_terms(record_filter.terms, _program_text(program), program.search_keywords):
                continue
            matches.append(program)
        return _take(matches, record_filter.fetch_limit)

    def find_pathway_programs(self, record_filter: RecordFilter) -> list[PathwayCourseSequence]:
        clusters = {c.lower() for c in record_filter.career_clusters}
        matches: list[PathwayCourseSequence] = []
        for pathway in self._pathways:
            if clusters and (pathway.career_cluster or "").lower() not in clusters:
                continue
            if not _matches_terms(record_filter.terms, _pathway_text(pathway), pathway.search_keywords):
                continue
            matches.append(pathway)
        return _take(matches, record_filter.fetch_limit)

    def find_linked_pathways(self, record_filter: RecordFilter) -> list[PathwayCourseSequence]:
        matches: list[PathwayCourseSequence] = []
        for pathway in self._pathways:
            if record_filter.pathway_program_id and pathway.id != record_filter.pathway_program_id:
                continue
            if not _matches_terms(record_filter.terms, _pathway_text(pathway), pathway.search_keywords):
                continue
            linked = pathway.linked_programs
            if record_filter.region:
                linked = [
                    p for p in linked if resolve_region(p.campus) == record_filter.region
                ]
            if not linked:
                continue
            if len(linked) != len(pathway.linked_programs):
                pathway = pathway.model_copy(update={"linked_programs": linked})
            matches.append(pathway)
        return _take(matches, record_filter.fetch_limit)

    def find_career_stats(self, record_filter: RecordFilter) -> list[CareerStat]:
        return _take(list(self._careers), record_filter.fetch_limit)

    def collection_stats(self) -> CollectionStats:
        return CollectionStats(
            total_education_programs=len(self._programs),
            total_pathway_programs=len(self._pathways),
            total_linked_pathways=sum(len(p.linked_programs) for p in self._pathways),
            total_career_stats=len(self._careers),
            campuses=sorted({p.campus for p in self._programs if p.campus}),
            degrees=sorted({p.degree for p in self._programs if p.degree}),
            career_clusters=sorted({p.career_cluster for p in self._pathways if p.career_cluster}),
        )


def _program_text(program: EducationProgram) -> list[str]:
    return [
        program.program_name,
        program.cip_category or "",
        program.description or "",
        program.campus or "",
        program.degree or "",
        *program.career_outcomes,
    ]


def _pathway_text(pathway: PathwayCourseSequence) -> list[str]:
    return [pathway.program_of_study, pathway.career_cluster or ""]


def _matches_terms(terms: tuple[str, ...], texts: list[str], keywords: list[str]) -> bool:
    if not terms:
        return True
    lowered = [text.lower() for text in texts if text]
    keyword_set = {k.lower() for k in keywords}
    for term in terms:
        term_lower = term.lower()
        if term_lower in keyword_set:
            return True
        if any(term_lower in text for text in lowered):
            return True
    return False


def _take(items: list, limit: int | None) -> list:
    if limit is None:
        return items
    return items[:limit]
