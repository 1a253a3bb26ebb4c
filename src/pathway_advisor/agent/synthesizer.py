"""Answer-synthesis collaborators.

Both synthesizers receive data that is already ranked and capped. They narrate
it in the given order and never re-rank or drop records.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate

from pathway_advisor.types import (
    AnalyzedQuery,
    CareerStat,
    EducationProgram,
    PathwayCourseSequence,
    RecordKind,
    ScoredRecord,
    UnifiedResponse,
    UserProfileContext,
)

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """
You are an education and career pathway advisor.

Rules:
1) Narrate only the records listed under DATA; never invent programs, pathways, or salaries.
2) The records are already ranked. Keep their order; do not re-rank, re-filter, or drop records.
3) If DATA is empty, say you could not find matching options and suggest refining the question.
4) Keep answers short, friendly, and concrete about next steps.
""".strip()

_SECTION_TITLES = {
    RecordKind.EDUCATION_PROGRAM: "Programs",
    RecordKind.PATHWAY_PROGRAM: "High school pathways",
    RecordKind.CAREER_STAT: "Career outlook",
}


class AnswerSynthesizer(Protocol):
    def synthesize(
        self,
        response: UnifiedResponse,
        analysis: AnalyzedQuery,
        profile: UserProfileContext | None = None,
    ) -> str:
        """Narrate the response; never raises."""


class TemplateAnswerSynthesizer:
    """Deterministic narration used offline and as the fallback path."""

    def __init__(self, *, per_section: int = 5) -> None:
        self.per_section = per_section

    def synthesize(
        self,
        response: UnifiedResponse,
        analysis: AnalyzedQuery,
        profile: UserProfileContext | None = None,
    ) -> str:
        del profile
        topic = analysis.improved_query.strip() or "your question"
        if response.total_results == 0:
            lines = [
                f'I could not find matching options for "{topic}" right now.',
                "Try naming a subject, a career, or a campus you are interested in.",
            ]
            stats = response.collection_stats
            if stats is not None and stats.total_education_programs:
                lines.append(
                    f"The catalog lists {stats.total_education_programs} programs "
                    f"across {len(stats.campuses)} campuses."
                )
            return "\n".join(lines)

        lines = [f'Here is what I found for "{topic}" ({response.total_results} results).']
        lines.extend(render_sections(response, per_section=self.per_section))
        return "\n".join(lines)


class LLMAnswerSynthesizer:
    """LangChain prompt | chat model | string parser, falling back to the template."""

    def __init__(
        self,
        llm: Any,
        *,
        fallback: TemplateAnswerSynthesizer | None = None,
        per_section: int = 10,
    ) -> None:
        self.llm = llm
        self.fallback = fallback or TemplateAnswerSynthesizer()
        self.per_section = per_section
        prompt = ChatPromptTemplate.from_messages(
            [
                ("system", _SYSTEM_PROMPT),
                ("human", "Learner profile: {profile}\n\nQuestion: {question}\n\nDATA:\n{data}"),
            ]
        )
        self._chain = prompt | llm | StrOutputParser()

    def synthesize(
        self,
        response: UnifiedResponse,
        analysis: AnalyzedQuery,
        profile: UserProfileContext | None = None,
    ) -> str:
        data = "\n".join(render_sections(response, per_section=self.per_section)) or "(no records)"
        try:
            answer = self._chain.invoke(
                {
                    "profile": profile.model_dump_json(exclude_none=True) if profile else "none",
                    "question": analysis.improved_query,
                    "data": data,
                }
            )
        except Exception as exc:
            logger.warning("Answer synthesis failed, using template narration: %s", exc)
            return self.fallback.synthesize(response, analysis, profile)
        if not answer.strip():
            return self.fallback.synthesize(response, analysis, profile)
        return answer.strip()


def render_sections(response: UnifiedResponse, *, per_section: int) -> list[str]:
    """Render each record kind in rank order, one line per record."""

    lines: list[str] = []
    for kind, title in _SECTION_TITLES.items():
        items = response.results_for(kind)
        if not items:
            continue
        lines.append(f"{title}:")
        lines.extend(f"- {describe_record(item)}" for item in items[:per_section])
        if len(items) > per_section:
            lines.append(f"- ...and {len(items) - per_section} more")
    return lines


def describe_record(item: ScoredRecord) -> str:
    record = item.record
    if isinstance(record, EducationProgram):
        details = ", ".join(part for part in (record.degree, record.campus) if part)
        return f"{record.program_name} ({details})" if details else record.program_name
    if isinstance(record, PathwayCourseSequence):
        if record.career_cluster:
            return f"{record.program_of_study} ({record.career_cluster})"
        return record.program_of_study
    if isinstance(record, CareerStat):
        parts = [record.subject_area]
        if record.median_salary:
            parts.append(f"median salary ${record.median_salary:,.0f}")
        if record.unique_postings:
            parts.append(f"{record.unique_postings} job postings")
        return ", ".join(parts)
    return str(record)
