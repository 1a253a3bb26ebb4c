"""Executes a query plan and merges tool results into one response."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from pathway_advisor.agent.planner import QueryPlan
from pathway_advisor.agent.tools import ToolCall
from pathway_advisor.errors import ToolExecutionFailed
from pathway_advisor.retrieval.gateway import RetrievalGateway
from pathway_advisor.types import (
    CallFailure,
    CollectionStats,
    ScoredRecord,
    ToolResult,
    ToolTrace,
    UnifiedResponse,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CallOutcome:
    """Success or failure of a single planned call."""

    call: ToolCall
    result: ToolResult | None = None
    error: ToolExecutionFailed | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Aggregator:
    """Runs plan calls strictly in order and never stops on a failed call."""

    def __init__(self, gateway: RetrievalGateway) -> None:
        self.gateway = gateway

    def run(
        self,
        plan: QueryPlan,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> list[CallOutcome]:
        outcomes: list[CallOutcome] = []
        for call in plan.calls:
            try:
                result = self.gateway.execute(call, observer=observer)
                outcomes.append(CallOutcome(call=call, result=result))
            except ToolExecutionFailed as exc:
                logger.warning(
                    "Tool %s (%s) failed, continuing plan: %s",
                    call.tool_name,
                    call.priority.value,
                    exc.reason,
                )
                outcomes.append(CallOutcome(call=call, error=exc))
        return outcomes

    def aggregate(
        self,
        plan: QueryPlan,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> UnifiedResponse:
        return merge_outcomes(self.run(plan, observer))


def merge_outcomes(outcomes: list[CallOutcome]) -> UnifiedResponse:
    """Route records by kind, keeping the first occurrence of each record id."""

    per_source: dict[str, list[ScoredRecord]] = {}
    seen: dict[str, set[str]] = {}
    executed: list[str] = []
    failures: list[CallFailure] = []
    stats: CollectionStats | None = None

    for outcome in outcomes:
        if not outcome.ok or outcome.result is None:
            failures.append(
                CallFailure(
                    tool_name=outcome.call.tool_name,
                    error=outcome.error.reason if outcome.error else "no result",
                )
            )
            continue
        executed.append(outcome.call.tool_name)
        if outcome.result.stats is not None and stats is None:
            stats = outcome.result.stats
        for item in outcome.result.records:
            kind = item.record.kind
            ids = seen.setdefault(kind, set())
            if item.record.id in ids:
                continue
            ids.add(item.record.id)
            per_source.setdefault(kind, []).append(item)

    return UnifiedResponse(
        per_source_results=per_source,
        queries_executed=executed,
        failed_queries=failures,
        total_results=sum(len(items) for items in per_source.values()),
        collection_stats=stats,
    )
