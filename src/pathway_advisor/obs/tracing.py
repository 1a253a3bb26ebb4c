"""Request tracing and latency accounting."""

from __future__ import annotations

import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone

from pathway_advisor.types import ToolTrace


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    message: str
    route: str
    tool_traces: list[ToolTrace]
    total_results: int
    latency_ms: float
    answer_source: str


class TraceStore:
    """Bounded in-memory trace storage for API-level observability."""

    def __init__(self, max_records: int = 1000) -> None:
        self._records: deque[TraceRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        message: str,
        route: str,
        tool_traces: list[ToolTrace],
        total_results: int,
        latency_ms: float,
        answer_source: str,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            message=message,
            route=route,
            tool_traces=tool_traces,
            total_results=total_results,
            latency_ms=latency_ms,
            answer_source=answer_source,
        )
        with self._lock:
            self._records.append(record)
        return record

    def get(self, trace_id: str) -> TraceRecord:
        with self._lock:
            for record in self._records:
                if record.trace_id == trace_id:
                    return record
        raise KeyError(f"Trace not found: {trace_id}")

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        with self._lock:
            records = list(self._records)
        return records[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate latency and tool metrics for dashboard display."""
        with self._lock:
            records = list(self._records)
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "tool_calls": 0,
                "tool_failures": 0,
                "cached_tool_calls": 0,
                "cached_answers": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        traces = [trace for record in records for trace in record.tool_traces]
        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "tool_calls": len(traces),
            "tool_failures": sum(1 for trace in traces if trace.error),
            "cached_tool_calls": sum(1 for trace in traces if trace.cached),
            "cached_answers": sum(1 for record in records if record.answer_source != "fresh"),
        }


class Timer:
    """Simple context timer."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
