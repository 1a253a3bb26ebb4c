"""Retrieval gateway: cache-then-fetch execution of planned tool calls."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool

from pathway_advisor.agent.registry import ToolRegistry, ToolSpec
from pathway_advisor.agent.tools import ToolCall
from pathway_advisor.cache.keys import generate_key
from pathway_advisor.cache.store import CacheLayer, CacheOptions
from pathway_advisor.config import RetrievalConfig
from pathway_advisor.errors import RecordStoreError, ToolExecutionFailed
from pathway_advisor.types import ToolResult, ToolTrace

logger = logging.getLogger(__name__)


class RetrievalGateway:
    """Runs one tool call against the cache and, on a miss, the record store.

    Handlers run on a worker pool so every call is bounded by
    `tool_timeout_seconds`. Fresh results are written back to the cache on a
    separate writer thread; the caller never waits on that write.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        cache: CacheLayer,
        config: RetrievalConfig | None = None,
        *,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> None:
        self.registry = registry
        self.cache = cache
        self.config = config or RetrievalConfig()
        self._observer = observer
        self._workers = ThreadPoolExecutor(
            max_workers=self.config.worker_threads,
            thread_name_prefix="retrieval",
        )
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cache-writer")
        self._pending: set[Future[bool]] = set()
        self._pending_lock = threading.Lock()

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def execute(
        self,
        call: ToolCall,
        *,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> ToolResult:
        """Return the capped, ranked result for `call`.

        `observer` receives this call's trace only, in addition to the
        gateway-wide observer, so concurrent requests can each collect their own.

        Raises:
            ToolExecutionFailed: the tool is unknown, timed out, or errored.
            RecordStoreError: the record store raised while serving the call.
        """

        try:
            spec = self.registry.get(call.tool_name)
        except KeyError as exc:
            raise ToolExecutionFailed(call.tool_name, str(exc)) from exc

        cache_params = call.params.cache_params()
        key = generate_key(f"tool:{spec.name}", cache_params)
        start = perf_counter()

        cached = self.cache.get(key, ToolResult)
        if cached is not None:
            result = self._cap(spec, call, cached)
            self._emit(observer, spec.name, cache_params, result, start, cached=True)
            return result

        try:
            result = self._cap(spec, call, self._run(spec, call))
        except ToolExecutionFailed as exc:
            self._emit(observer, spec.name, cache_params, None, start, error=exc.reason)
            raise

        self._write_behind(key, spec, call, result)
        self._emit(observer, spec.name, cache_params, result, start)
        return result

    def effective_limit(self, spec: ToolSpec, call: ToolCall) -> int:
        """Per-call cap: explicit limit, else the tool default, never above the maximum."""

        absolute_max = self.config.absolute_max
        if call.params.get_all_matches:
            return absolute_max
        limit = call.params.limit or spec.default_limit or absolute_max
        return min(limit, absolute_max)

    def drain(self, timeout: float | None = None) -> None:
        """Wait for pending cache writes; used by tests and shutdown."""

        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        self.drain()
        self._writer.shutdown(wait=True)
        self._workers.shutdown(wait=False, cancel_futures=True)

    def as_langchain_tools(self) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self.registry.specs():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    func=self._build_function(spec),
                )
            )
        return tools

    def _build_function(self, spec: ToolSpec) -> Callable[..., str]:
        def _callable(**kwargs: Any) -> str:
            call = ToolCall.create(spec.name, **kwargs)
            return self.execute(call).model_dump_json()

        return _callable

    def _run(self, spec: ToolSpec, call: ToolCall) -> ToolResult:
        timeout = self.config.tool_timeout_seconds
        future = self._workers.submit(spec.invoke, call.params)
        try:
            return future.result(timeout=timeout)
        except TimeoutError as exc:
            future.cancel()
            raise ToolExecutionFailed(spec.name, f"timed out after {timeout:.1f}s") from exc
        except ToolExecutionFailed:
            raise
        except Exception as exc:
            raise RecordStoreError(spec.name, f"{type(exc).__name__}: {exc}") from exc

    def _cap(self, spec: ToolSpec, call: ToolCall, result: ToolResult) -> ToolResult:
        limit = self.effective_limit(spec, call)
        if len(result.records) <= limit:
            return result
        return result.model_copy(update={"records": result.records[:limit]})

    def _write_behind(self, key: str, spec: ToolSpec, call: ToolCall, result: ToolResult) -> None:
        statistics = "statistics" in spec.tags
        options = CacheOptions(
            ttl_seconds=self.cache.ttl_policy.for_tool(call.priority, statistics=statistics),
            tags=("tool", f"tool:{spec.name}", *spec.tags),
        )
        self.submit_write(key, result, options, {"tool": spec.name, "priority": call.priority.value})

    def submit_write(
        self,
        key: str,
        value: Any,
        options: CacheOptions,
        metadata: dict[str, Any] | None = None,
    ) -> Future[bool]:
        """Queue a cache write on the writer thread and return without waiting."""

        future = self._writer.submit(self.cache.set, key, value, options, metadata)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._on_write_done)
        return future

    def _on_write_done(self, future: Future[bool]) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("Cache write-behind failed: %s", exc)

    def _emit(
        self,
        call_observer: Callable[[ToolTrace], None] | None,
        name: str,
        payload: dict[str, Any],
        result: ToolResult | None,
        start: float,
        *,
        cached: bool = False,
        error: str | None = None,
    ) -> None:
        observers = [obs for obs in (self._observer, call_observer) if obs is not None]
        if not observers:
            return
        result_count = 0
        if result is not None:
            result_count = len(result.records) or (1 if result.stats is not None else 0)
        trace = ToolTrace(
            name=name,
            input_payload=payload,
            result_count=result_count,
            latency_ms=(perf_counter() - start) * 1000.0,
            cached=cached,
            error=error,
        )
        for observer in observers:
            observer(trace)
