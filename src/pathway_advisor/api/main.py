"""FastAPI entrypoint for recommendation, cache, and trace endpoints."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from pathway_advisor.agent.advisor import PathwayAdvisor
from pathway_advisor.agent.analyzer import KeywordQueryAnalyzer, LLMQueryAnalyzer
from pathway_advisor.agent.registry import ToolRegistry
from pathway_advisor.agent.synthesizer import LLMAnswerSynthesizer, TemplateAnswerSynthesizer
from pathway_advisor.agent.tools import register_builtin_tools
from pathway_advisor.cache.store import CacheLayer
from pathway_advisor.config import AdvisorConfig, CacheConfig, RetrievalConfig
from pathway_advisor.errors import InvalidRequest
from pathway_advisor.obs.tracing import TraceStore
from pathway_advisor.retrieval.gateway import RetrievalGateway
from pathway_advisor.retrieval.record_store import InMemoryRecordStore
from pathway_advisor.types import UserProfileContext

logger = logging.getLogger(__name__)

POPULAR_QUERIES = [
    "computer science",
    "nursing",
    "business",
    "engineering",
    "healthcare",
    "technology",
    "education",
    "hospitality",
    "agriculture",
    "marine biology",
]


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)


def _load_store() -> InMemoryRecordStore:
    data_dir = os.getenv("PATHWAY_DATA_DIR")
    if not data_dir:
        logger.warning("PATHWAY_DATA_DIR is not set; serving an empty record store")
        return InMemoryRecordStore()
    return InMemoryRecordStore.from_directory(data_dir)


class RecommendRequest(BaseModel):
    message: str
    profile: UserProfileContext | None = None


class InvalidateRequest(BaseModel):
    tag: str = Field(min_length=1)


class WarmupRequest(BaseModel):
    messages: list[str] = Field(default_factory=lambda: list(POPULAR_QUERIES))
    profile: UserProfileContext | None = None


app = FastAPI(title="Pathway Advisor", version="0.1.0")

_retrieval_config = RetrievalConfig()
_store = _load_store()
_registry = ToolRegistry()
register_builtin_tools(_registry, _store, config=_retrieval_config)

_cache = CacheLayer(CacheConfig())
_gateway = RetrievalGateway(_registry, _cache, _retrieval_config)
_trace_store = TraceStore()
_llm = _create_llm()
_advisor = PathwayAdvisor(
    gateway=_gateway,
    analyzer=LLMQueryAnalyzer(_llm) if _llm is not None else KeywordQueryAnalyzer(),
    synthesizer=LLMAnswerSynthesizer(_llm) if _llm is not None else TemplateAnswerSynthesizer(),
    trace_store=_trace_store,
    config=AdvisorConfig(),
)


@app.get("/health")
def health() -> dict[str, Any]:
    stats = _store.collection_stats()
    return {
        "status": "ok",
        "llm_configured": _llm is not None,
        "analyzer_mode": "langchain" if _llm is not None else "keyword",
        "tools": _registry.names(),
        "records": {
            "education_programs": stats.total_education_programs,
            "pathway_programs": stats.total_pathway_programs,
            "career_stats": stats.total_career_stats,
        },
        "trace_count": len(_trace_store.list_recent(limit=1000)),
    }


@app.post("/recommend")
def recommend(request: RecommendRequest) -> dict[str, Any]:
    try:
        reply = _advisor.handle(request.message, request.profile)
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    payload = reply.model_dump(mode="json", exclude={"profile_fingerprint"})
    payload["queries_executed"] = reply.queries_executed
    payload["total_results"] = reply.total_results
    return payload


@app.get("/cache/stats")
def cache_stats() -> dict[str, Any]:
    return _cache.stats().model_dump()


@app.post("/cache/invalidate")
def cache_invalidate(request: InvalidateRequest) -> dict[str, Any]:
    removed = _cache.invalidate_by_tag(request.tag)
    if removed == 0:
        raise HTTPException(status_code=404, detail=f"No cache entries tagged {request.tag!r}")
    return {"tag": request.tag, "removed": removed}


@app.post("/cache/warmup")
def cache_warmup(request: WarmupRequest) -> dict[str, Any]:
    statuses = _advisor.warm_up(request.messages, request.profile)
    return {"warmed": list(statuses.values()).count("warmed"), "items": statuses}


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
