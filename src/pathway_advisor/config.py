"""Configuration models for the advisory backend."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RetrievalConfig(BaseModel):
    """Configures per-tool result caps and retrieval timeouts."""

    education_programs_limit: int = Field(default=50, ge=1)
    pathway_programs_limit: int = Field(default=30, ge=1)
    education_pathways_limit: int = Field(default=50, ge=1)
    search_limit: int = Field(default=40, ge=1)
    career_data_limit: int = Field(default=20, ge=1)
    absolute_max: int = Field(default=200, ge=1)
    max_initial_fetch: int = Field(default=500, ge=1)
    tool_timeout_seconds: float = Field(default=5.0, gt=0.0)
    worker_threads: int = Field(default=4, ge=1)


class CacheConfig(BaseModel):
    """Configures TTLs and the bounded similarity index."""

    max_entries: int = Field(default=2048, ge=1)
    primary_ttl_seconds: int = Field(default=300, ge=1)
    supporting_ttl_seconds: int = Field(default=1800, ge=1)
    stats_ttl_seconds: int = Field(default=3600, ge=1)
    empty_answer_ttl_seconds: int = Field(default=60, ge=1)
    answer_ttl_seconds: int = Field(default=3600, ge=1)
    similarity_max_entries: int = Field(default=512, ge=1)
    popular_queries_limit: int = Field(default=10, ge=1)


class AdvisorConfig(BaseModel):
    """Configures the end-to-end request pipeline."""

    similarity_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    share_answers_across_profiles: bool = False
    synthesis_timeout_seconds: float = Field(default=20.0, gt=0.0)
    max_suggested_questions: int = Field(default=5, ge=0)
