"""Pathway Advisor package."""

from .config import AdvisorConfig, CacheConfig, RetrievalConfig

__all__ = ["AdvisorConfig", "CacheConfig", "RetrievalConfig"]
