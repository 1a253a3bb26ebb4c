"""Error taxonomy for the advisory pipeline.

Only `InvalidRequest` ever reaches a caller. Everything else is raised at the
point of failure and absorbed one layer up, degrading the answer to fewer
results.
"""

from __future__ import annotations


class AdvisorError(Exception):
    """Base class for all pipeline errors."""


class InvalidRequest(AdvisorError):
    """The inbound request itself is malformed."""


class UpstreamAnalysisDegraded(AdvisorError):
    """Query analysis failed; a degraded default analysis is used instead."""


class ToolExecutionFailed(AdvisorError):
    """A retrieval call errored or timed out."""

    def __init__(self, tool_name: str, reason: str) -> None:
        super().__init__(f"{tool_name}: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class RecordStoreError(ToolExecutionFailed):
    """The record store collaborator itself failed."""


class CacheUnavailable(AdvisorError):
    """The cache backend errored on read or write."""
