"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pathway_advisor.types import ToolResult


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[Any], ToolResult]
    default_limit: int | None = Field(default=None, ge=1)
    tags: list[str] = Field(default_factory=list)

    def validate_params(self, payload: BaseModel | dict[str, Any]) -> BaseModel:
        if isinstance(payload, self.args_schema):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        return self.args_schema.model_validate(payload)

    def invoke(self, payload: BaseModel | dict[str, Any]) -> ToolResult:
        return self.handler(self.validate_params(payload))


class ToolRegistry:
    """Stores retrieval tool specs by name."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec:
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return spec

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())
