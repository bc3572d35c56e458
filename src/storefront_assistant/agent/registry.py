"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from time import perf_counter
from typing import Any, Literal

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from storefront_assistant.obs.logger import get_logger
from storefront_assistant.types import ToolTrace

logger = get_logger(__name__)


class ToolError(BaseModel):
    """Structured failure fed back to the model instead of raising."""

    tool: str
    kind: Literal["error"] = "error"
    error: Literal["unknown_tool", "invalid_arguments", "timeout", "failed"]
    detail: str = ""


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[Any], Awaitable[BaseModel]]
    tags: list[str] = Field(default_factory=list)

    async def invoke(self, payload: dict[str, Any]) -> BaseModel:
        data = self.args_schema.model_validate(payload)
        return await self.handler(data)


class ToolRegistry:
    """Name-keyed tool dispatch that never lets a tool failure escape a turn."""

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None
        self._timeout_seconds = timeout_seconds

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def names(self) -> list[str]:
        return list(self._tools)

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    async def execute(self, name: str, payload: dict[str, Any]) -> BaseModel:
        spec = self._tools.get(name)
        if spec is None:
            result: BaseModel = ToolError(tool=name, error="unknown_tool", detail=f"Unknown tool: {name}")
            self._notify(name, payload, result, 0.0, "error")
            return result
        return await self._execute_spec(spec, payload)

    def as_langchain_tools(self) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    coroutine=self._build_coroutine(spec),
                )
            )
        return tools

    def _build_coroutine(self, spec: ToolSpec) -> Callable[..., Awaitable[str]]:
        async def _callable(**kwargs: Any) -> str:
            result = await self._execute_spec(spec, kwargs)
            return result.model_dump_json(exclude_none=True)

        return _callable

    async def _execute_spec(self, spec: ToolSpec, payload: dict[str, Any]) -> BaseModel:
        start = perf_counter()
        status = "ok"
        try:
            result = await asyncio.wait_for(spec.invoke(payload), timeout=self._timeout_seconds)
        except ValidationError as exc:
            status = "error"
            result = ToolError(
                tool=spec.name,
                error="invalid_arguments",
                detail=str(exc.errors(include_url=False))[:300],
            )
        except asyncio.TimeoutError:
            status = "error"
            result = ToolError(tool=spec.name, error="timeout", detail="Tool timed out")
        except Exception as exc:
            logger.warning("Tool %s failed: %s", spec.name, exc)
            status = "error"
            result = ToolError(tool=spec.name, error="failed", detail="Tool execution failed")
        latency_ms = (perf_counter() - start) * 1000.0
        self._notify(spec.name, payload, result, latency_ms, status)
        return result

    def _notify(
        self,
        name: str,
        payload: dict[str, Any],
        result: BaseModel,
        latency_ms: float,
        status: str,
    ) -> None:
        if self._observer is None:
            return
        self._observer(
            ToolTrace(
                name=name,
                input_payload=payload,
                output_preview=result.model_dump_json(exclude_none=True)[:320],
                latency_ms=latency_ms,
                status=status,
            )
        )
