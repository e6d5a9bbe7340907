"""Tool registry and the tool execution layer.

This isolates tool invocation details (validation, threads, timeouts,
errors) from the loop's routing logic. Every failure becomes a
``ToolExecutionError`` payload; nothing here raises for a bad request.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

from pydantic import BaseModel, ValidationError

from .errors import ToolExecutionError
from .logging import get_logger
from .trace import TraceRecord
from .turns import ToolCallRequest, ToolResultTurn

logger = get_logger("tools")

ToolHandler = Callable[[Any], Any]


@dataclass(frozen=True)
class ToolDefinition:
    """A named tool: argument schema plus the function that runs it."""

    name: str
    description: str
    input_model: type[BaseModel]
    handler: ToolHandler


class ToolOutcome(BaseModel):
    """Unified result wrapper for one tool call."""

    ok: bool
    tool_name: str
    data: Any | None = None
    error: ToolExecutionError | None = None
    latency_ms: int | None = None

    def render(self) -> Any:
        if self.ok:
            return self.data
        return self.error.render() if self.error else "Error: unknown tool failure"


class ToolRegistry:
    def __init__(self, tools: Iterable[ToolDefinition] = ()) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Duplicate tool name: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolDefinition | None:
        # Exact match only.
        return self._tools.get(name)

    def specs(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def subset(self, names: Iterable[str]) -> "ToolRegistry":
        missing = [name for name in names if name not in self._tools]
        if missing:
            raise KeyError(f"Unknown tools: {', '.join(missing)}")
        return ToolRegistry(self._tools[name] for name in names)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


class ToolExecutor:
    def __init__(self, registry: ToolRegistry, timeout_s: float | None = None) -> None:
        self._registry = registry
        self._timeout_s = timeout_s

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def execute(
        self,
        name: str,
        args: dict[str, Any],
        trace: TraceRecord | None = None,
    ) -> ToolOutcome:
        start = time.time()
        tool = self._registry.get(name)
        if tool is None:
            outcome = ToolOutcome(
                ok=False,
                tool_name=name,
                error=ToolExecutionError(
                    code="NOT_FOUND",
                    message=f"Unknown tool: {name}. Available tools: {', '.join(self._registry.names()) or 'none'}",
                ),
            )
            return self._finish(outcome, args, start, trace)

        try:
            input_obj = tool.input_model.model_validate(args)
        except ValidationError as exc:
            outcome = ToolOutcome(
                ok=False,
                tool_name=name,
                error=ToolExecutionError(
                    code="INVALID_ARGUMENT",
                    message=f"Invalid arguments for {name}: {exc.error_count()} validation error(s)",
                    details={"errors": exc.errors(include_url=False, include_context=False)},
                ),
            )
            return self._finish(outcome, args, start, trace)

        try:
            result = await asyncio.wait_for(_invoke(tool.handler, input_obj), timeout=self._timeout_s)
            outcome = ToolOutcome(ok=True, tool_name=name, data=_to_payload(result))
        except asyncio.TimeoutError:
            outcome = ToolOutcome(
                ok=False,
                tool_name=name,
                error=ToolExecutionError(code="TOOL_TIMEOUT", message=f"{name} timed out after {self._timeout_s}s"),
            )
        except Exception as exc:  # noqa: BLE001
            outcome = ToolOutcome(
                ok=False,
                tool_name=name,
                error=ToolExecutionError(code="TOOL_ERROR", message=str(exc) or type(exc).__name__),
            )
        return self._finish(outcome, args, start, trace)

    async def execute_all(
        self,
        calls: Sequence[ToolCallRequest],
        parallel: bool = True,
        trace: TraceRecord | None = None,
    ) -> list[ToolResultTurn]:
        """Run every request of one assistant turn; results keep request order."""
        if parallel and len(calls) > 1:
            outcomes = await asyncio.gather(*(self.execute(call.name, call.args, trace) for call in calls))
        else:
            outcomes = [await self.execute(call.name, call.args, trace) for call in calls]
        return [
            ToolResultTurn(call_id=call.id, name=call.name, content=outcome.render(), is_error=not outcome.ok)
            for call, outcome in zip(calls, outcomes)
        ]

    def _finish(
        self,
        outcome: ToolOutcome,
        args: dict[str, Any],
        start: float,
        trace: TraceRecord | None,
    ) -> ToolOutcome:
        outcome.latency_ms = int((time.time() - start) * 1000)
        logger.info(
            "tool_call" if outcome.ok else "tool_call_failed",
            extra={
                "extra": {
                    "tool": outcome.tool_name,
                    "latency_ms": outcome.latency_ms,
                    "ok": outcome.ok,
                    "error_code": outcome.error.code if outcome.error else None,
                }
            },
        )
        if trace is not None:
            trace.tool(
                name=outcome.tool_name,
                args=args,
                ok=outcome.ok,
                latency_ms=outcome.latency_ms,
                data=outcome.data if outcome.ok else None,
                error=outcome.error.model_dump() if outcome.error else None,
            )
        return outcome


async def _invoke(handler: ToolHandler, input_obj: BaseModel) -> Any:
    if inspect.iscoroutinefunction(handler):
        return await handler(input_obj)
    # Sync handlers may block on I/O; keep them off the event loop.
    return await asyncio.to_thread(handler, input_obj)


def _to_payload(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump()
    return result
