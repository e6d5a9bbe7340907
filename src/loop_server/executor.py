"""Protocol adapter for incoming requests.

Keep this layer thin so protocol changes do not affect core loop logic.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import BaseModel, Field

from agent_loop.checkpoint import Checkpoint, FileCheckpointer, MemoryCheckpointer, build_checkpointer
from agent_loop.loop import LoopResult
from agent_loop.settings import get_settings
from agent_loop.trace import TraceRecord

from .workflows import build_workflow


class MessageRequest(BaseModel):
    content: str = Field(..., min_length=1)
    workflow: str = "simple_agent"


class ResumeRequest(BaseModel):
    workflow: str = "human_in_the_loop"


class RunResponse(BaseModel):
    thread_id: str
    trace_id: str
    status: str
    next_state: str
    steps: int
    answer: str | None = None
    pending_calls: list[dict[str, Any]] = Field(default_factory=list)
    turns: list[dict[str, Any]] = Field(default_factory=list)


@lru_cache(maxsize=1)
def get_checkpointer() -> MemoryCheckpointer | FileCheckpointer:
    # One store per process so threads survive across requests.
    return build_checkpointer(get_settings())


async def handle_message(thread_id: str, payload: MessageRequest, trace_id: str) -> RunResponse:
    settings = get_settings()
    loop = build_workflow(payload.workflow, settings, get_checkpointer())
    trace = TraceRecord.start(trace_id, thread_id, payload.content, {"workflow": payload.workflow})
    result = await loop.run(thread_id, payload.content, trace=trace)
    return _respond(result, trace)


async def handle_resume(thread_id: str, payload: ResumeRequest, trace_id: str) -> RunResponse:
    settings = get_settings()
    loop = build_workflow(payload.workflow, settings, get_checkpointer())
    trace = TraceRecord.start(trace_id, thread_id, None, {"workflow": payload.workflow, "resume": True})
    result = await loop.resume(thread_id, trace=trace)
    return _respond(result, trace)


async def load_thread(thread_id: str) -> Checkpoint:
    return await get_checkpointer().load_latest(thread_id)


def _respond(result: LoopResult, trace: TraceRecord) -> RunResponse:
    settings = get_settings()
    answer = result.answer
    trace.close(status=result.status.value, answer=answer)
    if settings.trace_enabled:
        trace.dump(settings.trace_dir)

    return RunResponse(
        thread_id=result.thread_id,
        trace_id=trace.trace_id,
        status=result.status.value,
        next_state=result.next_state.value,
        steps=result.steps,
        answer=answer,
        pending_calls=result.pending_calls,
        turns=[turn.model_dump(mode="json") for turn in result.state.turns],
    )
