"""FastAPI entry for the loop server."""

from __future__ import annotations

import os
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from agent_loop.errors import (
    CheckpointNotFound,
    LoopError,
    ProtocolViolation,
    RateLimited,
    StepLimitExceeded,
    UpstreamUnavailable,
)
from agent_loop.logging import get_logger
from agent_loop.settings import get_settings
from demo_tools.tools import list_tool_definitions

from .executor import MessageRequest, ResumeRequest, handle_message, handle_resume, load_thread
from .workflows import WORKFLOWS

app = FastAPI(title="Agent Loop Server", version="0.1.0")
logger = get_logger("loop_server")

_STATUS_BY_ERROR: list[tuple[type[LoopError], int]] = [
    (CheckpointNotFound, 404),
    (ProtocolViolation, 409),
    (RateLimited, 429),
    (StepLimitExceeded, 422),
    (UpstreamUnavailable, 503),
]


@app.on_event("startup")
def log_startup_config() -> None:
    settings = get_settings()
    logger.info(
        "loop_server_config",
        extra={
            "extra": {
                "openai_model": settings.openai_model,
                "mock_llm": settings.mock_llm,
                "openai_key_set": bool(settings.openai_api_key),
                "checkpoint_backend": settings.checkpoint_backend,
                "max_steps": settings.max_steps,
                "env_mock_llm": os.environ.get("AGENT_LOOP_MOCK_LLM"),
            }
        },
    )


@app.exception_handler(LoopError)
async def loop_error_handler(request: Request, exc: LoopError) -> JSONResponse:
    status_code = 500
    for kind, code in _STATUS_BY_ERROR:
        if isinstance(exc, kind):
            status_code = code
            break
    logger.info(
        "loop_error",
        extra={
            "extra": {
                "path": request.url.path,
                "error": type(exc).__name__,
                "message": exc.message,
                "status_code": status_code,
            }
        },
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": type(exc).__name__, "message": exc.message, "details": exc.details}},
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/agent-card")
def agent_card() -> dict[str, object]:
    return {
        "name": "agent-loop",
        "version": "0.1.0",
        "description": "Agent/tool control loop with retrieval grading, handoff and pause/resume.",
        "workflows": sorted(WORKFLOWS),
        "tools": [{"name": tool.name, "description": tool.description} for tool in list_tool_definitions()],
        "endpoints": {
            "message": "/v1/threads/{thread_id}/messages",
            "resume": "/v1/threads/{thread_id}/resume",
            "thread": "/v1/threads/{thread_id}",
        },
    }


def _trace_id(request: Request) -> str:
    # Preserve incoming trace_id if provided, else generate one.
    return request.headers.get("x-trace-id") or str(uuid.uuid4())


def _check_workflow(name: str) -> None:
    if name not in WORKFLOWS:
        raise HTTPException(status_code=400, detail=f"Unknown workflow: {name}")


@app.post("/v1/threads/{thread_id}/messages")
async def post_message(thread_id: str, payload: MessageRequest, request: Request):
    _check_workflow(payload.workflow)
    return await handle_message(thread_id, payload, _trace_id(request))


@app.post("/v1/threads/{thread_id}/resume")
async def post_resume(thread_id: str, request: Request, payload: ResumeRequest | None = None):
    payload = payload or ResumeRequest()
    _check_workflow(payload.workflow)
    return await handle_resume(thread_id, payload, _trace_id(request))


@app.get("/v1/threads/{thread_id}")
async def get_thread(thread_id: str):
    checkpoint = await load_thread(thread_id)
    return checkpoint.model_dump(mode="json")
