"""Error kinds raised or carried by the control loop."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ToolExecutionError(BaseModel):
    """Normalized failure payload for a single tool call.

    Never raised: it travels inside a failed tool outcome and is rendered
    into the tool-result turn so the model can react to it.
    """

    code: str
    message: str
    details: dict[str, Any] | None = None

    def render(self) -> str:
        return f"Error ({self.code}): {self.message}"


class LoopError(RuntimeError):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ProtocolViolation(LoopError):
    """Wiring bug: a turn of the wrong shape reached a routing step."""


class UpstreamUnavailable(LoopError):
    """Model or grading collaborator could not be reached."""


class RateLimited(LoopError):
    """Model or grading collaborator rejected the call for rate reasons."""


class CheckpointNotFound(LoopError):
    def __init__(self, thread_id: str) -> None:
        super().__init__(f"No checkpoint for thread: {thread_id}", {"thread_id": thread_id})
        self.thread_id = thread_id


class StepLimitExceeded(LoopError):
    """Loop ran more steps than its configured recursion limit."""
