"""States of the agent/tool control loop."""

from __future__ import annotations

from enum import Enum


class LoopState(str, Enum):
    INIT = "init"
    CONSULT = "consult"
    ROUTE = "route"
    EXECUTE = "execute"
    GRADE = "grade"
    REWRITE = "rewrite"
    GENERATE = "generate"
    INTERRUPT = "interrupt"
    TERMINATE = "terminate"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    CANCELLED = "cancelled"
