"""Per-run trace: every consult, tool call and loop step in arrival order.

A trace is optional everywhere it is accepted. When one is passed, the loop
appends to it as it goes and the service writes it as a JSON file once the
run returns, so a run can be replayed step by step.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class TraceRecord:
    trace_id: str
    thread_id: str
    started_at: str = field(default_factory=now_utc_iso)
    finished_at: str | None = None
    latency_ms: int | None = None
    request: dict[str, Any] = field(default_factory=dict)
    llm: list[dict[str, Any]] = field(default_factory=list)
    tools: list[dict[str, Any]] = field(default_factory=list)
    steps: list[dict[str, Any]] = field(default_factory=list)
    outcome: dict[str, Any] = field(default_factory=dict)
    _clock: float = field(default_factory=time.monotonic, repr=False)

    @classmethod
    def start(
        cls,
        trace_id: str,
        thread_id: str,
        user_input: str | None,
        meta: dict[str, Any] | None = None,
    ) -> TraceRecord:
        return cls(trace_id=trace_id, thread_id=thread_id, request={"user_input": user_input, "meta": meta or {}})

    def consult(
        self,
        *,
        model: str,
        temperature: float,
        requested: list[dict[str, Any]],
        messages: list[dict[str, Any]] | None = None,
        finish_reason: str | None = None,
    ) -> None:
        self.llm.append(
            {
                "model": model,
                "temperature": temperature,
                "messages": messages or [],
                "requested": requested,
                "finish_reason": finish_reason,
            }
        )

    def tool(
        self,
        *,
        name: str,
        args: dict[str, Any],
        ok: bool,
        latency_ms: int | None,
        data: Any = None,
        error: dict[str, Any] | None = None,
    ) -> None:
        self.tools.append(
            {
                "tool_name": name,
                "args": args,
                "status": "ok" if ok else "error",
                "latency_ms": latency_ms,
                "data": data,
                "error": error,
            }
        )

    def step(self, *, step: int, state: str, next_state: str, turns: int) -> None:
        self.steps.append({"step": step, "state": state, "next_state": next_state, "turns": turns})

    def close(self, *, status: str, answer: str | None) -> None:
        self.outcome = {"status": status, "answer": answer}
        self.finished_at = now_utc_iso()
        self.latency_ms = int((time.monotonic() - self._clock) * 1000)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("_clock")
        return data

    def dump(self, trace_dir: str | Path) -> Path:
        directory = Path(trace_dir)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = self.started_at.replace(":", "-")
        path = directory / f"{stamp}_{self.trace_id}.json"
        path.write_text(json.dumps(self.to_dict(), ensure_ascii=False, indent=2, default=str), encoding="utf-8")
        return path
