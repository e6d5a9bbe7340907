"""The agent/tool control loop.

Design goals:
- One step at a time: every step appends turns, then a routing decision
  picks the next state.
- Persist after every completed step so a run can pause before any state
  and be resumed later from the same thread id.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, NamedTuple, Sequence

from .checkpoint import Checkpoint, Checkpointer
from .errors import CheckpointNotFound, ProtocolViolation, RateLimited, StepLimitExceeded, UpstreamUnavailable
from .logging import get_logger
from .model import ModelCollaborator
from .routing import Route, route_tools
from .states import LoopState, RunStatus
from .tools import ToolExecutor, ToolRegistry
from .trace import TraceRecord
from .turns import AssistantTurn, ConversationState, ToolResultTurn, UserTurn

logger = get_logger("loop")

AnyTurn = UserTurn | AssistantTurn | ToolResultTurn
StepHandler = Callable[[ConversationState, TraceRecord | None], Awaitable[Sequence[AnyTurn]]]


@dataclass
class LoopConfig:
    model: ModelCollaborator
    tools: ToolRegistry = field(default_factory=ToolRegistry)
    checkpointer: Checkpointer | None = None
    interrupt_before: frozenset[LoopState] = frozenset()
    max_steps: int = 25
    parallel_tools: bool = True
    tool_timeout_s: float | None = None
    system_prompt: str | None = None


class CancellationToken:
    """Checked between steps; a step that already started always completes."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class StepUpdate(NamedTuple):
    """Snapshot emitted after each completed step."""

    state: LoopState
    conversation: ConversationState
    next_state: LoopState
    step: int


@dataclass
class LoopResult:
    thread_id: str
    status: RunStatus
    state: ConversationState
    next_state: LoopState
    steps: int

    @property
    def answer(self) -> str | None:
        # A paused or cancelled run has no answer yet; older replies belong to earlier runs.
        if self.status is not RunStatus.COMPLETED:
            return None
        for turn in reversed(self.state.turns):
            if isinstance(turn, AssistantTurn) and turn.verdict is None and not turn.requested_calls:
                return turn.text
        return None

    @property
    def pending_calls(self) -> list[dict]:
        if self.status is RunStatus.COMPLETED:
            return []
        return [call.model_dump() for call in self.state.pending_calls()]


@dataclass
class _Outcome:
    state: ConversationState
    next_state: LoopState
    status: RunStatus = RunStatus.COMPLETED
    steps: int = 0

    def result(self, thread_id: str) -> LoopResult:
        return LoopResult(thread_id, self.status, self.state, self.next_state, self.steps)


class AgentLoop:
    """CONSULT -> ROUTE -> (EXECUTE -> CONSULT)* -> TERMINATE."""

    def __init__(self, config: LoopConfig) -> None:
        self._config = config
        self._executor = ToolExecutor(config.tools, timeout_s=config.tool_timeout_s)
        self._handlers: dict[LoopState, StepHandler] = {
            LoopState.CONSULT: self._consult,
            LoopState.EXECUTE: self._execute,
        }

    @property
    def config(self) -> LoopConfig:
        return self._config

    async def run(
        self,
        thread_id: str,
        user_input: str | UserTurn | None = None,
        *,
        history: Sequence[AnyTurn] = (),
        trace: TraceRecord | None = None,
        cancel: CancellationToken | None = None,
    ) -> LoopResult:
        """Start a run: seed the state, then drive it until it stops."""
        outcome = _Outcome(ConversationState(), LoopState.INIT)
        async for _ in self._start(thread_id, user_input, history, trace, cancel, outcome):
            pass
        return outcome.result(thread_id)

    async def stream(
        self,
        thread_id: str,
        user_input: str | UserTurn | None = None,
        *,
        history: Sequence[AnyTurn] = (),
        trace: TraceRecord | None = None,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[StepUpdate]:
        """Same as ``run``, yielding a ``StepUpdate`` after every completed step."""
        outcome = _Outcome(ConversationState(), LoopState.INIT)
        async for update in self._start(thread_id, user_input, history, trace, cancel, outcome):
            yield update

    async def resume(
        self,
        thread_id: str,
        *,
        trace: TraceRecord | None = None,
        cancel: CancellationToken | None = None,
    ) -> LoopResult:
        """Re-enter the state a thread was suspended at, without new input."""
        outcome = _Outcome(ConversationState(), LoopState.INIT)
        async for _ in self._resume(thread_id, trace, cancel, outcome):
            pass
        return outcome.result(thread_id)

    async def stream_resume(
        self,
        thread_id: str,
        *,
        trace: TraceRecord | None = None,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[StepUpdate]:
        outcome = _Outcome(ConversationState(), LoopState.INIT)
        async for update in self._resume(thread_id, trace, cancel, outcome):
            yield update

    def entry_state(self, state: ConversationState) -> LoopState:
        # History may end mid-call (e.g. replayed turns with open requests).
        if state.pending_calls():
            return LoopState.EXECUTE
        return LoopState.CONSULT

    def next_state(self, current: LoopState, state: ConversationState) -> LoopState:
        """ROUTE: the edge taken after ``current`` completed."""
        if current is LoopState.CONSULT:
            return LoopState.EXECUTE if route_tools(state) is Route.EXECUTE else LoopState.TERMINATE
        if current is LoopState.EXECUTE:
            return LoopState.CONSULT
        raise ProtocolViolation(f"No edge out of state {current.value}")

    def visible_turns(self, state: ConversationState) -> Sequence[AnyTurn]:
        return state.turns

    async def _start(
        self,
        thread_id: str,
        user_input: str | UserTurn | None,
        history: Sequence[AnyTurn],
        trace: TraceRecord | None,
        cancel: CancellationToken | None,
        outcome: _Outcome,
    ) -> AsyncIterator[StepUpdate]:
        base, step = ConversationState(), 0
        checkpointer = self._config.checkpointer
        if checkpointer is not None:
            try:
                checkpoint = await checkpointer.load_latest(thread_id)
            except CheckpointNotFound:
                logger.info("thread_started", extra={"extra": {"thread_id": thread_id}})
            else:
                if checkpoint.suspended:
                    raise ProtocolViolation(
                        "Thread is suspended mid-run; resume it before sending new input",
                        {"thread_id": thread_id, "next_state": checkpoint.next_state.value},
                    )
                base, step = checkpoint.state, checkpoint.step

        state = base
        if history:
            state = state.extend(*history)
        if user_input is not None:
            turn = user_input if isinstance(user_input, UserTurn) else UserTurn(content=user_input)
            state = state.extend(turn)
        if state.last is None:
            raise ProtocolViolation("Nothing to run: no input and no history", {"thread_id": thread_id})

        entry = self.entry_state(state)
        await self._save(thread_id, step, entry, state)
        try:
            async for update in self._drive(thread_id, state, entry, step, trace, cancel, outcome, resumed=False):
                yield update
        except (RateLimited, UpstreamUnavailable) as exc:
            # Put the thread back where this run found it so the caller can retry the same input.
            await self._save(thread_id, step, LoopState.TERMINATE, base)
            logger.info(
                "run_rolled_back",
                extra={"extra": {"thread_id": thread_id, "step": step, "error": type(exc).__name__}},
            )
            raise

    async def _resume(
        self,
        thread_id: str,
        trace: TraceRecord | None,
        cancel: CancellationToken | None,
        outcome: _Outcome,
    ) -> AsyncIterator[StepUpdate]:
        if self._config.checkpointer is None:
            raise ProtocolViolation("Resume needs a checkpointer", {"thread_id": thread_id})
        checkpoint = await self._config.checkpointer.load_latest(thread_id)
        logger.info(
            "thread_resumed",
            extra={"extra": {"thread_id": thread_id, "step": checkpoint.step, "next_state": checkpoint.next_state.value}},
        )
        async for update in self._drive(
            thread_id,
            checkpoint.state,
            checkpoint.next_state,
            checkpoint.step,
            trace,
            cancel,
            outcome,
            resumed=True,
        ):
            yield update

    async def _drive(
        self,
        thread_id: str,
        state: ConversationState,
        current: LoopState,
        step: int,
        trace: TraceRecord | None,
        cancel: CancellationToken | None,
        outcome: _Outcome,
        resumed: bool,
    ) -> AsyncIterator[StepUpdate]:
        outcome.state, outcome.next_state = state, current
        skip_interrupt = resumed
        while current is not LoopState.TERMINATE:
            if cancel is not None and cancel.cancelled:
                logger.info(
                    "loop_cancelled",
                    extra={"extra": {"thread_id": thread_id, "step": step, "next_state": current.value}},
                )
                outcome.status = RunStatus.CANCELLED
                return
            if current in self._config.interrupt_before and not skip_interrupt:
                logger.info(
                    "loop_interrupted",
                    extra={"extra": {"thread_id": thread_id, "step": step, "next_state": current.value}},
                )
                outcome.status = RunStatus.INTERRUPTED
                return
            skip_interrupt = False
            if outcome.steps >= self._config.max_steps:
                raise StepLimitExceeded(
                    f"Loop exceeded {self._config.max_steps} steps",
                    {"thread_id": thread_id, "state": current.value},
                )

            handler = self._handlers.get(current)
            if handler is None:
                raise ProtocolViolation(f"No handler for state {current.value}", {"thread_id": thread_id})
            new_turns = await handler(state, trace)
            state = state.extend(*new_turns)
            following = self.next_state(current, state)
            step += 1
            outcome.steps += 1
            await self._save(thread_id, step, following, state)
            logger.info(
                "loop_step",
                extra={
                    "extra": {
                        "thread_id": thread_id,
                        "step": step,
                        "state": current.value,
                        "next_state": following.value,
                        "turns": len(state),
                    }
                },
            )
            if trace is not None:
                trace.step(step=step, state=current.value, next_state=following.value, turns=len(state))
            outcome.state, outcome.next_state = state, following
            yield StepUpdate(current, state, following, step)
            current = following

        outcome.status = RunStatus.COMPLETED

    async def _save(self, thread_id: str, step: int, next_state: LoopState, state: ConversationState) -> None:
        if self._config.checkpointer is None:
            return
        await self._config.checkpointer.append(
            thread_id,
            Checkpoint(thread_id=thread_id, step=step, next_state=next_state, state=state),
        )

    async def _consult(self, state: ConversationState, trace: TraceRecord | None) -> Sequence[AnyTurn]:
        turn = await self._config.model.consult(
            self.visible_turns(state),
            self._config.tools.specs(),
            system_prompt=self._config.system_prompt,
            trace=trace,
        )
        return [expect_assistant(turn)]

    async def _execute(self, state: ConversationState, trace: TraceRecord | None) -> Sequence[AnyTurn]:
        calls = state.pending_calls()
        if not calls:
            raise ProtocolViolation("EXECUTE reached without pending tool calls")
        return await self._executor.execute_all(calls, parallel=self._config.parallel_tools, trace=trace)


def expect_assistant(turn: object) -> AssistantTurn:
    if not isinstance(turn, AssistantTurn):
        raise ProtocolViolation(
            "Model collaborator must return an assistant turn",
            {"type": type(turn).__name__},
        )
    return turn
