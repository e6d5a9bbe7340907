"""Multi-agent handoff loop.

Several participants share one conversation and one tool step. Each agent
turn is labelled with its sender; tool results return to that sender, plain
replies hand the work to the peer, and a reply containing the termination
sentinel ends the run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .loop import AgentLoop, AnyTurn, LoopConfig, expect_assistant
from .model import ModelCollaborator
from .prompts import HANDOFF_SYSTEM
from .routing import HandoffTable, Route, route_handoff
from .states import LoopState
from .tools import ToolRegistry
from .trace import TraceRecord
from .turns import AssistantTurn, ConversationState, ToolResultTurn, UserTurn


@dataclass(frozen=True)
class Participant:
    name: str
    tools: tuple[str, ...] = ()
    system_message: str = ""
    # Falls back to the loop's model.
    model: ModelCollaborator | None = None


class HandoffLoop(AgentLoop):
    def __init__(
        self,
        config: LoopConfig,
        participants: Sequence[Participant],
        sentinel: str = "FINAL ANSWER",
    ) -> None:
        super().__init__(config)
        self._table = HandoffTable([participant.name for participant in participants])
        self._participants = {participant.name: participant for participant in participants}
        self._sentinel = sentinel
        self._toolsets: dict[str, ToolRegistry] = {
            participant.name: config.tools.subset(participant.tools) for participant in participants
        }

    @property
    def table(self) -> HandoffTable:
        return self._table

    def system_prompt_for(self, name: str) -> str:
        participant = self._participants[name]
        return HANDOFF_SYSTEM.format(
            sentinel=self._sentinel,
            tool_names=", ".join(participant.tools) or "none",
            system_message=participant.system_message,
        )

    def speaker(self, state: ConversationState) -> str:
        """Which participant consults next, derived from the latest turn."""
        last = state.last
        if isinstance(last, ToolResultTurn):
            return self._table.return_to(state.last_sender())
        if isinstance(last, AssistantTurn):
            return self._table.peer_of(last.sender)
        if isinstance(last, UserTurn) and last.sender in self._participants:
            return last.sender
        return self._table.first

    def next_state(self, current: LoopState, state: ConversationState) -> LoopState:
        if current is LoopState.CONSULT:
            route = route_handoff(state, self._sentinel)
            if route is Route.EXECUTE:
                return LoopState.EXECUTE
            if route is Route.TERMINATE:
                return LoopState.TERMINATE
            # HANDOFF: the peer consults next.
            return LoopState.CONSULT
        return super().next_state(current, state)

    async def _consult(self, state: ConversationState, trace: TraceRecord | None) -> Sequence[AnyTurn]:
        name = self.speaker(state)
        participant = self._participants[name]
        model = participant.model or self._config.model
        turn = await model.consult(
            state.turns,
            self._toolsets[name].specs(),
            system_prompt=self.system_prompt_for(name),
            perspective=name,
            trace=trace,
        )
        return [expect_assistant(turn).model_copy(update={"sender": name})]
