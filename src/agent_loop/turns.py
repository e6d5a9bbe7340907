"""Conversation turns and the append-only conversation state.

A turn is a tagged union on ``role``: routing code branches on the concrete
class instead of probing for optional fields.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import ProtocolViolation


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


class ToolCallRequest(BaseModel):
    """A model's request to run one named tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    id: str = Field(default_factory=new_call_id)


class UserTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user"] = "user"
    content: Any = ""
    sender: str | None = None


class AssistantTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["assistant"] = "assistant"
    content: Any = ""
    requested_calls: tuple[ToolCallRequest, ...] = ()
    sender: str | None = None
    # Set only by a grading step.
    verdict: Literal["yes", "no"] | None = None

    @property
    def text(self) -> str:
        return self.content if isinstance(self.content, str) else str(self.content or "")


class ToolResultTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["tool"] = "tool"
    call_id: str
    name: str
    content: Any = ""
    is_error: bool = False


Turn = Annotated[Union[UserTurn, AssistantTurn, ToolResultTurn], Field(discriminator="role")]


class ConversationState(BaseModel):
    """Ordered, append-only sequence of turns.

    ``extend`` never mutates; it returns a new state and rejects tool results
    that do not answer an open request of the preceding assistant turn.
    """

    model_config = ConfigDict(frozen=True)

    turns: tuple[Turn, ...] = ()

    def __len__(self) -> int:
        return len(self.turns)

    @property
    def last(self) -> UserTurn | AssistantTurn | ToolResultTurn | None:
        return self.turns[-1] if self.turns else None

    def extend(self, *turns: UserTurn | AssistantTurn | ToolResultTurn) -> "ConversationState":
        combined = self.turns + tuple(turns)
        for idx in range(len(self.turns), len(combined)):
            if isinstance(combined[idx], ToolResultTurn):
                _check_tool_result(combined, idx)
        return ConversationState(turns=combined)

    def first_user_content(self) -> Any:
        for turn in self.turns:
            if isinstance(turn, UserTurn):
                return turn.content
        raise ProtocolViolation("Conversation has no user turn")

    def last_tool_result(self) -> ToolResultTurn | None:
        for turn in reversed(self.turns):
            if isinstance(turn, ToolResultTurn):
                return turn
        return None

    def pending_calls(self) -> tuple[ToolCallRequest, ...]:
        """Requests of the latest assistant turn that have no result yet."""
        resolved: set[str] = set()
        for turn in reversed(self.turns):
            if isinstance(turn, ToolResultTurn):
                resolved.add(turn.call_id)
                continue
            if isinstance(turn, AssistantTurn):
                return tuple(call for call in turn.requested_calls if call.id not in resolved)
            return ()
        return ()

    def last_sender(self) -> str | None:
        for turn in reversed(self.turns):
            if isinstance(turn, (UserTurn, AssistantTurn)) and turn.sender:
                return turn.sender
        return None


def _check_tool_result(turns: tuple[Any, ...], idx: int) -> None:
    result = turns[idx]
    resolved: set[str] = set()
    pos = idx - 1
    while pos >= 0 and isinstance(turns[pos], ToolResultTurn):
        resolved.add(turns[pos].call_id)
        pos -= 1
    if pos < 0 or not isinstance(turns[pos], AssistantTurn):
        raise ProtocolViolation(
            "Tool result has no preceding assistant turn",
            {"call_id": result.call_id},
        )
    open_ids = {call.id for call in turns[pos].requested_calls} - resolved
    if result.call_id not in open_ids:
        raise ProtocolViolation(
            "Tool result does not match an unresolved tool call",
            {"call_id": result.call_id, "open": sorted(open_ids)},
        )
