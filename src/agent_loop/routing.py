"""Routing decisions: pure functions of the conversation state.

None of these mutate state. Each one checks the shape of the latest turn
and raises ``ProtocolViolation`` when it was wired after the wrong step.
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence

from .errors import ProtocolViolation
from .turns import AssistantTurn, ConversationState


class Route(str, Enum):
    EXECUTE = "execute"
    TERMINATE = "terminate"
    HANDOFF = "handoff"
    GENERATE = "generate"
    REWRITE = "rewrite"


def _latest_assistant(state: ConversationState, router: str) -> AssistantTurn:
    last = state.last
    if not isinstance(last, AssistantTurn):
        raise ProtocolViolation(
            f"{router} expects the latest turn to be an assistant turn",
            {"role": getattr(last, "role", None)},
        )
    return last


def route_tools(state: ConversationState) -> Route:
    """Tool calls requested -> EXECUTE, otherwise the run is finished."""
    last = _latest_assistant(state, "route_tools")
    if last.requested_calls:
        return Route.EXECUTE
    return Route.TERMINATE


def route_handoff(state: ConversationState, sentinel: str) -> Route:
    last = _latest_assistant(state, "route_handoff")
    if last.requested_calls:
        return Route.EXECUTE
    if sentinel and sentinel in last.text:
        return Route.TERMINATE
    return Route.HANDOFF


def check_relevance(state: ConversationState) -> Route:
    last = _latest_assistant(state, "check_relevance")
    if last.verdict is None:
        raise ProtocolViolation("check_relevance expects a graded assistant turn")
    if last.verdict == "yes":
        return Route.GENERATE
    return Route.REWRITE


class HandoffTable:
    """Participant identity -> peer to hand off to.

    Participants are listed in order; each one hands off to the next and the
    last one wraps around to the first.
    """

    def __init__(self, participants: Sequence[str]) -> None:
        if len(participants) < 2:
            raise ValueError("A handoff needs at least two participants")
        if len(set(participants)) != len(participants):
            raise ValueError("Participant names must be unique")
        self._order = tuple(participants)
        self._peers = {
            name: participants[(idx + 1) % len(participants)] for idx, name in enumerate(participants)
        }

    @property
    def first(self) -> str:
        return self._order[0]

    @property
    def participants(self) -> tuple[str, ...]:
        return self._order

    def peer_of(self, sender: str | None) -> str:
        return self._peers[self._known(sender)]

    def return_to(self, sender: str | None) -> str:
        # Tool results go back to whoever asked for them.
        return self._known(sender)

    def _known(self, sender: str | None) -> str:
        if sender is None or sender not in self._peers:
            raise ProtocolViolation(
                "Unknown participant in handoff",
                {"sender": sender, "participants": list(self._order)},
            )
        return sender
