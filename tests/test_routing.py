import pytest

from agent_loop.errors import ProtocolViolation
from agent_loop.routing import HandoffTable, Route, check_relevance, route_handoff, route_tools
from agent_loop.turns import AssistantTurn, ConversationState, ToolCallRequest, ToolResultTurn, UserTurn


def _state(*turns):
    return ConversationState().extend(*turns)


CALL = ToolCallRequest(name="search", args={"query": "x"}, id="c1")


def test_route_tools():
    assert route_tools(_state(UserTurn(content="q"), AssistantTurn(requested_calls=(CALL,)))) is Route.EXECUTE
    assert route_tools(_state(UserTurn(content="q"), AssistantTurn(content="done"))) is Route.TERMINATE


def test_route_tools_rejects_wrong_turn():
    with pytest.raises(ProtocolViolation):
        route_tools(_state(UserTurn(content="q")))
    with pytest.raises(ProtocolViolation):
        route_tools(
            _state(
                UserTurn(content="q"),
                AssistantTurn(requested_calls=(CALL,)),
                ToolResultTurn(call_id="c1", name="search", content="r"),
            )
        )


def test_routing_is_deterministic():
    state = _state(UserTurn(content="q"), AssistantTurn(requested_calls=(CALL,)))
    assert {route_tools(state) for _ in range(5)} == {Route.EXECUTE}


def test_route_handoff():
    base = _state(UserTurn(content="q"))
    assert route_handoff(base.extend(AssistantTurn(requested_calls=(CALL,), content="FINAL ANSWER")), "FINAL ANSWER") is Route.EXECUTE
    assert route_handoff(base.extend(AssistantTurn(content="FINAL ANSWER: 42")), "FINAL ANSWER") is Route.TERMINATE
    assert route_handoff(base.extend(AssistantTurn(content="over to you")), "FINAL ANSWER") is Route.HANDOFF
    assert route_handoff(base.extend(AssistantTurn(content="DONE")), "DONE") is Route.TERMINATE


def test_check_relevance():
    base = _state(UserTurn(content="q"))
    assert check_relevance(base.extend(AssistantTurn(verdict="yes"))) is Route.GENERATE
    assert check_relevance(base.extend(AssistantTurn(verdict="no"))) is Route.REWRITE
    with pytest.raises(ProtocolViolation):
        check_relevance(base.extend(AssistantTurn(content="no verdict")))


def test_handoff_table():
    table = HandoffTable(["Researcher", "ChartGenerator"])
    assert table.first == "Researcher"
    assert table.peer_of("Researcher") == "ChartGenerator"
    assert table.peer_of("ChartGenerator") == "Researcher"
    assert table.return_to("ChartGenerator") == "ChartGenerator"
    with pytest.raises(ProtocolViolation):
        table.peer_of("Stranger")
    with pytest.raises(ProtocolViolation):
        table.return_to(None)
    with pytest.raises(ValueError):
        HandoffTable(["solo"])
