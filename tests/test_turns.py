import pytest
from pydantic import ValidationError

from agent_loop.errors import ProtocolViolation
from agent_loop.turns import AssistantTurn, ConversationState, ToolCallRequest, ToolResultTurn, UserTurn


def _two_calls() -> AssistantTurn:
    return AssistantTurn(
        requested_calls=(
            ToolCallRequest(name="get_weather", args={"location": "nyc"}, id="a"),
            ToolCallRequest(name="get_weather", args={"location": "sf"}, id="b"),
        )
    )


def test_extend_returns_new_state():
    state = ConversationState()
    grown = state.extend(UserTurn(content="hi"))
    assert len(state) == 0
    assert len(grown) == 1
    assert grown.last.content == "hi"


def test_turns_are_frozen():
    turn = UserTurn(content="hi")
    with pytest.raises(ValidationError):
        turn.content = "changed"


def test_tool_result_must_answer_open_request():
    state = ConversationState().extend(UserTurn(content="weather?"), _two_calls())
    state = state.extend(ToolResultTurn(call_id="a", name="get_weather", content="sunny"))
    assert [call.id for call in state.pending_calls()] == ["b"]

    with pytest.raises(ProtocolViolation):
        state.extend(ToolResultTurn(call_id="a", name="get_weather", content="again"))
    with pytest.raises(ProtocolViolation):
        state.extend(ToolResultTurn(call_id="zzz", name="get_weather", content="?"))


def test_tool_result_without_assistant_turn_is_rejected():
    with pytest.raises(ProtocolViolation):
        ConversationState().extend(UserTurn(content="hi"), ToolResultTurn(call_id="a", name="x"))


def test_pending_calls_empty_after_user_turn():
    state = ConversationState().extend(UserTurn(content="hi"))
    assert state.pending_calls() == ()


def test_state_json_keeps_turn_variants():
    state = ConversationState().extend(
        UserTurn(content="weather?"),
        _two_calls(),
        ToolResultTurn(call_id="a", name="get_weather", content="sunny"),
    )
    restored = ConversationState.model_validate_json(state.model_dump_json())
    assert [type(turn) for turn in restored.turns] == [UserTurn, AssistantTurn, ToolResultTurn]
    assert restored == state


def test_first_user_content_and_last_sender():
    state = ConversationState().extend(
        UserTurn(content="question"),
        AssistantTurn(content="partial", sender="Researcher"),
    )
    assert state.first_user_content() == "question"
    assert state.last_sender() == "Researcher"
    with pytest.raises(ProtocolViolation):
        ConversationState().first_user_content()
