import asyncio
from types import SimpleNamespace

import httpx
import openai
import pytest

from agent_loop.errors import ProtocolViolation, RateLimited, UpstreamUnavailable
from agent_loop.model import HeuristicModel, OpenAIChatModel, OpenAIRelevanceGrader, to_openai_messages
from agent_loop.turns import AssistantTurn, ToolCallRequest, ToolResultTurn, UserTurn
from demo_tools.tools import build_registry

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class FakeCompletions:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def fake_client(*responses):
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(responses)))


def completion(content=None, tool_calls=None, finish_reason="stop"):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason=finish_reason)])


def tool_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def test_messages_keep_tool_call_pairing():
    turns = [
        UserTurn(content="what's the weather in sf?"),
        AssistantTurn(requested_calls=(ToolCallRequest(name="get_weather", args={"location": "sf"}, id="c1"),)),
        ToolResultTurn(call_id="c1", name="get_weather", content="It's 60 degrees and foggy."),
    ]
    messages = to_openai_messages(turns, system_prompt="be brief")
    assert [msg["role"] for msg in messages] == ["system", "user", "assistant", "tool"]
    assert messages[2]["tool_calls"][0]["function"]["arguments"] == '{"location": "sf"}'
    assert messages[3]["tool_call_id"] == "c1"


def test_peer_replies_read_as_named_user_messages():
    turns = [
        UserTurn(content="chart the gdp"),
        AssistantTurn(content="GDP data: ...", sender="Researcher"),
    ]
    messages = to_openai_messages(turns, perspective="ChartGenerator")
    assert messages[1] == {"role": "user", "name": "Researcher", "content": "GDP data: ..."}
    own = to_openai_messages(turns, perspective="Researcher")
    assert own[1]["role"] == "assistant"


def test_consult_parses_tool_calls():
    client = fake_client(
        completion(tool_calls=[tool_call("call_9", "get_weather", '{"location": "sf"}')], finish_reason="tool_calls")
    )
    model = OpenAIChatModel(api_key=None, model="gpt-test", client=client)
    turn = asyncio.run(model.consult([UserTurn(content="weather?")], build_registry(["get_weather"]).specs()))

    assert turn.requested_calls == (ToolCallRequest(name="get_weather", args={"location": "sf"}, id="call_9"),)
    sent = client.chat.completions.requests[0]
    assert sent["tools"][0]["function"]["name"] == "get_weather"
    assert sent["tool_choice"] == "auto"


def test_consult_without_tools_sends_no_tool_schema():
    client = fake_client(completion(content="plain"))
    model = OpenAIChatModel(api_key=None, model="gpt-test", client=client)
    turn = asyncio.run(model.consult([UserTurn(content="hi")]))
    assert turn.text == "plain"
    assert "tools" not in client.chat.completions.requests[0]


def test_upstream_errors_are_mapped():
    rate_limited = openai.RateLimitError("slow down", response=httpx.Response(429, request=REQUEST), body=None)
    model = OpenAIChatModel(api_key=None, model="gpt-test", client=fake_client(rate_limited))
    with pytest.raises(RateLimited):
        asyncio.run(model.consult([UserTurn(content="hi")]))

    offline = openai.APIConnectionError(request=REQUEST)
    model = OpenAIChatModel(api_key=None, model="gpt-test", client=fake_client(offline))
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(model.consult([UserTurn(content="hi")]))


def test_grader_reads_forced_function_call():
    client = fake_client(
        completion(tool_calls=[tool_call("g1", "give_relevance_score", '{"binary_score": "yes"}')]),
        completion(tool_calls=[tool_call("g2", "give_relevance_score", '{"binary_score": "No"}')]),
        completion(content="I refuse"),
    )
    grader = OpenAIRelevanceGrader(api_key=None, model="gpt-test", client=client)
    assert asyncio.run(grader.grade("q", "docs")) == "yes"
    assert asyncio.run(grader.grade("q", "docs")) == "no"
    with pytest.raises(ProtocolViolation):
        asyncio.run(grader.grade("q", "docs"))
    forced = client.chat.completions.requests[0]["tool_choice"]
    assert forced["function"]["name"] == "give_relevance_score"


def test_heuristic_model_calls_weather_then_answers():
    model = HeuristicModel()
    tools = build_registry(["get_weather"]).specs()
    first = asyncio.run(model.consult([UserTurn(content="what's the weather in sf?")], tools))
    assert first.requested_calls[0].args == {"location": "sf"}

    result = ToolResultTurn(call_id=first.requested_calls[0].id, name="get_weather", content="It's 60 degrees and foggy.")
    second = asyncio.run(model.consult([UserTurn(content="q"), first, result], tools))
    assert second.text == "It's 60 degrees and foggy."
