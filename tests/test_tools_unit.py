import asyncio

import pytest
from pydantic import BaseModel

from agent_loop.tools import ToolDefinition, ToolExecutor, ToolRegistry
from agent_loop.turns import ToolCallRequest
from demo_tools.schemas import ChartInput, RetrieveInput, WeatherInput
from demo_tools.tools import build_registry
from demo_tools.tools.chart import generate_bar_chart
from demo_tools.tools.retriever import NO_MATCH, retrieve_blog_posts
from demo_tools.tools.weather import get_weather


class Empty(BaseModel):
    pass


def test_weather_tool_basic():
    assert get_weather(WeatherInput(location="SF")) == "It's 60 degrees and foggy."
    assert get_weather(WeatherInput(location="nyc")) == "It's 90 degrees and sunny."


def test_chart_tool_renders_bars():
    result = generate_bar_chart(ChartInput(data=[{"label": "2021", "value": 23.3}, {"label": "2022", "value": 25.5}]))
    assert result["message"] == "Chart has been generated and displayed to the user!"
    assert result["chart"].splitlines()[0].startswith("2021 | #")


def test_retriever_finds_agent_memory():
    text = retrieve_blog_posts(RetrieveInput(query="types of agent memory"))
    assert "Short-term memory" in text
    assert retrieve_blog_posts(RetrieveInput(query="zebra xylophone")) == NO_MATCH


def test_registry_rejects_duplicates():
    tool = ToolDefinition(name="noop", description="", input_model=Empty, handler=lambda _: "ok")
    registry = ToolRegistry([tool])
    with pytest.raises(ValueError):
        registry.register(tool)
    with pytest.raises(KeyError):
        registry.subset(["missing"])


def test_unknown_tool_becomes_error_outcome():
    executor = ToolExecutor(build_registry())
    outcome = asyncio.run(executor.execute("get_unicorn_forecast", {}))
    assert not outcome.ok
    assert outcome.error.code == "NOT_FOUND"
    assert "Unknown tool: get_unicorn_forecast" in outcome.render()


def test_invalid_arguments_become_error_outcome():
    executor = ToolExecutor(build_registry(["get_weather"]))
    outcome = asyncio.run(executor.execute("get_weather", {"city": "sf"}))
    assert not outcome.ok
    assert outcome.error.code == "INVALID_ARGUMENT"


def test_handler_exception_becomes_error_outcome():
    def boom(_payload):
        raise RuntimeError("upstream exploded")

    executor = ToolExecutor(ToolRegistry([ToolDefinition("boom", "", Empty, boom)]))
    outcome = asyncio.run(executor.execute("boom", {}))
    assert outcome.error.code == "TOOL_ERROR"
    assert outcome.render() == "Error (TOOL_ERROR): upstream exploded"


def test_slow_tool_times_out():
    async def slow(_payload):
        await asyncio.sleep(1)
        return "late"

    executor = ToolExecutor(ToolRegistry([ToolDefinition("slow", "", Empty, slow)]), timeout_s=0.05)
    outcome = asyncio.run(executor.execute("slow", {}))
    assert outcome.error.code == "TOOL_TIMEOUT"


def test_parallel_results_keep_request_order():
    finished = []

    class Delay(BaseModel):
        seconds: float
        tag: str

    async def wait(payload: Delay) -> str:
        await asyncio.sleep(payload.seconds)
        finished.append(payload.tag)
        return payload.tag

    executor = ToolExecutor(ToolRegistry([ToolDefinition("wait", "", Delay, wait)]))
    calls = [
        ToolCallRequest(name="wait", args={"seconds": 0.1, "tag": "first"}, id="1"),
        ToolCallRequest(name="wait", args={"seconds": 0.0, "tag": "second"}, id="2"),
        ToolCallRequest(name="get_unicorn_forecast", args={}, id="3"),
    ]
    turns = asyncio.run(executor.execute_all(calls, parallel=True))
    assert finished == ["second", "first"]
    assert [turn.call_id for turn in turns] == ["1", "2", "3"]
    assert [turn.content for turn in turns[:2]] == ["first", "second"]
    assert turns[2].is_error
