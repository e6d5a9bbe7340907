"""Tool registry for the tutorial workflows."""

from __future__ import annotations

from typing import Iterable

from agent_loop.tools import ToolDefinition, ToolRegistry

from ..schemas import ChartInput, CoolestCitiesInput, RetrieveInput, SearchInput, WeatherInput
from .chart import generate_bar_chart
from .retriever import retrieve_blog_posts
from .search import search
from .weather import get_coolest_cities, get_weather

TOOL_DEFINITIONS: dict[str, ToolDefinition] = {
    "get_weather": ToolDefinition(
        name="get_weather",
        description="Call to get the current weather.",
        input_model=WeatherInput,
        handler=get_weather,
    ),
    "get_coolest_cities": ToolDefinition(
        name="get_coolest_cities",
        description="Get a list of coolest cities.",
        input_model=CoolestCitiesInput,
        handler=get_coolest_cities,
    ),
    "search": ToolDefinition(
        name="search",
        description="Use to surf the web, fetch current information, check the weather, and retrieve other information.",
        input_model=SearchInput,
        handler=search,
    ),
    "generate_bar_chart": ToolDefinition(
        name="generate_bar_chart",
        description="Generates a bar chart from an array of data points and displays it for the user.",
        input_model=ChartInput,
        handler=generate_bar_chart,
    ),
    "retrieve_blog_posts": ToolDefinition(
        name="retrieve_blog_posts",
        description=(
            "Search and return information about Lilian Weng blog posts on LLM agents, "
            "prompt engineering, and adversarial attacks on LLMs."
        ),
        input_model=RetrieveInput,
        handler=retrieve_blog_posts,
    ),
}


def get_tool_definition(name: str) -> ToolDefinition | None:
    return TOOL_DEFINITIONS.get(name)


def list_tool_definitions() -> list[ToolDefinition]:
    return list(TOOL_DEFINITIONS.values())


def build_registry(names: Iterable[str] | None = None) -> ToolRegistry:
    if names is None:
        return ToolRegistry(list_tool_definitions())
    return ToolRegistry(TOOL_DEFINITIONS[name] for name in names)
