"""Named workflows: each tutorial scenario wired as a configured loop."""

from __future__ import annotations

from typing import Callable

from agent_loop.checkpoint import Checkpointer
from agent_loop.handoff import HandoffLoop, Participant
from agent_loop.loop import AgentLoop, LoopConfig
from agent_loop.model import (
    HeuristicModel,
    KeywordGrader,
    ModelCollaborator,
    OpenAIChatModel,
    OpenAIRelevanceGrader,
    RelevanceGrader,
)
from agent_loop.prompts import AGENT_SYSTEM, RETRIEVAL_AGENT_SYSTEM
from agent_loop.retrieval import RetrievalLoop
from agent_loop.settings import LoopSettings
from agent_loop.states import LoopState
from demo_tools.tools import build_registry

WorkflowFactory = Callable[[LoopSettings, Checkpointer | None], AgentLoop]


def build_model(settings: LoopSettings) -> ModelCollaborator:
    # Mock path keeps the service usable without an API key.
    if settings.mock_llm or not settings.openai_api_key:
        return HeuristicModel()
    return OpenAIChatModel.from_settings(settings)


def build_grader(settings: LoopSettings) -> RelevanceGrader:
    if settings.mock_llm or not settings.openai_api_key:
        return KeywordGrader()
    return OpenAIRelevanceGrader.from_settings(settings)


def _config(settings: LoopSettings, checkpointer: Checkpointer | None, tools: list[str], **overrides) -> LoopConfig:
    options = {
        "model": build_model(settings),
        "tools": build_registry(tools),
        "checkpointer": checkpointer,
        "max_steps": settings.max_steps,
        "parallel_tools": settings.parallel_tools,
        "tool_timeout_s": settings.tool_timeout_s,
        "system_prompt": AGENT_SYSTEM,
    }
    options.update(overrides)
    return LoopConfig(**options)


def simple_agent(settings: LoopSettings, checkpointer: Checkpointer | None = None) -> AgentLoop:
    return AgentLoop(_config(settings, checkpointer, ["search"]))


def tool_calling(settings: LoopSettings, checkpointer: Checkpointer | None = None) -> AgentLoop:
    return AgentLoop(_config(settings, checkpointer, ["get_weather", "get_coolest_cities"]))


def persistence(settings: LoopSettings, checkpointer: Checkpointer | None = None) -> AgentLoop:
    if checkpointer is None:
        raise ValueError("The persistence workflow needs a checkpointer")
    return AgentLoop(_config(settings, checkpointer, ["search"]))


def human_in_the_loop(settings: LoopSettings, checkpointer: Checkpointer | None = None) -> AgentLoop:
    if checkpointer is None:
        raise ValueError("The human_in_the_loop workflow needs a checkpointer")
    return AgentLoop(
        _config(settings, checkpointer, ["search"], interrupt_before=frozenset({LoopState.EXECUTE}))
    )


def agentic_rag(settings: LoopSettings, checkpointer: Checkpointer | None = None) -> AgentLoop:
    config = _config(settings, checkpointer, ["retrieve_blog_posts"], system_prompt=RETRIEVAL_AGENT_SYSTEM)
    return RetrievalLoop(config, build_grader(settings))


def multi_agent(settings: LoopSettings, checkpointer: Checkpointer | None = None) -> AgentLoop:
    config = _config(settings, checkpointer, ["search", "generate_bar_chart"], system_prompt=None)
    participants = [
        Participant(
            name="Researcher",
            tools=("search",),
            system_message="You should provide accurate data for the chart generator to use.",
        ),
        Participant(
            name="ChartGenerator",
            tools=("generate_bar_chart",),
            system_message="Any charts you display will be visible by the user.",
        ),
    ]
    return HandoffLoop(config, participants, sentinel=settings.termination_sentinel)


WORKFLOWS: dict[str, WorkflowFactory] = {
    "simple_agent": simple_agent,
    "agentic_rag": agentic_rag,
    "multi_agent": multi_agent,
    "tool_calling": tool_calling,
    "persistence": persistence,
    "human_in_the_loop": human_in_the_loop,
}


def build_workflow(name: str, settings: LoopSettings, checkpointer: Checkpointer | None = None) -> AgentLoop:
    try:
        factory = WORKFLOWS[name]
    except KeyError:
        raise KeyError(f"Unknown workflow: {name}") from None
    return factory(settings, checkpointer)
