import pytest

from agent_loop.checkpoint import MemoryCheckpointer
from agent_loop.handoff import HandoffLoop
from agent_loop.model import HeuristicModel
from agent_loop.retrieval import RetrievalLoop
from agent_loop.settings import LoopSettings
from agent_loop.states import LoopState
from loop_server.workflows import WORKFLOWS, build_workflow


def test_every_workflow_builds_in_mock_mode():
    settings = LoopSettings(mock_llm=True)
    for name in WORKFLOWS:
        loop = build_workflow(name, settings, MemoryCheckpointer())
        assert isinstance(loop.config.model, HeuristicModel)


def test_workflow_variants():
    settings = LoopSettings(mock_llm=True)
    store = MemoryCheckpointer()
    assert isinstance(build_workflow("agentic_rag", settings, store), RetrievalLoop)
    team = build_workflow("multi_agent", settings, store)
    assert isinstance(team, HandoffLoop)
    assert team.table.participants == ("Researcher", "ChartGenerator")
    assert build_workflow("human_in_the_loop", settings, store).config.interrupt_before == frozenset({LoopState.EXECUTE})


def test_stateful_workflows_need_a_checkpointer():
    settings = LoopSettings(mock_llm=True)
    with pytest.raises(ValueError):
        build_workflow("persistence", settings)
    with pytest.raises(KeyError):
        build_workflow("unknown", settings)
