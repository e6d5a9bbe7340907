import asyncio

import pytest

from agent_loop.checkpoint import Checkpoint, FileCheckpointer, MemoryCheckpointer
from agent_loop.errors import CheckpointNotFound
from agent_loop.loop import AgentLoop, LoopConfig
from agent_loop.model import ScriptedModel
from agent_loop.states import LoopState, RunStatus
from agent_loop.turns import AssistantTurn, ConversationState, ToolCallRequest, UserTurn
from demo_tools.tools import build_registry


def _checkpoint(thread_id, step, content):
    state = ConversationState().extend(UserTurn(content=content))
    return Checkpoint(thread_id=thread_id, step=step, next_state=LoopState.CONSULT, state=state)


def test_memory_checkpointer_returns_latest():
    store = MemoryCheckpointer()
    asyncio.run(store.append("a", _checkpoint("a", 0, "first")))
    asyncio.run(store.append("a", _checkpoint("a", 1, "second")))
    latest = asyncio.run(store.load_latest("a"))
    assert latest.step == 1
    assert len(store.history("a")) == 2
    with pytest.raises(CheckpointNotFound):
        asyncio.run(store.load_latest("b"))


def test_file_checkpointer_round_trip(tmp_path):
    store = FileCheckpointer(tmp_path)
    asyncio.run(store.append("thread/1", _checkpoint("thread/1", 0, "first")))
    asyncio.run(store.append("thread/1", _checkpoint("thread/1", 1, "second")))

    latest = asyncio.run(FileCheckpointer(tmp_path).load_latest("thread/1"))
    assert latest.step == 1
    assert latest.state.last.content == "second"
    assert store.path_for("thread/1").parent == tmp_path
    with pytest.raises(CheckpointNotFound):
        asyncio.run(store.load_latest("thread/2"))


def test_concurrent_threads_do_not_share_state(tmp_path):
    store = FileCheckpointer(tmp_path)

    def script(name):
        return ScriptedModel(
            [
                AssistantTurn(requested_calls=(ToolCallRequest(name="search", args={"query": name}, id=f"{name}-1"),)),
                f"answer for {name}",
            ]
        )

    async def run_both():
        loops = {
            name: AgentLoop(LoopConfig(model=script(name), tools=build_registry(["search"]), checkpointer=store))
            for name in ("alpha", "beta")
        }
        return await asyncio.gather(*(loop.run(name, f"search {name}") for name, loop in loops.items()))

    alpha, beta = asyncio.run(run_both())
    assert alpha.status is RunStatus.COMPLETED and beta.status is RunStatus.COMPLETED
    assert asyncio.run(store.load_latest("alpha")).state == alpha.state
    assert asyncio.run(store.load_latest("beta")).state.last.content == "answer for beta"


def test_file_checkpointer_reads_latest_of_long_history(tmp_path):
    store = FileCheckpointer(tmp_path)
    big = "x" * 20000

    async def write_all():
        for step in range(5):
            await store.append("long", _checkpoint("long", step, f"{big}-{step}"))

    asyncio.run(write_all())
    latest = asyncio.run(store.load_latest("long"))
    assert latest.step == 4
    assert latest.state.last.content == f"{big}-4"


def test_thread_locks_are_released_after_use(tmp_path):
    memory = MemoryCheckpointer()
    files = FileCheckpointer(tmp_path)

    async def exercise():
        await asyncio.gather(*(memory.append(f"t{idx}", _checkpoint(f"t{idx}", 0, "hi")) for idx in range(20)))
        await asyncio.gather(
            files.append("shared", _checkpoint("shared", 0, "a")),
            files.append("shared", _checkpoint("shared", 1, "b")),
            files.load_latest("shared"),
        )

    asyncio.run(exercise())
    assert len(memory._locks) == 0
    assert len(files._locks) == 0
    assert asyncio.run(files.load_latest("shared")).step == 1
