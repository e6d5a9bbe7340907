"""Checkpoint persistence keyed by thread id.

Backends keep every checkpoint of a thread and hand back the latest one.
Writes for one thread id are serialised; the last write wins.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Protocol

from pydantic import BaseModel, Field

from .errors import CheckpointNotFound
from .logging import get_logger
from .settings import LoopSettings
from .states import LoopState
from .trace import now_utc_iso
from .turns import ConversationState

logger = get_logger("checkpoint")

_TAIL_CHUNK = 8192


class Checkpoint(BaseModel):
    thread_id: str
    step: int
    next_state: LoopState
    state: ConversationState
    created_at: str = Field(default_factory=now_utc_iso)

    @property
    def suspended(self) -> bool:
        return self.next_state is not LoopState.TERMINATE


class Checkpointer(Protocol):
    async def load_latest(self, thread_id: str) -> Checkpoint: ...

    async def append(self, thread_id: str, checkpoint: Checkpoint) -> None: ...


class _ThreadLocks:
    """One lock per thread id, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, thread_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(thread_id, asyncio.Lock())
        self._users[thread_id] = self._users.get(thread_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[thread_id] -= 1
            if not self._users[thread_id]:
                del self._users[thread_id]
                del self._locks[thread_id]


class MemoryCheckpointer:
    def __init__(self) -> None:
        self._history: dict[str, list[Checkpoint]] = {}
        self._locks = _ThreadLocks()

    async def load_latest(self, thread_id: str) -> Checkpoint:
        history = self._history.get(thread_id)
        if not history:
            raise CheckpointNotFound(thread_id)
        return history[-1]

    async def append(self, thread_id: str, checkpoint: Checkpoint) -> None:
        async with self._locks.hold(thread_id):
            self._history.setdefault(thread_id, []).append(checkpoint)

    def history(self, thread_id: str) -> list[Checkpoint]:
        return list(self._history.get(thread_id, []))


class FileCheckpointer:
    """One JSON-lines file per thread id; the last line is the latest checkpoint."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)
        self._locks = _ThreadLocks()

    def path_for(self, thread_id: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", thread_id)[:64]
        digest = hashlib.sha1(thread_id.encode("utf-8")).hexdigest()[:8]
        return self._dir / f"{safe}-{digest}.jsonl"

    async def load_latest(self, thread_id: str) -> Checkpoint:
        path = self.path_for(thread_id)
        async with self._locks.hold(thread_id):
            line = await asyncio.to_thread(_read_last_line, path)
        if line is None:
            raise CheckpointNotFound(thread_id)
        return Checkpoint.model_validate_json(line)

    async def append(self, thread_id: str, checkpoint: Checkpoint) -> None:
        path = self.path_for(thread_id)
        async with self._locks.hold(thread_id):
            await asyncio.to_thread(_append_line, path, checkpoint.model_dump_json())
        logger.debug(
            "checkpoint_written",
            extra={"extra": {"thread_id": thread_id, "step": checkpoint.step, "path": str(path)}},
        )


def build_checkpointer(settings: LoopSettings) -> MemoryCheckpointer | FileCheckpointer:
    if settings.checkpoint_backend == "file":
        return FileCheckpointer(settings.checkpoint_dir)
    return MemoryCheckpointer()


def _read_last_line(path: Path) -> str | None:
    # Read backwards from the end; histories grow with every step.
    if not path.exists():
        return None
    with path.open("rb") as fh:
        pos = fh.seek(0, os.SEEK_END)
        tail = b""
        while pos > 0:
            size = min(_TAIL_CHUNK, pos)
            pos -= size
            fh.seek(pos)
            tail = fh.read(size) + tail
            if b"\n" in tail.rstrip():
                break
    body = tail.rstrip()
    if not body:
        return None
    return body.rsplit(b"\n", 1)[-1].decode("utf-8")


def _append_line(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(line + "\n")
