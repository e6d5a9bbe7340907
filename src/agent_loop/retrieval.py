"""Retrieval-grading loop.

After the retriever tool runs, a grader decides whether the documents are
relevant: relevant documents go to GENERATE, irrelevant ones send the
original question through REWRITE and back to CONSULT.
"""

from __future__ import annotations

import json
from typing import Sequence

from .errors import ProtocolViolation
from .loop import AgentLoop, AnyTurn, LoopConfig
from .model import RelevanceGrader
from .prompts import GENERATE_PROMPT, REWRITE_PROMPT
from .routing import Route, check_relevance
from .states import LoopState
from .trace import TraceRecord
from .turns import AssistantTurn, ConversationState, ToolResultTurn, UserTurn


class RetrievalLoop(AgentLoop):
    def __init__(self, config: LoopConfig, grader: RelevanceGrader) -> None:
        super().__init__(config)
        self._grader = grader
        self._handlers.update(
            {
                LoopState.GRADE: self._grade,
                LoopState.REWRITE: self._rewrite,
                LoopState.GENERATE: self._generate,
            }
        )

    def next_state(self, current: LoopState, state: ConversationState) -> LoopState:
        if current is LoopState.EXECUTE:
            return LoopState.GRADE
        if current is LoopState.GRADE:
            return LoopState.GENERATE if check_relevance(state) is Route.GENERATE else LoopState.REWRITE
        if current is LoopState.REWRITE:
            return LoopState.CONSULT
        if current is LoopState.GENERATE:
            return LoopState.TERMINATE
        return super().next_state(current, state)

    def visible_turns(self, state: ConversationState) -> Sequence[AnyTurn]:
        # The agent does not need to see relevance verdicts.
        return [turn for turn in state.turns if not (isinstance(turn, AssistantTurn) and turn.verdict is not None)]

    async def _grade(self, state: ConversationState, trace: TraceRecord | None) -> Sequence[AnyTurn]:
        if not isinstance(state.last, ToolResultTurn):
            raise ProtocolViolation("GRADE expects the latest turn to be a tool result")
        question = _text(state.first_user_content())
        verdict = await self._grader.grade(question, _text(state.last.content), trace=trace)
        return [AssistantTurn(content={"binary_score": verdict}, verdict=verdict)]

    async def _rewrite(self, state: ConversationState, trace: TraceRecord | None) -> Sequence[AnyTurn]:
        question = _text(state.first_user_content())
        response = await self._config.model.consult(
            [UserTurn(content=REWRITE_PROMPT.format(question=question))],
            (),
            trace=trace,
        )
        # The agent expects a user turn last, so the reformulation is one.
        return [UserTurn(content=response.text)]

    async def _generate(self, state: ConversationState, trace: TraceRecord | None) -> Sequence[AnyTurn]:
        result = state.last_tool_result()
        if result is None:
            raise ProtocolViolation("GENERATE needs a retrieved tool result")
        question = _text(state.first_user_content())
        response = await self._config.model.consult(
            [UserTurn(content=GENERATE_PROMPT.format(question=question, context=_text(result.content)))],
            (),
            trace=trace,
        )
        return [AssistantTurn(content=response.text)]


def _text(content: object) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, ensure_ascii=False, default=str)
