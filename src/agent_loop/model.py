"""Model and grading collaborators.

The loop only sees ``consult(turns, tools) -> AssistantTurn`` and
``grade(question, context) -> "yes" | "no"``. The OpenAI adapters translate
turns to chat messages and map upstream failures onto loop error kinds;
the scripted and heuristic variants keep the flow testable without a key.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, Literal, Protocol, Sequence

import openai
from openai import AsyncOpenAI

from .errors import ProtocolViolation, RateLimited, UpstreamUnavailable
from .logging import get_logger
from .prompts import GRADER_PROMPT
from .settings import LoopSettings
from .tools import ToolDefinition
from .trace import TraceRecord
from .turns import AssistantTurn, ToolCallRequest, ToolResultTurn, UserTurn

logger = get_logger("model")

Verdict = Literal["yes", "no"]
AnyTurn = UserTurn | AssistantTurn | ToolResultTurn

RELEVANCE_TOOL = {
    "type": "function",
    "function": {
        "name": "give_relevance_score",
        "description": "Give a relevance score to the retrieved documents.",
        "parameters": {
            "type": "object",
            "properties": {
                "binary_score": {"type": "string", "enum": ["yes", "no"], "description": "Relevance score 'yes' or 'no'"},
            },
            "required": ["binary_score"],
        },
    },
}


class ModelCollaborator(Protocol):
    async def consult(
        self,
        turns: Sequence[AnyTurn],
        tools: Sequence[ToolDefinition] = (),
        *,
        system_prompt: str | None = None,
        perspective: str | None = None,
        trace: TraceRecord | None = None,
    ) -> AssistantTurn: ...


class RelevanceGrader(Protocol):
    async def grade(self, question: str, context: str, *, trace: TraceRecord | None = None) -> Verdict: ...


def build_openai_tools(tools: Iterable[ToolDefinition]) -> list[dict[str, Any]]:
    """Translate tool definitions into OpenAI tool schema."""
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_model.model_json_schema(),
            },
        }
        for tool in tools
    ]


def to_openai_messages(
    turns: Sequence[AnyTurn],
    system_prompt: str | None = None,
    perspective: str | None = None,
) -> list[dict[str, Any]]:
    """Render turns as chat messages.

    With a ``perspective``, plain replies from other participants are shown
    as named user messages so each agent reads its peers as input.
    """
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for turn in turns:
        if isinstance(turn, UserTurn):
            message: dict[str, Any] = {"role": "user", "content": _as_text(turn.content)}
            if turn.sender:
                message["name"] = turn.sender
            messages.append(message)
        elif isinstance(turn, AssistantTurn):
            from_peer = perspective is not None and turn.sender not in (None, perspective)
            if from_peer and not turn.requested_calls:
                messages.append({"role": "user", "name": turn.sender, "content": turn.text})
                continue
            message = {"role": "assistant", "content": turn.text or None}
            if turn.requested_calls:
                message["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.args, ensure_ascii=False)},
                    }
                    for call in turn.requested_calls
                ]
            messages.append(message)
        else:
            messages.append({"role": "tool", "tool_call_id": turn.call_id, "content": _as_text(turn.content)})
    return messages


class OpenAIChatModel:
    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        temperature: float = 0.0,
        timeout_s: float = 20.0,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._model = model
        self._temperature = temperature
        # Retries are the caller's decision.
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout_s, max_retries=0)

    @classmethod
    def from_settings(cls, settings: LoopSettings) -> "OpenAIChatModel":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            temperature=settings.temperature,
            timeout_s=settings.openai_timeout_s,
            base_url=settings.openai_base_url,
        )

    async def consult(
        self,
        turns: Sequence[AnyTurn],
        tools: Sequence[ToolDefinition] = (),
        *,
        system_prompt: str | None = None,
        perspective: str | None = None,
        trace: TraceRecord | None = None,
    ) -> AssistantTurn:
        messages = to_openai_messages(turns, system_prompt, perspective)
        kwargs: dict[str, Any] = {}
        if tools:
            kwargs["tools"] = build_openai_tools(tools)
            kwargs["tool_choice"] = "auto"
        response = await self._create(messages, **kwargs)
        choice = response.choices[0]
        requested = tuple(_parse_tool_call(call) for call in choice.message.tool_calls or [])
        if trace is not None:
            trace.consult(
                model=self._model,
                temperature=self._temperature,
                requested=[{"name": call.name, "args": call.args} for call in requested],
                messages=_summarize_messages(messages),
                finish_reason=choice.finish_reason,
            )
        return AssistantTurn(content=choice.message.content or "", requested_calls=requested)

    async def _create(self, messages: list[dict[str, Any]], **kwargs: Any) -> Any:
        try:
            return await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=self._temperature,
                **kwargs,
            )
        except openai.RateLimitError as exc:
            logger.info("llm_rate_limited", extra={"extra": {"model": self._model, "error": str(exc)}})
            raise RateLimited(str(exc), {"model": self._model}) from exc
        except openai.APIConnectionError as exc:
            logger.info("llm_unavailable", extra={"extra": {"model": self._model, "error": str(exc)}})
            raise UpstreamUnavailable(str(exc), {"model": self._model}) from exc
        except openai.APIStatusError as exc:
            logger.info(
                "llm_error",
                extra={"extra": {"model": self._model, "status_code": exc.status_code, "error": str(exc)}},
            )
            raise UpstreamUnavailable(str(exc), {"model": self._model, "status_code": exc.status_code}) from exc


class OpenAIRelevanceGrader(OpenAIChatModel):
    """Binary relevance classifier forced through a single function call."""

    async def grade(self, question: str, context: str, *, trace: TraceRecord | None = None) -> Verdict:
        messages = [{"role": "user", "content": GRADER_PROMPT.format(context=context, question=question)}]
        response = await self._create(
            messages,
            tools=[RELEVANCE_TOOL],
            tool_choice={"type": "function", "function": {"name": "give_relevance_score"}},
        )
        choice = response.choices[0]
        calls = choice.message.tool_calls or []
        if not calls:
            raise ProtocolViolation("Grader returned no relevance score")
        score = _parse_tool_call(calls[0]).args.get("binary_score")
        verdict: Verdict = "yes" if str(score).strip().lower() == "yes" else "no"
        if trace is not None:
            trace.consult(
                model=self._model,
                temperature=self._temperature,
                requested=[{"name": "give_relevance_score", "args": {"binary_score": verdict}}],
                messages=_summarize_messages(messages),
                finish_reason=choice.finish_reason,
            )
        return verdict


class ScriptedModel:
    """Replays prepared assistant turns in order and remembers what it saw."""

    def __init__(self, responses: Iterable[AssistantTurn | str]) -> None:
        self._responses = [
            AssistantTurn(content=item) if isinstance(item, str) else item for item in responses
        ]
        self.calls: list[dict[str, Any]] = []

    @property
    def remaining(self) -> int:
        return len(self._responses)

    async def consult(
        self,
        turns: Sequence[AnyTurn],
        tools: Sequence[ToolDefinition] = (),
        *,
        system_prompt: str | None = None,
        perspective: str | None = None,
        trace: TraceRecord | None = None,
    ) -> AssistantTurn:
        self.calls.append(
            {
                "turns": list(turns),
                "tools": [tool.name for tool in tools],
                "system_prompt": system_prompt,
                "perspective": perspective,
            }
        )
        if not self._responses:
            raise UpstreamUnavailable("Scripted model has no responses left")
        return self._responses.pop(0)


class ScriptedGrader:
    def __init__(self, verdicts: Iterable[Verdict]) -> None:
        self._verdicts = list(verdicts)
        self.calls: list[tuple[str, str]] = []

    async def grade(self, question: str, context: str, *, trace: TraceRecord | None = None) -> Verdict:
        self.calls.append((question, context))
        if not self._verdicts:
            raise UpstreamUnavailable("Scripted grader has no verdicts left")
        return self._verdicts.pop(0)


class HeuristicModel:
    """Mock mode: enables the full loop without an external LLM."""

    async def consult(
        self,
        turns: Sequence[AnyTurn],
        tools: Sequence[ToolDefinition] = (),
        *,
        system_prompt: str | None = None,
        perspective: str | None = None,
        trace: TraceRecord | None = None,
    ) -> AssistantTurn:
        last = turns[-1] if turns else None
        if isinstance(last, ToolResultTurn):
            results = []
            for turn in reversed(turns):
                if not isinstance(turn, ToolResultTurn):
                    break
                results.insert(0, _as_text(turn.content))
            answer = " ".join(results)
            # In a handoff, the participant that was handed the work closes it.
            if perspective is not None and _has_peer_turn(turns, perspective):
                answer = f"FINAL ANSWER: {answer}"
            return AssistantTurn(content=answer)

        text = _as_text(last.content) if last is not None else ""
        if not tools:
            return AssistantTurn(content=_mock_completion(text))

        names = {tool.name for tool in tools}
        lowered = text.lower()
        if "get_weather" in names and "weather" in lowered:
            return AssistantTurn(
                requested_calls=(ToolCallRequest(name="get_weather", args={"location": _extract_location(text)}),)
            )
        if "retrieve_blog_posts" in names:
            return AssistantTurn(requested_calls=(ToolCallRequest(name="retrieve_blog_posts", args={"query": text}),))
        if "generate_bar_chart" in names:
            return AssistantTurn(
                requested_calls=(ToolCallRequest(name="generate_bar_chart", args={"data": _extract_points(text)}),)
            )
        if "search" in names and (perspective is not None or re.search(r"weather|search|news|look up", lowered)):
            return AssistantTurn(requested_calls=(ToolCallRequest(name="search", args={"query": text}),))
        return AssistantTurn(content="I can look up the weather or search the web. What would you like to know?")


class KeywordGrader:
    """Mock grader: relevant when the context shares a word with the question."""

    async def grade(self, question: str, context: str, *, trace: TraceRecord | None = None) -> Verdict:
        words = {word for word in re.findall(r"[a-z]{4,}", question.lower())}
        found = {word for word in re.findall(r"[a-z]{4,}", context.lower())}
        return "yes" if words & found else "no"


def _has_peer_turn(turns: Sequence[AnyTurn], perspective: str) -> bool:
    return any(isinstance(turn, AssistantTurn) and turn.sender not in (None, perspective) for turn in turns)


def _mock_completion(prompt: str) -> str:
    # Rewrite prompts quote the question between rules; generate prompts end with the context.
    parts = prompt.split("-------")
    if len(parts) >= 3:
        return parts[1].strip()
    match = re.search(r"Context:\s*(.*?)\s*Answer:\s*$", prompt, re.DOTALL)
    if match:
        return match.group(1)
    return prompt.strip()


def _extract_points(text: str) -> list[dict[str, Any]]:
    points = [
        {"label": label, "value": float(value)}
        for label, value in re.findall(r"([A-Za-z0-9][\w ]*?)\s*[:=]\s*(-?\d+(?:\.\d+)?)", text)
    ]
    return points or [{"label": "value", "value": 1.0}]


def _extract_location(text: str) -> str:
    match = re.search(r"\bin\s+(?:the\s+)?([A-Za-z][A-Za-z .'-]*?)\s*[?.!]*$", text.strip())
    return match.group(1) if match else "sf"


def _parse_tool_call(call: Any) -> ToolCallRequest:
    raw = call.function.arguments or "{}"
    try:
        args = json.loads(raw)
    except json.JSONDecodeError:
        args = {"_raw_arguments": raw}
    if not isinstance(args, dict):
        args = {"_raw_arguments": raw}
    return ToolCallRequest(name=call.function.name, args=args, id=call.id)


def _as_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, ensure_ascii=False, default=str)


def _summarize_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {"role": msg.get("role"), "content_len": len(str(msg.get("content") or ""))}
        for msg in messages
    ]
