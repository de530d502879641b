"""
Shared fixtures: fake HTTP transport, recorded sleeps and a scripted LLM client.
"""

import json
from typing import Any, Callable

import httpx
import pytest

from conduit.domain import AssistantMessage, ChatChoice, ChatResponse, TokenUsage, ToolCall
from conduit.llm.base import LLMClient, StreamChunk


class RecordingSleep:
    """Stands in for asyncio.sleep so retry delays can be asserted instantly."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedClient(LLMClient):
    """
    LLM client that replays a script of turns.

    Each turn is either a ChatResponse or a list of StreamChunks; both send
    paths accept either form.
    """

    provider = "scripted"
    model = "scripted-model"

    def __init__(self, turns: list[Any] | None = None):
        self.turns = list(turns or [])
        self.requests: list[dict[str, Any]] = []
        self.closed = False

    def _next_turn(self, messages, tools) -> Any:
        self.requests.append({"messages": list(messages), "tools": list(tools or [])})
        if not self.turns:
            raise AssertionError("ScriptedClient ran out of turns")
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn

    async def send(self, messages, tools=None, options=None, cancellation=None) -> ChatResponse:
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        turn = self._next_turn(messages, tools)
        if isinstance(turn, ChatResponse):
            return turn
        text = "".join(c.content or "" for c in turn) or None
        calls = [tc for c in turn for tc in (c.tool_calls or [])]
        finish = next((c.finish_reason for c in reversed(turn) if c.finish_reason), None)
        return text_response(text, tool_calls=calls, finish_reason=finish)

    async def send_streaming(self, messages, tools=None, options=None, cancellation=None):
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        turn = self._next_turn(messages, tools)
        if isinstance(turn, ChatResponse):
            if turn.text:
                yield StreamChunk(content=turn.text)
            yield StreamChunk(
                tool_calls=turn.tool_calls or None,
                usage=turn.usage,
                finish_reason=turn.finish_reason,
            )
            return
        for chunk in turn:
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            yield chunk

    async def close(self) -> None:
        self.closed = True


def text_response(
    text: str | None,
    tool_calls: list[ToolCall] | None = None,
    finish_reason: str | None = None,
    usage: TokenUsage | None = None,
) -> ChatResponse:
    return ChatResponse(
        choices=[
            ChatChoice(
                message=AssistantMessage(content=text, tool_calls=tool_calls or []),
                finish_reason=finish_reason or ("tool_calls" if tool_calls else "stop"),
            )
        ],
        usage=usage or TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
    )


def tool_call_response(name: str, arguments: dict | str, call_id: str = "call_1") -> ChatResponse:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return text_response(None, tool_calls=[ToolCall(id=call_id, tool_name=name, arguments=raw)])


def sse_body(frames: list[str]) -> bytes:
    """Join raw SSE frame texts with blank-line separators."""
    return "".join(f"{frame}\n\n" for frame in frames).encode("utf-8")


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_http_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Factory for an httpx.AsyncClient routed through a MockTransport handler."""

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def scripted_client() -> Callable[..., ScriptedClient]:
    def factory(*turns: Any) -> ScriptedClient:
        return ScriptedClient(list(turns))

    return factory


@pytest.fixture
def responses():
    """Builders for canonical responses used by agent tests."""

    class Builders:
        text = staticmethod(text_response)
        tool_call = staticmethod(tool_call_response)

    return Builders


@pytest.fixture
def sse():
    return sse_body
