"""
LLM client abstraction - pure protocol interface

Responsibilities:
- Translate canonical messages and tool definitions into a vendor request
- Parse the vendor response or event stream back into canonical shapes
- Own the vendor's retry policy

Does NOT handle:
- Tool loop logic
- Memory
- Run state
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Sequence

from pydantic import BaseModel, ConfigDict, Field

from conduit.domain import ChatOptions, ChatResponse, Message, TokenUsage, ToolCall, ToolDefinition
from conduit.runtime.control import CancellationToken


class StreamChunk(BaseModel):
    """
    Minimal unit of streaming output.

    Text arrives incrementally in ``content``. Tool calls are never partial:
    a chunk carrying ``tool_calls`` carries complete calls. Every stream ends
    with one chunk holding ``finish_reason`` and the turn's usage.
    """

    model_config = ConfigDict(frozen=False)

    content: str | None = Field(default=None, description="Text content delta")
    tool_calls: list[ToolCall] | None = Field(
        default=None, description="Complete tool-call list for the turn"
    )
    usage: TokenUsage | None = Field(default=None, description="Token usage so far")
    finish_reason: str | None = Field(
        default=None, description="Finish reason: stop, tool_calls, length, etc."
    )


class LLMClient(ABC):
    """
    Canonical client interface, implemented once per wire protocol.

    Clients hold a pooled HTTP connection; release it with ``close()`` or use
    the client as an async context manager.
    """

    provider: str = "unknown"
    model: str

    @abstractmethod
    async def send(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        options: ChatOptions | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ChatResponse:
        """Send one request and return the canonical response."""
        pass

    @abstractmethod
    def send_streaming(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        options: ChatOptions | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream one request.

        Yields:
            StreamChunk: text deltas, then one final chunk carrying tool calls,
            finish reason and usage
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    async def __aenter__(self) -> "LLMClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = ["LLMClient", "StreamChunk"]
