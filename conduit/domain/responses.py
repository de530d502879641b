"""
Agent responses.

A streamed turn emits any number of TextDelta / ToolCallBatch / UsageUpdate
values and ends with exactly one FinalAnswer. A non-streamed run returns only
the FinalAnswer.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from conduit.domain.messages import ToolCall
from conduit.domain.models import TokenUsage


class TextDelta(BaseModel):
    type: Literal["text_delta"] = "text_delta"
    text: str


class ToolCallBatch(BaseModel):
    type: Literal["tool_calls"] = "tool_calls"
    tool_calls: list[ToolCall]
    iteration: int


class UsageUpdate(BaseModel):
    type: Literal["usage"] = "usage"
    usage: TokenUsage
    finish_reason: str | None = None


class FinalAnswer(BaseModel):
    type: Literal["final"] = "final"
    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: str | None = None
    iterations: int = 0


AgentResponse = Annotated[
    Union[TextDelta, ToolCallBatch, UsageUpdate, FinalAnswer],
    Field(discriminator="type"),
]


__all__ = ["TextDelta", "ToolCallBatch", "UsageUpdate", "FinalAnswer", "AgentResponse"]
