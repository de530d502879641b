"""
Canonical request options and responses shared by every LLM client.
"""

from typing import Literal

from pydantic import BaseModel, Field

from conduit.domain.messages import AssistantMessage, ToolCall


class TokenUsage(BaseModel):
    """Token counts for one call; add them up for a whole run."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        if not isinstance(other, TokenUsage):
            return NotImplemented
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @classmethod
    def of(cls, prompt_tokens: int | None, completion_tokens: int | None,
           total_tokens: int | None = None) -> "TokenUsage":
        prompt = prompt_tokens or 0
        completion = completion_tokens or 0
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=total_tokens if total_tokens is not None else prompt + completion,
        )


class ChatOptions(BaseModel):
    """Sampling parameters. ``None`` means "use the provider default"."""

    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    stop: list[str] | None = None
    reasoning_effort: Literal["low", "medium", "high"] | None = None


class ChatChoice(BaseModel):
    message: AssistantMessage
    finish_reason: str | None = None


class ChatResponse(BaseModel):
    """Canonical non-streaming response: one choice, usage and model name."""

    choices: list[ChatChoice]
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str | None = None

    @property
    def message(self) -> AssistantMessage:
        return self.choices[0].message

    @property
    def text(self) -> str | None:
        return self.message.content

    @property
    def tool_calls(self) -> list[ToolCall]:
        return self.message.tool_calls

    @property
    def finish_reason(self) -> str | None:
        return self.choices[0].finish_reason


__all__ = ["TokenUsage", "ChatOptions", "ChatChoice", "ChatResponse"]
