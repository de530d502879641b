"""
Canonical chat messages.

One model per role, discriminated by ``role``. Tool-call arguments stay as raw
text because models produce them and they may be malformed; decode them with
``ToolCall.parsed_arguments()``.
"""

import json
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class MessageRole(str, Enum):
    """Standard LLM message roles"""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    """A single function call requested by the model."""

    model_config = ConfigDict(frozen=True)

    id: str
    tool_name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict[str, Any]:
        from conduit.tools.arguments import decode_tool_arguments

        return decode_tool_arguments(self.arguments)

    def to_openai_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.tool_name, "arguments": self.arguments},
        }

    @classmethod
    def from_openai_dict(cls, data: dict[str, Any]) -> "ToolCall":
        function = data.get("function") or {}
        arguments = function.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return cls(
            id=data.get("id") or "",
            tool_name=function.get("name") or "",
            arguments=arguments,
        )


class _BaseMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def is_persistable(self) -> bool:
        """Empty messages are kept only when they carry tool calls or a call id."""
        content = getattr(self, "content", None)
        if content:
            return True
        return bool(getattr(self, "tool_calls", None) or getattr(self, "tool_call_id", None))


class SystemMessage(_BaseMessage):
    role: Literal["system"] = "system"
    content: str


class UserMessage(_BaseMessage):
    role: Literal["user"] = "user"
    content: str


class AssistantMessage(_BaseMessage):
    role: Literal["assistant"] = "assistant"
    content: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ToolMessage(_BaseMessage):
    role: Literal["tool"] = "tool"
    content: str
    tool_call_id: str
    name: str | None = None


Message = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]

_message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def parse_message(data: dict[str, Any]) -> Message:
    """Build a typed message from a plain dict (e.g. a persisted row)."""
    return _message_adapter.validate_python(data)


class ToolDefinition(BaseModel):
    """Function declaration sent to the provider on every turn."""

    name: str
    description: str
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def to_openai_dict(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


__all__ = [
    "MessageRole",
    "ToolCall",
    "SystemMessage",
    "UserMessage",
    "AssistantMessage",
    "ToolMessage",
    "Message",
    "parse_message",
    "ToolDefinition",
]
