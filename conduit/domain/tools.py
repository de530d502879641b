from typing import Any, Literal

from pydantic import BaseModel, Field

from conduit.domain.messages import ToolMessage

ToolResultStatus = Literal["success", "error", "timeout", "not_found", "confirmation_required"]


class ToolResult(BaseModel):
    """Outcome of one tool call, already rendered as text for the model."""

    tool_name: str
    tool_call_id: str
    input_args: dict[str, Any] = Field(default_factory=dict)
    content: str
    status: ToolResultStatus = "success"
    error: str | None = None
    duration: float = 0.0

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    def to_message(self) -> ToolMessage:
        return ToolMessage(
            content=self.content, tool_call_id=self.tool_call_id, name=self.tool_name
        )


__all__ = ["ToolResult", "ToolResultStatus"]
