"""
Persistence contract for conversation memory and run checkpoints.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from conduit.domain import AgentStateCheckpoint, Message, ToolCall, parse_message


class StoredMessage(BaseModel):
    """One persisted message row, in insertion order."""

    id: int | None = None
    role: str
    content: str | None = None
    is_summary: bool = False
    tool_call_id: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> Message:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.role == "assistant":
            data["tool_calls"] = [ToolCall.from_openai_dict(tc) for tc in self.tool_calls or []]
        elif self.role == "tool":
            data["content"] = self.content or ""
            data["tool_call_id"] = self.tool_call_id or ""
        else:
            data["content"] = self.content or ""
        return parse_message(data)


class MemoryPersistence(ABC):
    """
    Storage backend used by MemoryManager and the agent loop.

    Implementations must return rows from ``load_messages`` in insertion order.
    """

    @abstractmethod
    async def save_message(
        self,
        role: str,
        content: str | None,
        is_summary: bool = False,
        tool_call_id: str | None = None,
        tool_calls: list[dict[str, Any]] | None = None,
    ) -> None:
        pass

    @abstractmethod
    async def load_messages(self) -> list[StoredMessage]:
        pass

    @abstractmethod
    async def clear_messages(self) -> None:
        pass

    @abstractmethod
    async def delete_old_messages(self, keep_limit: int) -> None:
        """Delete non-summary rows except the newest ``keep_limit``."""
        pass

    @abstractmethod
    async def save_checkpoint(self, checkpoint: AgentStateCheckpoint) -> None:
        pass

    @abstractmethod
    async def load_checkpoint(self) -> AgentStateCheckpoint | None:
        pass

    @abstractmethod
    async def clear_checkpoint(self) -> None:
        pass

    async def close(self) -> None:
        pass


__all__ = ["MemoryPersistence", "StoredMessage"]
