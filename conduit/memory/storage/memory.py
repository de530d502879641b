"""
In-memory persistence. Useful for tests and throwaway sessions.
"""

from typing import Any

from conduit.domain import AgentStateCheckpoint
from conduit.memory.base import MemoryPersistence, StoredMessage


class InMemoryPersistence(MemoryPersistence):
    """Keeps rows in a list; nothing survives the process."""

    def __init__(self) -> None:
        self._rows: list[StoredMessage] = []
        self._next_id = 1
        self._checkpoint: AgentStateCheckpoint | None = None

    @property
    def rows(self) -> list[StoredMessage]:
        return list(self._rows)

    async def save_message(
        self,
        role: str,
        content: str | None,
        is_summary: bool = False,
        tool_call_id: str | None = None,
        tool_calls: list[dict[str, Any]] | None = None,
    ) -> None:
        self._rows.append(
            StoredMessage(
                id=self._next_id,
                role=role,
                content=content,
                is_summary=is_summary,
                tool_call_id=tool_call_id,
                tool_calls=tool_calls,
            )
        )
        self._next_id += 1

    async def load_messages(self) -> list[StoredMessage]:
        return list(self._rows)

    async def clear_messages(self) -> None:
        self._rows.clear()

    async def delete_old_messages(self, keep_limit: int) -> None:
        regular = [row for row in self._rows if not row.is_summary]
        keep_ids = {row.id for row in regular[-keep_limit:]} if keep_limit > 0 else set()
        self._rows = [row for row in self._rows if row.is_summary or row.id in keep_ids]

    async def save_checkpoint(self, checkpoint: AgentStateCheckpoint) -> None:
        self._checkpoint = checkpoint.model_copy()

    async def load_checkpoint(self) -> AgentStateCheckpoint | None:
        return self._checkpoint

    async def clear_checkpoint(self) -> None:
        self._checkpoint = None


__all__ = ["InMemoryPersistence"]
