"""SQLite implementation of MemoryPersistence."""

import json
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from conduit.domain import AgentStateCheckpoint
from conduit.memory.base import MemoryPersistence, StoredMessage
from conduit.utils.logging import get_logger

logger = get_logger(__name__)

CHECKPOINT_ROW_ID = 1


class SQLitePersistence(MemoryPersistence):
    """SQLite-backed conversation memory and single-slot checkpoint."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from conduit.config import settings

            db_path = settings.sqlite_path
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._initialized = False

    async def connect(self) -> None:
        """Initialize database connection and create tables."""
        if self._initialized:
            return

        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._create_tables()
        self._initialized = True

        logger.info("sqlite_persistence_connected", db_path=self.db_path)

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            self._initialized = False

    async def __aenter__(self) -> "SQLitePersistence":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _create_tables(self) -> None:
        if not self._connection:
            raise RuntimeError("Database connection not established")

        await self._connection.execute(
            """
            CREATE TABLE IF NOT EXISTS chat_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                role TEXT NOT NULL,
                content TEXT,
                is_summary INTEGER NOT NULL DEFAULT 0,
                tool_call_id TEXT,
                tool_calls TEXT,
                created_at TEXT NOT NULL
            )
        """
        )
        await self._connection.execute(
            """
            CREATE TABLE IF NOT EXISTS agent_checkpoints (
                id INTEGER PRIMARY KEY,
                is_running INTEGER NOT NULL,
                current_step TEXT NOT NULL,
                iteration_count INTEGER NOT NULL,
                error_message TEXT,
                timestamp TEXT NOT NULL
            )
        """
        )
        await self._connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_chat_messages_is_summary ON chat_messages(is_summary)"
        )
        await self._connection.commit()

    async def _ensure_connection(self) -> aiosqlite.Connection:
        if not self._initialized:
            await self.connect()
        assert self._connection is not None
        return self._connection

    async def save_message(
        self,
        role: str,
        content: str | None,
        is_summary: bool = False,
        tool_call_id: str | None = None,
        tool_calls: list[dict[str, Any]] | None = None,
    ) -> None:
        conn = await self._ensure_connection()
        await conn.execute(
            """
            INSERT INTO chat_messages
                (role, content, is_summary, tool_call_id, tool_calls, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                role,
                content,
                1 if is_summary else 0,
                tool_call_id,
                json.dumps(tool_calls) if tool_calls else None,
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        await conn.commit()

    def _deserialize_message(self, row: aiosqlite.Row) -> StoredMessage:
        data = dict(row)
        data["is_summary"] = bool(data["is_summary"])
        if data.get("tool_calls"):
            data["tool_calls"] = json.loads(data["tool_calls"])
        return StoredMessage.model_validate(data)

    async def load_messages(self) -> list[StoredMessage]:
        conn = await self._ensure_connection()
        async with conn.execute("SELECT * FROM chat_messages ORDER BY id ASC") as cursor:
            rows = await cursor.fetchall()
        return [self._deserialize_message(row) for row in rows]

    async def clear_messages(self) -> None:
        conn = await self._ensure_connection()
        await conn.execute("DELETE FROM chat_messages")
        await conn.commit()

    async def delete_old_messages(self, keep_limit: int) -> None:
        conn = await self._ensure_connection()
        cursor = await conn.execute(
            """
            DELETE FROM chat_messages
            WHERE is_summary = 0
              AND id NOT IN (
                  SELECT id FROM chat_messages
                  WHERE is_summary = 0
                  ORDER BY id DESC
                  LIMIT ?
              )
            """,
            (max(keep_limit, 0),),
        )
        await conn.commit()
        logger.debug("sqlite_old_messages_deleted", deleted=cursor.rowcount, keep_limit=keep_limit)

    async def save_checkpoint(self, checkpoint: AgentStateCheckpoint) -> None:
        conn = await self._ensure_connection()
        await conn.execute(
            """
            INSERT OR REPLACE INTO agent_checkpoints
                (id, is_running, current_step, iteration_count, error_message, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                CHECKPOINT_ROW_ID,
                1 if checkpoint.is_running else 0,
                checkpoint.current_step,
                checkpoint.iteration_count,
                checkpoint.error_message,
                checkpoint.timestamp.isoformat(),
            ),
        )
        await conn.commit()

    async def load_checkpoint(self) -> AgentStateCheckpoint | None:
        conn = await self._ensure_connection()
        async with conn.execute(
            "SELECT * FROM agent_checkpoints WHERE id = ?", (CHECKPOINT_ROW_ID,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        data = dict(row)
        data.pop("id", None)
        data["is_running"] = bool(data["is_running"])
        return AgentStateCheckpoint.model_validate(data)

    async def clear_checkpoint(self) -> None:
        conn = await self._ensure_connection()
        await conn.execute("DELETE FROM agent_checkpoints")
        await conn.commit()


__all__ = ["SQLitePersistence"]
