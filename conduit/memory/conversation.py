"""
Conversation memory with automatic summarization.

Short-term memory holds the most recent messages. When it overflows, the
whole window is summarized by the LLM into one system message that moves to
long-term memory, and short-term starts over.
"""

from typing import TYPE_CHECKING, Any, Sequence

from conduit.domain import (
    AgentStateCheckpoint,
    AssistantMessage,
    Message,
    SystemMessage,
    ToolMessage,
    UserMessage,
)
from conduit.memory.base import MemoryPersistence
from conduit.utils.logging import get_logger, log_performance

if TYPE_CHECKING:
    from conduit.llm.base import LLMClient

SUMMARY_INSTRUCTION = (
    "You are a helpful summarizer. Summarize the following conversation history into a "
    "single concise paragraph that captures the key points, ongoing topics, and current "
    "context. Keep it under 500 words."
)

SUMMARY_PREFIX = "Historical context: "


def format_transcript(messages: Sequence[Message]) -> str:
    """Render messages as ``role: content`` lines for the summarizer."""
    lines = []
    for msg in messages:
        content = msg.content or ""
        if isinstance(msg, AssistantMessage) and msg.tool_calls:
            called = ", ".join(tc.tool_name for tc in msg.tool_calls)
            content = f"{content} [called tools: {called}]".strip()
        lines.append(f"{msg.role}: {content}")
    return "\n".join(lines)


def fallback_summary(message_count: int) -> str:
    return (
        f"Previous conversation context: {message_count} messages exchanged, "
        "focusing on user queries and agent responses."
    )


class MemoryManager:
    """
    Two-tier conversation memory.

    Invariants after every ``add_message``: ``len(short_term) <= short_term_limit``
    and ``len(long_term) <= long_term_limit``.

    Examples:
        >>> memory = MemoryManager(client, persistence=SQLitePersistence("chat.db"))
        >>> await memory.init()
        >>> await memory.add_message(UserMessage(content="hi"))
        >>> memory.get_messages()
    """

    def __init__(
        self,
        client: "LLMClient | None" = None,
        short_term_limit: int | None = None,
        long_term_limit: int | None = None,
        persistence: MemoryPersistence | None = None,
        logger: Any = None,
    ):
        from conduit.config import settings

        self.client = client
        self.short_term_limit = (
            settings.short_memory_limit if short_term_limit is None else short_term_limit
        )
        self.long_term_limit = (
            settings.long_memory_limit if long_term_limit is None else long_term_limit
        )
        if self.short_term_limit < 1 or self.long_term_limit < 1:
            raise ValueError("Memory limits must be at least 1")
        self.persistence = persistence
        self.logger = logger or get_logger(__name__)

        self._short_term: list[Message] = []
        self._long_term: list[SystemMessage] = []
        self._cache: list[Message] | None = None
        # Used only when no persistence is configured
        self._checkpoint: AgentStateCheckpoint | None = None

    @property
    def short_term(self) -> tuple[Message, ...]:
        return tuple(self._short_term)

    @property
    def long_term(self) -> tuple[SystemMessage, ...]:
        return tuple(self._long_term)

    async def init(self) -> None:
        """Hydrate both tiers from persistence."""
        if self.persistence is None:
            return

        rows = await self.persistence.load_messages()
        summaries = [row for row in rows if row.is_summary]
        regular = [row for row in rows if not row.is_summary]

        self._long_term = [
            SystemMessage(content=row.content or "") for row in summaries[-self.long_term_limit:]
        ]
        self._short_term = [row.to_message() for row in regular[-self.short_term_limit:]]
        self._invalidate()

        self.logger.info(
            "memory_initialized",
            short_term=len(self._short_term),
            long_term=len(self._long_term),
        )

    async def add_message(self, message: Message) -> None:
        """Append a message, persisting it and summarizing on overflow."""
        if not message.is_persistable:
            self.logger.debug("memory_message_skipped", role=message.role, reason="empty")
            return

        self._short_term.append(message)
        self._invalidate()

        if self.persistence is not None:
            await self.persistence.save_message(**self._to_row(message))

        if len(self._short_term) > self.short_term_limit:
            await self._summarize()

    def get_messages(self) -> list[Message]:
        """Long-term summaries followed by short-term history."""
        if self._cache is None:
            self._cache = [*self._long_term, *self._short_term]
        return list(self._cache)

    async def clear(self) -> None:
        self._short_term.clear()
        self._long_term.clear()
        self._invalidate()
        if self.persistence is not None:
            await self.persistence.clear_messages()
        self.logger.info("memory_cleared")

    async def save_checkpoint(self, checkpoint: AgentStateCheckpoint) -> None:
        if self.persistence is not None:
            await self.persistence.save_checkpoint(checkpoint)
        else:
            self._checkpoint = checkpoint

    async def load_checkpoint(self) -> AgentStateCheckpoint | None:
        if self.persistence is not None:
            return await self.persistence.load_checkpoint()
        return self._checkpoint

    async def clear_checkpoint(self) -> None:
        if self.persistence is not None:
            await self.persistence.clear_checkpoint()
        else:
            self._checkpoint = None

    def _invalidate(self) -> None:
        self._cache = None

    @staticmethod
    def _to_row(message: Message) -> dict[str, Any]:
        row: dict[str, Any] = {"role": message.role, "content": message.content}
        if isinstance(message, AssistantMessage) and message.tool_calls:
            row["tool_calls"] = [tc.to_openai_dict() for tc in message.tool_calls]
        if isinstance(message, ToolMessage):
            row["tool_call_id"] = message.tool_call_id
        return row

    async def _generate_summary(self, window: list[Message]) -> str:
        if self.client is None:
            return fallback_summary(len(window))
        try:
            response = await self.client.send(
                [
                    SystemMessage(content=SUMMARY_INSTRUCTION),
                    UserMessage(content=format_transcript(window)),
                ]
            )
        except Exception as e:
            self.logger.warning(
                "memory_summarization_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return fallback_summary(len(window))
        text = (response.text or "").strip()
        return text or fallback_summary(len(window))

    async def _summarize(self) -> None:
        window = list(self._short_term)

        with log_performance("memory_summarize", logger=self.logger, messages=len(window)) as perf:
            summary = await self._generate_summary(window)
            perf["summary_chars"] = len(summary)

        summary_message = SystemMessage(content=f"{SUMMARY_PREFIX}{summary}")
        self._long_term.append(summary_message)
        self._short_term.clear()

        if self.persistence is not None:
            await self.persistence.save_message(
                role="system", content=summary_message.content, is_summary=True
            )
            await self.persistence.delete_old_messages(keep_limit=len(self._short_term))

        if len(self._long_term) > self.long_term_limit:
            self._long_term.pop(0)

        self._invalidate()
        self.logger.info(
            "memory_summarized",
            summarized_messages=len(window),
            long_term=len(self._long_term),
        )


__all__ = [
    "MemoryManager",
    "SUMMARY_INSTRUCTION",
    "SUMMARY_PREFIX",
    "fallback_summary",
    "format_transcript",
]
