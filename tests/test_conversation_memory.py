"""
Tests for MemoryManager
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from conduit.domain import AssistantMessage, SystemMessage, ToolCall, ToolMessage, UserMessage
from conduit.exceptions import TransportError
from conduit.memory.conversation import (
    SUMMARY_INSTRUCTION,
    MemoryManager,
    fallback_summary,
    format_transcript,
)
from conduit.memory.storage import InMemoryPersistence


@pytest.fixture
def persistence():
    return InMemoryPersistence()


def summarizing_client(summary: str = "They talked about invoices."):
    client = MagicMock()
    client.send = AsyncMock(return_value=MagicMock(text=summary))
    return client


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [1, 3, 10])
async def test_overflow_collapses_into_one_summary(limit):
    memory = MemoryManager(client=summarizing_client(), short_term_limit=limit, long_term_limit=5)

    for i in range(limit):
        await memory.add_message(UserMessage(content=f"msg {i}"))
        assert len(memory.get_messages()) == len(memory.long_term) + len(memory.short_term)
    assert len(memory.short_term) == limit

    await memory.add_message(UserMessage(content="one too many"))

    assert len(memory.short_term) == 0
    assert len(memory.long_term) == 1
    assert len(memory.get_messages()) == 1
    assert memory.long_term[0] == SystemMessage(content="Historical context: They talked about invoices.")


@pytest.mark.asyncio
async def test_summary_request_uses_full_window():
    client = summarizing_client()
    memory = MemoryManager(client=client, short_term_limit=2)

    await memory.add_message(UserMessage(content="hello"))
    await memory.add_message(AssistantMessage(content="hi there"))
    await memory.add_message(UserMessage(content="bye"))

    sent = client.send.call_args[0][0]
    assert sent[0] == SystemMessage(content=SUMMARY_INSTRUCTION)
    assert sent[1].content == "user: hello\nassistant: hi there\nuser: bye"


@pytest.mark.asyncio
async def test_summarization_failure_uses_fallback():
    client = MagicMock()
    client.send = AsyncMock(side_effect=TransportError("down"))
    memory = MemoryManager(client=client, short_term_limit=2)

    for i in range(3):
        await memory.add_message(UserMessage(content=f"m{i}"))

    assert memory.long_term[0].content == f"Historical context: {fallback_summary(3)}"
    assert "3 messages exchanged" in memory.long_term[0].content


@pytest.mark.asyncio
async def test_long_term_evicts_oldest():
    memory = MemoryManager(client=None, short_term_limit=1, long_term_limit=2)

    for i in range(6):
        await memory.add_message(UserMessage(content=f"m{i}"))

    assert len(memory.long_term) == 2
    assert len(memory.short_term) == 0


@pytest.mark.asyncio
async def test_get_messages_orders_long_then_short_and_caches():
    memory = MemoryManager(client=summarizing_client("S"), short_term_limit=2)
    for text in ["a", "b", "c", "d"]:
        await memory.add_message(UserMessage(content=text))

    first = memory.get_messages()
    second = memory.get_messages()

    assert [m.content for m in first] == ["Historical context: S", "d"]
    assert first == second
    assert first is not second


@pytest.mark.asyncio
async def test_empty_messages_are_not_stored(persistence):
    memory = MemoryManager(persistence=persistence)

    await memory.add_message(AssistantMessage(content=""))
    await memory.add_message(
        AssistantMessage(content=None, tool_calls=[ToolCall(id="c1", tool_name="t")])
    )
    await memory.add_message(ToolMessage(content="", tool_call_id="c1"))

    assert len(memory.short_term) == 2
    assert [row.role for row in persistence.rows] == ["assistant", "tool"]


@pytest.mark.asyncio
async def test_persistence_rows_and_pruning(persistence):
    memory = MemoryManager(client=summarizing_client("S"), short_term_limit=2, persistence=persistence)

    await memory.add_message(UserMessage(content="a"))
    await memory.add_message(
        AssistantMessage(content=None, tool_calls=[ToolCall(id="c1", tool_name="calc", arguments="{}")])
    )
    assert persistence.rows[1].tool_calls == [
        {"id": "c1", "type": "function", "function": {"name": "calc", "arguments": "{}"}}
    ]

    await memory.add_message(ToolMessage(content="done", tool_call_id="c1"))

    rows = persistence.rows
    assert len(rows) == 1
    assert rows[0].is_summary is True
    assert rows[0].content == "Historical context: S"


@pytest.mark.asyncio
async def test_init_hydrates_by_summary_flag(persistence):
    await persistence.save_message("system", "Historical context: old", is_summary=True)
    await persistence.save_message("user", "question")
    await persistence.save_message(
        "assistant", None, tool_calls=[{"id": "c9", "type": "function",
                                        "function": {"name": "calc", "arguments": "{}"}}]
    )
    await persistence.save_message("tool", "Result: 1", tool_call_id="c9")

    memory = MemoryManager(persistence=persistence, short_term_limit=10)
    await memory.init()

    assert memory.long_term == (SystemMessage(content="Historical context: old"),)
    assert [m.role for m in memory.short_term] == ["user", "assistant", "tool"]
    assert memory.short_term[1].tool_calls[0].tool_name == "calc"
    assert memory.short_term[2].tool_call_id == "c9"


@pytest.mark.asyncio
async def test_clear_wipes_everything(persistence):
    memory = MemoryManager(persistence=persistence)
    await memory.add_message(UserMessage(content="a"))

    await memory.clear()

    assert memory.get_messages() == []
    assert persistence.rows == []


@pytest.mark.asyncio
async def test_checkpoint_without_persistence():
    from conduit.domain import AgentStateCheckpoint

    memory = MemoryManager()
    checkpoint = AgentStateCheckpoint(current_step="Sending API request...", iteration_count=2)

    await memory.save_checkpoint(checkpoint)
    assert await memory.load_checkpoint() == checkpoint

    await memory.clear_checkpoint()
    assert await memory.load_checkpoint() is None


def test_format_transcript_mentions_tool_calls():
    text = format_transcript(
        [
            UserMessage(content="add"),
            AssistantMessage(content=None, tool_calls=[ToolCall(id="1", tool_name="calculator")]),
            ToolMessage(content="Result: 2", tool_call_id="1"),
        ]
    )
    assert text == "user: add\nassistant: [called tools: calculator]\ntool: Result: 2"


@pytest.mark.asyncio
async def test_injected_logger_receives_events():
    logger = MagicMock()
    memory = MemoryManager(client=None, short_term_limit=1, logger=logger)

    await memory.add_message(UserMessage(content="a"))
    await memory.add_message(UserMessage(content="b"))

    events = [call.args[0] for call in logger.info.call_args_list]
    assert "memory_summarized" in events
    assert "performance" in events


@pytest.mark.parametrize("limits", [{"short_term_limit": 0}, {"long_term_limit": 0}])
def test_zero_limits_are_rejected(limits):
    with pytest.raises(ValueError):
        MemoryManager(**limits)


def test_explicit_limits_override_settings():
    memory = MemoryManager(short_term_limit=1, long_term_limit=1)

    assert memory.short_term_limit == 1
    assert memory.long_term_limit == 1
