"""
Tests for Agent and the reason/act/observe loop.
"""

from unittest.mock import MagicMock

import pytest

from conduit.agent import Agent
from conduit.agent.executor import FALLBACK_ANSWER, GUARDRAIL, drop_unpaired_tool_messages
from conduit.domain import (
    AgentStateCheckpoint,
    AssistantMessage,
    FinalAnswer,
    SystemMessage,
    TextDelta,
    TokenUsage,
    ToolCall,
    ToolCallBatch,
    ToolMessage,
    UsageUpdate,
    UserMessage,
)
from conduit.exceptions import (
    ApiError,
    CancellationError,
    IterationLimitExceededError,
    PromptTooLongError,
    ToolExecutionError,
)
from conduit.llm.base import StreamChunk
from conduit.memory import MemoryManager
from conduit.runtime import CancellationToken
from conduit.tools.base import BaseTool


class EchoTool(BaseTool):
    name = "echo"
    description = "Echo the text argument"
    parameters = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    }

    def __init__(self):
        self.calls = []

    async def execute(self, args):
        self.calls.append(args)
        return f"echo: {args.get('text', '')}"


class BrokenTool(BaseTool):
    name = "broken"
    description = "Always fails"

    async def execute(self, args):
        raise RuntimeError("disk on fire")


class SendInvoiceTool(BaseTool):
    name = "send_invoice"
    description = "Send an invoice to a customer"
    requires_confirmation = True

    def __init__(self):
        self.sent = []

    async def execute(self, args):
        self.sent.append(args)
        return "invoice sent"


class CancellingTool(BaseTool):
    name = "cancel_everything"
    description = "Cancels the run from inside a tool"

    def __init__(self, token):
        self.token = token

    async def execute(self, args):
        self.token.cancel()
        return "cancelled"


def make_agent(client, **kwargs):
    kwargs.setdefault("memory", MemoryManager(short_term_limit=50))
    kwargs.setdefault("instructions", "You are a careful assistant.")
    return Agent(client=client, **kwargs)


@pytest.mark.asyncio
async def test_plain_answer(scripted_client, responses):
    client = scripted_client(responses.text("Hello there"))
    agent = make_agent(client)

    answer = await agent.run("hi")

    assert answer.text == "Hello there"
    assert answer.iterations == 1
    assert answer.usage.total_tokens == 15
    assert [m.role for m in agent.memory.get_messages()] == ["user", "assistant"]
    assert agent.state.is_running is False
    assert agent.state.current_step == "Run completed"
    assert await agent.memory.load_checkpoint() is None


@pytest.mark.asyncio
async def test_system_message_carries_guardrail_and_tools(scripted_client, responses):
    client = scripted_client(responses.text("ok"))
    agent = make_agent(client, instructions="Be brief.", tools=[EchoTool()])

    await agent.run("hi")

    sent = client.requests[0]["messages"]
    assert sent[0] == SystemMessage(content="Be brief." + GUARDRAIL)
    assert sent[1] == UserMessage(content="hi")
    assert [t.name for t in client.requests[0]["tools"]] == ["echo"]


@pytest.mark.asyncio
async def test_tool_round_trip(scripted_client, responses):
    echo = EchoTool()
    client = scripted_client(
        responses.tool_call("echo", {"text": "ping"}, call_id="call_a"),
        responses.text("The tool said ping"),
    )
    agent = make_agent(client, tools=[echo])

    answer = await agent.run("say ping")

    assert answer.text == "The tool said ping"
    assert answer.iterations == 2
    assert answer.usage.total_tokens == 30
    assert echo.calls == [{"text": "ping"}]

    second_request = client.requests[1]["messages"]
    assert isinstance(second_request[-1], ToolMessage)
    assert second_request[-1].tool_call_id == "call_a"
    assert second_request[-1].content == "echo: ping"
    assert [m.role for m in agent.memory.get_messages()] == ["user", "assistant", "tool", "assistant"]


@pytest.mark.asyncio
async def test_failing_tool_does_not_abort_run(scripted_client, responses):
    errors = []
    client = scripted_client(
        responses.tool_call("broken", {}),
        responses.text("Sorry, that failed"),
    )
    agent = make_agent(
        client, tools=[BrokenTool()], on_tool_error=lambda name, e: errors.append((name, e))
    )

    answer = await agent.run("do it")

    assert answer.iterations == 2
    tool_message = client.requests[1]["messages"][-1]
    assert tool_message.content == "Error executing tool: disk on fire"
    assert errors[0][0] == "broken"
    assert isinstance(errors[0][1], ToolExecutionError)
    assert isinstance(errors[0][1].original_error, RuntimeError)


class BulkDeleteTool(BaseTool):
    name = "bulk_delete"
    description = "Delete several records at once"

    def needs_confirmation(self, args):
        return len(args["ids"]) > 1

    async def execute(self, args):
        return "deleted"


@pytest.mark.asyncio
async def test_broken_confirmation_policy_does_not_abort_run(scripted_client, responses):
    client = scripted_client(
        responses.tool_call("bulk_delete", "not json at all"),
        responses.text("done"),
    )
    agent = make_agent(client, tools=[BulkDeleteTool()])

    answer = await agent.run("delete stuff")

    assert answer.text == "done"
    assert answer.iterations == 2
    tool_message = client.requests[1]["messages"][-1]
    assert tool_message.content.startswith("Error executing tool: confirmation check failed:")


@pytest.mark.asyncio
async def test_unregistered_tool_warns_and_continues(scripted_client, responses):
    warnings = []
    client = scripted_client(responses.tool_call("ghost", {}), responses.text("ok"))
    agent = make_agent(client, tools=[EchoTool()], on_warning=warnings.append)

    answer = await agent.run("hi")

    assert answer.text == "ok"
    assert client.requests[1]["messages"][-1].content.startswith('Error: Tool "ghost" is not registered')
    assert any("ghost" in w for w in warnings)


@pytest.mark.asyncio
async def test_sensitive_tool_requires_confirmation(scripted_client, responses):
    invoice = SendInvoiceTool()
    client = scripted_client(
        responses.tool_call("send_invoice", {"amount": 120}, call_id="c1"),
        responses.tool_call("send_invoice", {"amount": 120, "confirmed": True}, call_id="c2"),
        responses.text("Invoice sent"),
    )
    agent = make_agent(client, tools=[invoice])

    await agent.run("send the invoice")

    first_result = client.requests[1]["messages"][-1]
    assert first_result.content.startswith("CONFIRMATION_REQUIRED")
    assert invoice.sent == [{"amount": 120, "confirmed": True}]


@pytest.mark.asyncio
async def test_resume_continues_from_checkpoint(scripted_client, responses):
    memory = MemoryManager(short_term_limit=50)
    await memory.add_message(UserMessage(content="long task"))
    client = scripted_client(responses.text("finished"))
    agent = make_agent(client, memory=memory)

    checkpoint = AgentStateCheckpoint(current_step="Executing tool: echo", iteration_count=4)
    answer = await agent.run("", resume_from=checkpoint)

    assert answer.iterations == 5
    assert [m.content for m in memory.get_messages() if m.role == "user"] == ["long task"]
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_iteration_limit(scripted_client, responses):
    failures = []
    client = scripted_client(
        responses.tool_call("echo", {"text": "1"}, call_id="c1"),
        responses.tool_call("echo", {"text": "2"}, call_id="c2"),
    )
    agent = make_agent(client, tools=[EchoTool()], max_iterations=2, on_agent_failure=failures.append)

    with pytest.raises(IterationLimitExceededError) as exc_info:
        await agent.run("loop forever")

    assert "Maximum reasoning iterations (2) exceeded" in str(exc_info.value)
    assert len(client.requests) == 2
    assert agent.state.is_running is False
    assert "Maximum reasoning iterations" in agent.state.error_message
    assert isinstance(failures[0], IterationLimitExceededError)

    checkpoint = await agent.memory.load_checkpoint()
    assert checkpoint.is_running is False
    assert checkpoint.error_message is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("prompt", ["x" * 11, "é" * 6])
async def test_prompt_too_long_never_reaches_client(scripted_client, prompt):
    client = scripted_client()
    agent = make_agent(client, max_prompt_bytes=10)

    with pytest.raises(PromptTooLongError):
        await agent.run(prompt)

    assert client.requests == []
    assert agent.memory.get_messages() == []


@pytest.mark.asyncio
async def test_prompt_control_characters_are_stripped(scripted_client, responses):
    client = scripted_client(responses.text("ok"))
    agent = make_agent(client)

    await agent.run("hi\x00\x07 there\tfriend\n")

    assert client.requests[0]["messages"][1].content == "hi there\tfriend\n"


@pytest.mark.asyncio
async def test_cancelled_before_start(scripted_client, responses):
    token = CancellationToken()
    token.cancel()
    client = scripted_client(responses.text("never"))
    agent = make_agent(client)

    with pytest.raises(CancellationError):
        await agent.run("hi", cancellation=token)

    assert client.requests == []
    assert agent.state.error_message == "Cancelled by user"
    assert await agent.memory.load_checkpoint() is None


@pytest.mark.asyncio
async def test_cancelled_between_iterations(scripted_client, responses):
    token = CancellationToken()
    client = scripted_client(
        responses.tool_call("cancel_everything", {}),
        responses.text("never"),
    )
    agent = make_agent(client, tools=[CancellingTool(token)])

    with pytest.raises(CancellationError):
        await agent.run("hi", cancellation=token)

    assert len(client.requests) == 1
    assert agent.state.is_running is False
    assert agent.state.error_message == "Cancelled by user"
    assert await agent.memory.load_checkpoint() is None


@pytest.mark.asyncio
async def test_streaming_yields_deltas_batches_and_final(scripted_client):
    usage = TokenUsage(prompt_tokens=4, completion_tokens=2, total_tokens=6)
    client = scripted_client(
        [
            StreamChunk(content="Let me "),
            StreamChunk(content="check"),
            StreamChunk(
                tool_calls=[ToolCall(id="c1", tool_name="echo", arguments='{"text": "x"}')],
                usage=usage,
                finish_reason="tool_calls",
            ),
        ],
        [
            StreamChunk(content="Done"),
            StreamChunk(usage=usage, finish_reason="stop"),
        ],
    )
    agent = make_agent(client, tools=[EchoTool()])

    events = [event async for event in agent.run_streaming("go")]

    assert [type(e) for e in events] == [
        TextDelta,
        TextDelta,
        UsageUpdate,
        ToolCallBatch,
        TextDelta,
        UsageUpdate,
        FinalAnswer,
    ]
    assert events[3].tool_calls[0].tool_name == "echo"
    assert events[3].iteration == 1
    final = events[-1]
    assert final.text == "Done"
    assert final.iterations == 2
    assert final.usage.total_tokens == 12

    stored = agent.memory.get_messages()[1]
    assert isinstance(stored, AssistantMessage)
    assert stored.content == "Let me check"
    assert stored.tool_calls[0].id == "c1"


@pytest.mark.asyncio
async def test_empty_model_turn_returns_fallback(scripted_client, responses):
    warnings = []
    client = scripted_client(responses.text(None))
    agent = make_agent(client, on_warning=warnings.append)

    answer = await agent.run("hi")

    assert answer.text == FALLBACK_ANSWER
    assert agent.memory.get_messages()[-1].content == FALLBACK_ANSWER
    assert warnings


@pytest.mark.asyncio
async def test_api_error_propagates_and_records_failure(scripted_client):
    failures = []
    client = scripted_client(ApiError("bad request", status_code=400))
    agent = make_agent(client, on_agent_failure=failures.append)

    with pytest.raises(ApiError):
        await agent.run("hi")

    assert agent.state.error_message == "bad request (status 400)"
    assert failures and failures[0].status_code == 400


@pytest.mark.asyncio
async def test_failure_is_logged_with_injected_logger(scripted_client):
    logger = MagicMock()
    client = scripted_client(ApiError("bad request", status_code=400))
    agent = make_agent(client, logger=logger)

    with pytest.raises(ApiError):
        await agent.run("hi")

    events = [c.args[0] for c in logger.error.call_args_list]
    assert "agent_execution_failed" in events


def test_add_tool_replaces_same_name(scripted_client):
    first, second = EchoTool(), EchoTool()
    agent = make_agent(scripted_client(), tools=[first])

    agent.add_tool(second)

    assert agent.tools == [second]


def test_drop_unpaired_tool_messages():
    call = ToolCall(id="c1", tool_name="echo")
    orphan_call = ToolCall(id="c2", tool_name="echo")
    messages = [
        ToolMessage(content="stale", tool_call_id="c0"),
        UserMessage(content="hi"),
        AssistantMessage(content=None, tool_calls=[call]),
        ToolMessage(content="echo", tool_call_id="c1"),
        AssistantMessage(content="thinking", tool_calls=[orphan_call]),
    ]

    cleaned, fixes = drop_unpaired_tool_messages(messages)

    assert fixes == 2
    assert [m.role for m in cleaned] == ["user", "assistant", "tool", "assistant"]
    assert cleaned[-1].tool_calls == []
    assert cleaned[-1].content == "thinking"


def test_reused_call_id_does_not_pair_across_turns():
    lookup = ToolCall(id="call_0_lookup", tool_name="lookup")
    messages = [
        UserMessage(content="find the invoice"),
        AssistantMessage(content=None, tool_calls=[lookup]),
        ToolMessage(content="INV-1", tool_call_id="call_0_lookup"),
        AssistantMessage(content="Found INV-1"),
        UserMessage(content="and the next one?"),
        AssistantMessage(content=None, tool_calls=[lookup]),
        UserMessage(content="never mind"),
    ]

    cleaned, fixes = drop_unpaired_tool_messages(messages)

    assert fixes == 1
    assert [m.role for m in cleaned] == ["user", "assistant", "tool", "assistant", "user", "user"]
    assert cleaned[1].tool_calls == [lookup]


def test_tool_result_after_unrelated_message_is_dropped():
    call = ToolCall(id="c1", tool_name="echo")
    messages = [
        AssistantMessage(content=None, tool_calls=[call]),
        ToolMessage(content="echo", tool_call_id="c1"),
        UserMessage(content="hi"),
        ToolMessage(content="echo again", tool_call_id="c1"),
    ]

    cleaned, fixes = drop_unpaired_tool_messages(messages)

    assert fixes == 1
    assert [m.role for m in cleaned] == ["assistant", "tool", "user"]


def test_zero_iteration_cap_is_rejected(scripted_client):
    with pytest.raises(ValueError):
        make_agent(scripted_client(), max_iterations=0)
