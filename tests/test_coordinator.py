"""
Tests for AgentCoordinator and the transfer tool.
"""

import pytest

from conduit.agent import Agent, AgentCoordinator
from conduit.agent.coordinator import TRANSFER_TOOL_NAME
from conduit.domain import AgentStateCheckpoint, FinalAnswer
from conduit.exceptions import ApiError
from conduit.memory import MemoryManager


def transfer_args(target, reason="needs stock data"):
    return {"target_agent": target, "reason": reason}


@pytest.fixture
def team(scripted_client):
    def factory(billing_turns=(), inventory_turns=()):
        billing = Agent(
            client=scripted_client(*billing_turns),
            name="billing",
            description="Invoices and payments",
            memory=MemoryManager(short_term_limit=50),
        )
        inventory = Agent(
            client=scripted_client(*inventory_turns),
            name="inventory",
            description="Stock levels",
            memory=MemoryManager(short_term_limit=50),
        )
        return AgentCoordinator([billing, inventory]), billing, inventory

    return factory


def test_requires_agents():
    with pytest.raises(ValueError):
        AgentCoordinator([])


def test_rejects_duplicate_names(scripted_client):
    first = Agent(client=scripted_client(), name="same")
    second = Agent(client=scripted_client(), name="same")

    with pytest.raises(ValueError):
        AgentCoordinator([first, second])


def test_agents_share_memory_and_get_transfer_tool(team):
    coordinator, billing, inventory = team()

    assert billing.memory is inventory.memory is coordinator.memory
    assert coordinator.active_agent is billing
    for agent in (billing, inventory):
        assert TRANSFER_TOOL_NAME in [t.name for t in agent.tools]

    params = billing.tools[-1].get_parameters()
    assert params["properties"]["target_agent"]["enum"] == ["billing", "inventory"]
    assert params["required"] == ["target_agent", "reason"]


@pytest.mark.asyncio
async def test_handoff_applies_after_turn(team, responses):
    coordinator, billing, inventory = team(
        billing_turns=[
            responses.tool_call(TRANSFER_TOOL_NAME, transfer_args("inventory")),
            responses.text("Passing you to inventory."),
        ],
        inventory_turns=[responses.text("We have 12 widgets.")],
    )

    answer = await coordinator.run("How many widgets are in stock?")

    assert answer.text == "Passing you to inventory."
    assert coordinator.active_agent is inventory
    assert coordinator.pending_transfer is None
    tool_result = billing.client.requests[1]["messages"][-1]
    assert tool_result.content.startswith("SUCCESS. You have transferred control to inventory.")

    answer = await coordinator.run("And gadgets?")

    assert answer.text == "We have 12 widgets."
    seen = [m.content for m in inventory.client.requests[0]["messages"] if m.role == "user"]
    assert seen == ["How many widgets are in stock?", "And gadgets?"]


@pytest.mark.asyncio
async def test_unknown_target_keeps_active_agent(team, responses):
    coordinator, billing, _ = team(
        billing_turns=[
            responses.tool_call(TRANSFER_TOOL_NAME, transfer_args("hr")),
            responses.text("I'll handle it myself."),
        ]
    )

    await coordinator.run("Who manages payroll?")

    assert coordinator.active_agent is billing
    tool_result = billing.client.requests[1]["messages"][-1]
    assert tool_result.content == 'Error: Agent "hr" not found. Available agents: billing, inventory'


@pytest.mark.asyncio
async def test_failed_turn_discards_pending_transfer(team, responses):
    coordinator, billing, _ = team(
        billing_turns=[
            responses.tool_call(TRANSFER_TOOL_NAME, transfer_args("inventory")),
            ApiError("overloaded", status_code=529),
        ]
    )

    with pytest.raises(ApiError):
        await coordinator.run("stock?")

    assert coordinator.active_agent is billing
    assert coordinator.pending_transfer is None


@pytest.mark.asyncio
async def test_streaming_handoff(team, responses):
    coordinator, _, inventory = team(
        billing_turns=[
            responses.tool_call(TRANSFER_TOOL_NAME, transfer_args("inventory")),
            responses.text("Transferring."),
        ]
    )

    events = [e async for e in coordinator.run_streaming("stock?")]

    assert isinstance(events[-1], FinalAnswer)
    assert coordinator.active_agent is inventory


@pytest.mark.asyncio
async def test_resume_from_persisted_checkpoint(team, responses):
    coordinator, billing, _ = team(billing_turns=[responses.text("Picked up where I left off.")])
    await coordinator.memory.save_checkpoint(
        AgentStateCheckpoint(current_step="Sending API request...", iteration_count=2)
    )

    answer = await coordinator.resume()

    assert answer.iterations == 3
    assert await coordinator.memory.load_checkpoint() is None


@pytest.mark.asyncio
async def test_resume_without_checkpoint(team):
    coordinator, _, _ = team()

    with pytest.raises(ValueError):
        await coordinator.resume()
