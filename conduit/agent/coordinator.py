"""
Multi-agent coordination via a transfer tool.

Every agent gets a ``transfer_to_agent`` tool. Calling it only records the
target; the coordinator switches the active agent after the turn finishes.
All agents share one MemoryManager, so the new agent sees the full history.
"""

from typing import Any, AsyncIterator

from conduit.agent.agent import Agent
from conduit.domain import AgentResponse, AgentStateCheckpoint, FinalAnswer
from conduit.memory.conversation import MemoryManager
from conduit.runtime.control import CancellationToken
from conduit.tools.base import BaseTool
from conduit.utils.logging import get_logger

TRANSFER_TOOL_NAME = "transfer_to_agent"


class TransferTool(BaseTool):
    """Records a handoff request for the coordinator."""

    name = TRANSFER_TOOL_NAME
    description = (
        "Transfer the conversation to another specialized agent. Only do this if the user "
        "request requires the specific expertise of the other agent."
    )

    def __init__(self, coordinator: "AgentCoordinator"):
        self._coordinator = coordinator

    def get_parameters(self) -> dict[str, Any]:
        agents = self._coordinator.agents
        return {
            "type": "object",
            "properties": {
                "target_agent": {
                    "type": "string",
                    "enum": list(agents),
                    "description": "Agent to hand the conversation to. Available: "
                    + "; ".join(
                        f"{name} ({agent.description})" if agent.description else name
                        for name, agent in agents.items()
                    ),
                },
                "reason": {
                    "type": "string",
                    "description": "Why the other agent is better suited for this request",
                },
            },
            "required": ["target_agent", "reason"],
        }

    async def execute(self, args: dict[str, Any]) -> str:
        target = args.get("target_agent", "")
        reason = args.get("reason", "")
        if target not in self._coordinator.agents:
            available = ", ".join(self._coordinator.agents)
            return f'Error: Agent "{target}" not found. Available agents: {available}'

        self._coordinator.request_transfer(target, reason)
        return (
            f"SUCCESS. You have transferred control to {target}. Stop responding and let the "
            f"new agent take over for the next request. Reason provided: {reason}"
        )


class AgentCoordinator:
    """
    Routes a conversation across several agents.

    Examples:
        >>> coordinator = AgentCoordinator([billing_agent, inventory_agent])
        >>> await coordinator.run("How many widgets are in stock?")
        >>> coordinator.active_agent.name
        'inventory'
    """

    def __init__(
        self,
        agents: list[Agent],
        memory: MemoryManager | None = None,
        logger: Any = None,
    ):
        if not agents:
            raise ValueError("AgentCoordinator requires at least one agent")

        self.logger = logger or get_logger(__name__)
        self._agents: dict[str, Agent] = {}
        for agent in agents:
            if agent.name in self._agents:
                raise ValueError(f"Duplicate agent name: {agent.name}")
            self._agents[agent.name] = agent

        self.memory = memory or agents[0].memory
        transfer_tool = TransferTool(self)
        for agent in agents:
            agent.memory = self.memory
            agent.add_tool(transfer_tool)

        self._active = agents[0]
        self._pending_transfer: str | None = None

    @property
    def agents(self) -> dict[str, Agent]:
        return dict(self._agents)

    @property
    def active_agent(self) -> Agent:
        return self._active

    @property
    def pending_transfer(self) -> str | None:
        return self._pending_transfer

    def request_transfer(self, target: str, reason: str = "") -> None:
        self.logger.info(
            "agent_handoff_requested",
            source=self._active.name,
            target=target,
            reason=reason,
        )
        self._pending_transfer = target

    def _apply_transfer(self) -> None:
        target = self._pending_transfer
        self._pending_transfer = None
        if target is None or target == self._active.name:
            return
        previous = self._active
        self._active = self._agents[target]
        self.logger.info("agent_handoff", source=previous.name, target=target)

    async def run(
        self,
        prompt: str,
        cancellation: CancellationToken | None = None,
    ) -> FinalAnswer:
        """Run one turn on the active agent, then apply any requested handoff."""
        try:
            answer = await self._active.run(prompt, cancellation=cancellation)
        except BaseException:
            self._pending_transfer = None
            raise
        self._apply_transfer()
        return answer

    async def run_streaming(
        self,
        prompt: str,
        cancellation: CancellationToken | None = None,
    ) -> AsyncIterator[AgentResponse]:
        try:
            async for response in self._active.run_streaming(prompt, cancellation=cancellation):
                yield response
        except BaseException:
            self._pending_transfer = None
            raise
        self._apply_transfer()

    async def resume(
        self,
        checkpoint: AgentStateCheckpoint | None = None,
        cancellation: CancellationToken | None = None,
    ) -> FinalAnswer:
        """
        Continue an interrupted run without re-submitting its prompt.

        Uses the given checkpoint, or the last persisted one.

        Raises:
            ValueError: no checkpoint to resume from
        """
        if checkpoint is None:
            checkpoint = await self.memory.load_checkpoint()
        if checkpoint is None:
            raise ValueError("No checkpoint to resume from")

        self.logger.info(
            "agent_run_resuming",
            agent=self._active.name,
            iteration=checkpoint.iteration_count,
            step=checkpoint.current_step,
        )
        try:
            answer = await self._active.run("", cancellation=cancellation, resume_from=checkpoint)
        except BaseException:
            self._pending_transfer = None
            raise
        self._apply_transfer()
        return answer


__all__ = ["AgentCoordinator", "TransferTool", "TRANSFER_TOOL_NAME"]
