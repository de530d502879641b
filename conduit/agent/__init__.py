from conduit.agent.agent import Agent
from conduit.agent.coordinator import AgentCoordinator, TransferTool
from conduit.agent.executor import AgentExecutor

__all__ = ["Agent", "AgentCoordinator", "AgentExecutor", "TransferTool"]
