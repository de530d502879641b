"""
Conduit - ReAct agent runtime over OpenAI, Anthropic and Gemini wire protocols.
"""

from conduit.agent import Agent, AgentCoordinator
from conduit.domain import (
    AgentStateCheckpoint,
    AssistantMessage,
    ChatOptions,
    FinalAnswer,
    SystemMessage,
    TextDelta,
    TokenUsage,
    ToolCall,
    ToolCallBatch,
    ToolDefinition,
    ToolMessage,
    UsageUpdate,
    UserMessage,
)
from conduit.exceptions import (
    ApiError,
    CancellationError,
    ConduitError,
    IterationLimitExceededError,
    PromptTooLongError,
    RateLimitError,
    ToolExecutionError,
    TransportError,
)
from conduit.llm import AnthropicClient, GeminiClient, LLMClient, OpenAIClient, create_client
from conduit.memory import InMemoryPersistence, MemoryManager, SQLitePersistence
from conduit.runtime import CancellationToken, RunState
from conduit.tools import BaseTool

__version__ = "0.1.0"

__all__ = [
    "Agent",
    "AgentCoordinator",
    "AgentStateCheckpoint",
    "AssistantMessage",
    "ChatOptions",
    "FinalAnswer",
    "SystemMessage",
    "TextDelta",
    "TokenUsage",
    "ToolCall",
    "ToolCallBatch",
    "ToolDefinition",
    "ToolMessage",
    "UsageUpdate",
    "UserMessage",
    "ApiError",
    "CancellationError",
    "ConduitError",
    "IterationLimitExceededError",
    "PromptTooLongError",
    "RateLimitError",
    "ToolExecutionError",
    "TransportError",
    "LLMClient",
    "OpenAIClient",
    "AnthropicClient",
    "GeminiClient",
    "create_client",
    "MemoryManager",
    "InMemoryPersistence",
    "SQLitePersistence",
    "CancellationToken",
    "RunState",
    "BaseTool",
]
