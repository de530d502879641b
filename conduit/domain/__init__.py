"""
Domain models - canonical messages, responses and checkpoints.
"""

from conduit.domain.checkpoint import AgentStateCheckpoint
from conduit.domain.messages import (
    AssistantMessage,
    Message,
    MessageRole,
    SystemMessage,
    ToolCall,
    ToolDefinition,
    ToolMessage,
    UserMessage,
    parse_message,
)
from conduit.domain.models import ChatChoice, ChatOptions, ChatResponse, TokenUsage
from conduit.domain.responses import (
    AgentResponse,
    FinalAnswer,
    TextDelta,
    ToolCallBatch,
    UsageUpdate,
)
from conduit.domain.tools import ToolResult

__all__ = [
    "AgentStateCheckpoint",
    "AssistantMessage",
    "Message",
    "MessageRole",
    "SystemMessage",
    "ToolCall",
    "ToolDefinition",
    "ToolMessage",
    "UserMessage",
    "parse_message",
    "ChatChoice",
    "ChatOptions",
    "ChatResponse",
    "TokenUsage",
    "AgentResponse",
    "FinalAnswer",
    "TextDelta",
    "ToolCallBatch",
    "UsageUpdate",
    "ToolResult",
]
