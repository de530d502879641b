"""
LLM clients - one canonical interface, three wire protocols.
"""

from conduit.llm.anthropic import AnthropicClient
from conduit.llm.base import LLMClient, StreamChunk
from conduit.llm.gemini import GeminiClient
from conduit.llm.openai import OpenAIClient
from conduit.llm.registry import create_client, register_client

__all__ = [
    "LLMClient",
    "StreamChunk",
    "OpenAIClient",
    "AnthropicClient",
    "GeminiClient",
    "create_client",
    "register_client",
]
