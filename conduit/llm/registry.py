"""
Client factory: pick a protocol adapter by provider name.
"""

from typing import Any, Callable

from conduit.llm.anthropic import AnthropicClient
from conduit.llm.base import LLMClient
from conduit.llm.gemini import GeminiClient
from conduit.llm.openai import OpenAIClient
from conduit.utils.logging import get_logger

logger = get_logger(__name__)

ClientFactory = Callable[..., LLMClient]

_factories: dict[str, ClientFactory] = {
    "openai": OpenAIClient,
    "anthropic": AnthropicClient,
    "gemini": GeminiClient,
}


def register_client(provider: str, factory: ClientFactory) -> None:
    """Register an adapter under a provider name (overrides built-ins)."""
    _factories[provider] = factory
    logger.debug("llm_client_registered", provider=provider)


def available_providers() -> list[str]:
    return sorted(_factories)


def create_client(provider: str, **kwargs: Any) -> LLMClient:
    """
    Build an LLM client for ``provider``.

    Args:
        provider: "openai", "anthropic", "gemini" or a registered name
        **kwargs: Passed to the adapter constructor (model, api_key, ...)

    Raises:
        ValueError: Unknown provider
    """
    factory = _factories.get(provider)
    if factory is None:
        raise ValueError(
            f"Unknown LLM provider: {provider}. Available: {', '.join(available_providers())}"
        )
    return factory(**kwargs)


__all__ = ["create_client", "register_client", "available_providers", "ClientFactory"]
