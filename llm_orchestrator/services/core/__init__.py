"""
Core provider plumbing: vendor client cache and provider adapters.
"""

from .ai_client_service import AIClientService, get_ai_client_service
from .providers import (
    AnthropicProvider,
    CompletionProvider,
    CompletionResult,
    LLMProvider,
    OpenAIProvider,
    ProviderRegistry,
    get_provider_registry,
    parse_provider,
    resolve_llm_provider,
)

__all__ = [
    "AIClientService",
    "get_ai_client_service",
    "AnthropicProvider",
    "CompletionProvider",
    "CompletionResult",
    "LLMProvider",
    "OpenAIProvider",
    "ProviderRegistry",
    "get_provider_registry",
    "parse_provider",
    "resolve_llm_provider",
]
