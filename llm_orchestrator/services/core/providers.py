"""
LLM Provider Strategies

One adapter per backing LLM vendor, each satisfying a single capability: send a
chat completion request and return text content plus token usage.

Adapters are the only place vendor SDK exceptions are inspected. Each failure is
converted into a ProviderCallError carrying an ErrorClassification derived from
the exception type or HTTP status, so the retry loop above never has to parse
error messages.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union

import anthropic
import httpx
import openai

from llm_orchestrator.config import Settings, get_settings
from llm_orchestrator.utils.exceptions import (
    ErrorClassification,
    OrchestratorError,
    ProviderCallError,
    ValidationError,
)
from .ai_client_service import AIClientService, get_ai_client_service

logger = logging.getLogger(__name__)

Message = Dict[str, str]

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that analyzes ESG compliance for investment companies."
)


class LLMProvider(str, Enum):
    """Closed set of supported completion providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"


def parse_provider(value: Union[str, LLMProvider]) -> LLMProvider:
    """
    Convert a provider identifier into an LLMProvider.

    Raises:
        ValidationError: If the identifier is not a supported provider
    """
    if isinstance(value, LLMProvider):
        return value
    try:
        return LLMProvider(str(value).strip().lower())
    except ValueError:
        supported = [p.value for p in LLMProvider]
        raise ValidationError(
            f"Unsupported LLM provider '{value}'. Supported providers: {supported}",
            details={"provider": value, "supported": supported}
        )


def resolve_llm_provider(settings: Optional[Settings] = None) -> LLMProvider:
    """
    Pick the provider for calls that do not name one.

    In ``auto`` mode OpenAI is preferred when its key is configured, then
    Anthropic; with neither key OpenAI is returned so the failure surfaces as an
    authentication error on first use.
    """
    settings = settings or get_settings()
    if settings.llm_provider != "auto":
        return parse_provider(settings.llm_provider)
    if settings.openai_api_key:
        return LLMProvider.OPENAI
    if settings.anthropic_api_key:
        return LLMProvider.ANTHROPIC
    return LLMProvider.OPENAI


@dataclass
class CompletionResult:
    """Text plus token usage returned by a single completion call."""

    text: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


def classify_status(status: Optional[int]) -> ErrorClassification:
    """Map an HTTP status code to a classification."""
    if status is None:
        return ErrorClassification.UNKNOWN
    if status in (401, 403):
        return ErrorClassification.AUTHENTICATION
    if status == 429:
        return ErrorClassification.RATE_LIMITED
    if status == 408:
        return ErrorClassification.TIMEOUT
    if status >= 500:
        return ErrorClassification.SERVER_FAULT
    if 400 <= status < 500:
        return ErrorClassification.CLIENT_INPUT
    return ErrorClassification.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorClassification:
    """
    Map a vendor or transport exception to a classification.

    Order matters: the SDK timeout errors subclass their connection errors, and
    the typed status errors subclass the generic status error.
    """
    if isinstance(exc, OrchestratorError):
        return exc.classification

    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError,
                        anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return ErrorClassification.AUTHENTICATION
    if isinstance(exc, (openai.RateLimitError, anthropic.RateLimitError)):
        return ErrorClassification.RATE_LIMITED
    if isinstance(exc, (openai.APITimeoutError, anthropic.APITimeoutError)):
        return ErrorClassification.TIMEOUT
    if isinstance(exc, (openai.APIConnectionError, anthropic.APIConnectionError)):
        return ErrorClassification.NETWORK
    if isinstance(exc, (openai.APIStatusError, anthropic.APIStatusError)):
        return classify_status(exc.status_code)

    if isinstance(exc, httpx.TimeoutException):
        return ErrorClassification.TIMEOUT
    if isinstance(exc, httpx.TransportError):
        return ErrorClassification.NETWORK
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorClassification.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrorClassification.NETWORK

    return ErrorClassification.UNKNOWN


def _status_of(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None and isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
    return status


class CompletionProvider(ABC):
    """
    Base class for provider adapters.

    Subclasses implement ``_create``; ``send_completion`` wraps it so that every
    failure leaves the adapter as a classified ProviderCallError.
    """

    provider: LLMProvider

    def __init__(self, clients: Optional[AIClientService] = None):
        self._clients = clients

    @property
    def clients(self) -> AIClientService:
        if self._clients is None:
            self._clients = get_ai_client_service()
        return self._clients

    async def send_completion(
        self,
        model: str,
        messages: List[Message],
        temperature: float,
        max_tokens: int
    ) -> CompletionResult:
        """
        Send one completion request.

        Args:
            model: Vendor model name
            messages: Chat messages as ``{"role": ..., "content": ...}`` dicts
            temperature: Sampling temperature
            max_tokens: Upper bound on generated tokens

        Raises:
            ProviderCallError: On any failure, with its classification set
        """
        try:
            return await self._create(model, messages, temperature, max_tokens)
        except ProviderCallError:
            raise
        except Exception as e:
            classification = classify_exception(e)
            raise ProviderCallError(
                f"{self.provider.value} API call failed: {e}",
                classification=classification,
                provider=self.provider.value,
                status=_status_of(e),
                original_error=e
            ) from e

    @abstractmethod
    async def _create(
        self,
        model: str,
        messages: List[Message],
        temperature: float,
        max_tokens: int
    ) -> CompletionResult:
        ...


class OpenAIProvider(CompletionProvider):
    """Chat completions through the official OpenAI async SDK."""

    provider = LLMProvider.OPENAI

    async def _create(self, model, messages, temperature, max_tokens) -> CompletionResult:
        response = await self.clients.openai_async.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens
        )

        content = ""
        finish_reason = None
        if response.choices:
            content = response.choices[0].message.content or ""
            finish_reason = response.choices[0].finish_reason
        if not content:
            logger.warning(
                f"⚠️ OpenAI API returned empty content (response_id={response.id}, "
                f"choices={len(response.choices)}, finish_reason={finish_reason})"
            )

        usage = response.usage
        return CompletionResult(
            text=content,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None
        )


class AnthropicProvider(CompletionProvider):
    """Messages API through the official Anthropic async SDK."""

    provider = LLMProvider.ANTHROPIC

    async def _create(self, model, messages, temperature, max_tokens) -> CompletionResult:
        system_parts = [m["content"] for m in messages if m["role"] == "system"]
        conversation = [m for m in messages if m["role"] != "system"]
        system = "\n\n".join(system_parts) if system_parts else DEFAULT_SYSTEM_PROMPT

        response = await self.clients.anthropic_async.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=conversation
        )

        text = "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        )
        usage = response.usage
        return CompletionResult(
            text=text,
            prompt_tokens=usage.input_tokens if usage else None,
            completion_tokens=usage.output_tokens if usage else None
        )


class ProviderRegistry:
    """Maps each LLMProvider to its adapter and default model."""

    def __init__(
        self,
        providers: Optional[Dict[LLMProvider, CompletionProvider]] = None,
        models: Optional[Dict[LLMProvider, str]] = None,
        settings: Optional[Settings] = None
    ):
        settings = settings or get_settings()
        if providers is None:
            providers = {
                LLMProvider.OPENAI: OpenAIProvider(),
                LLMProvider.ANTHROPIC: AnthropicProvider(),
            }
        self._providers = dict(providers)
        self._models = {
            LLMProvider.OPENAI: settings.openai_model,
            LLMProvider.ANTHROPIC: settings.anthropic_model,
        }
        if models:
            self._models.update(models)

    def get(self, provider: Union[str, LLMProvider]) -> CompletionProvider:
        key = parse_provider(provider)
        adapter = self._providers.get(key)
        if adapter is None:
            raise ValidationError(
                f"No adapter registered for provider '{key.value}'",
                details={"provider": key.value}
            )
        return adapter

    def model_for(self, provider: Union[str, LLMProvider]) -> str:
        return self._models[parse_provider(provider)]

    def register(self, provider: LLMProvider, adapter: CompletionProvider, model: Optional[str] = None):
        self._providers[provider] = adapter
        if model:
            self._models[provider] = model


# Global registry instance (initialized lazily)
_provider_registry: Optional[ProviderRegistry] = None


def get_provider_registry() -> ProviderRegistry:
    """Get the process-wide provider registry."""
    global _provider_registry
    if _provider_registry is None:
        _provider_registry = ProviderRegistry()
    return _provider_registry
