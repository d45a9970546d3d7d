"""
Retrying LLM Client

Issues a single logical LLM completion through a provider adapter, retrying
retryable failures with bounded exponential backoff.

Retry policy per failed attempt:
- Authentication failures fail immediately, whatever attempts remain.
- Other non-retryable classifications (client input, unknown) fail immediately.
- Rate-limited, timeout, network and server faults are retried after
  ``min(initial_delay * multiplier ** (attempt - 1), max_delay)`` until the
  attempt bound is reached.

Every attempt is reported to the observability hooks; a failing sink never
affects the call.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from llm_orchestrator.config import Settings, get_settings
from llm_orchestrator.utils.exceptions import (
    ErrorClassification,
    LLMError,
    OrchestratorError,
    is_retryable,
)
from llm_orchestrator.utils.json_extractor import parse_json
from llm_orchestrator.utils.retry_helper import BackoffPolicy, RetryStats, retry_stats
from .core.providers import (
    LLMProvider,
    Message,
    ProviderRegistry,
    classify_exception,
    get_provider_registry,
    parse_provider,
    resolve_llm_provider,
)
from .observability import SafeObservability, create_default_observability

logger = logging.getLogger(__name__)

JSON_INSTRUCTION = "Respond with valid JSON only, no markdown formatting."


@dataclass
class TokenUsage:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None

    @property
    def total_tokens(self) -> Optional[int]:
        if self.prompt_tokens is None and self.completion_tokens is None:
            return None
        return (self.prompt_tokens or 0) + (self.completion_tokens or 0)


@dataclass
class CallAttempt:
    """Transient record of one provider invocation."""

    attempt_number: int
    provider: str
    started_at: float  # epoch seconds
    elapsed_ms: float
    outcome: str  # "success", "retry" or "failed"
    classification: Optional[ErrorClassification] = None


@dataclass
class LLMResponse:
    """Result of a successful logical call."""

    content: str
    provider: str
    model: str
    attempts: int
    elapsed_ms: float
    usage: Optional[TokenUsage] = None
    attempt_log: List[CallAttempt] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "provider": self.provider,
            "model": self.model,
            "attempts": self.attempts,
            "elapsed_ms": self.elapsed_ms,
            "usage": asdict(self.usage) if self.usage else None,
        }


def build_messages(prompt: str, system_prompt: Optional[str] = None) -> List[Message]:
    """Build the chat message list; the system message is only included when given."""
    messages: List[Message] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


def _error_text(error: BaseException) -> str:
    if isinstance(error, OrchestratorError):
        return error.message
    return str(error) or type(error).__name__


class LLMClient:
    """
    Retrying caller over the provider registry.

    Time is injected (``sleep`` and ``clock``) so backoff can be observed in
    tests without waiting.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[ProviderRegistry] = None,
        observability: Optional[SafeObservability] = None,
        policy: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        stats: Optional[RetryStats] = None
    ):
        self.settings = settings or get_settings()
        self.registry = registry or get_provider_registry()
        self.observability = observability or create_default_observability()
        self.policy = policy or BackoffPolicy.from_settings(self.settings)
        self._sleep = sleep
        self._clock = clock
        self.stats = stats or retry_stats

    def _elapsed_ms(self, since: float) -> float:
        return round((self._clock() - since) * 1000, 2)

    async def call(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        provider: Optional[Union[str, LLMProvider]] = None,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        request_id: Optional[str] = None
    ) -> LLMResponse:
        """
        Perform one logical LLM call with retries.

        Args:
            prompt: User prompt
            system_prompt: Optional system instruction
            provider: Provider identifier; defaults to the configured selection
            temperature: Override for the configured temperature
            max_tokens: Override for the configured token limit
            request_id: Request identifier attached to logs and errors

        Returns:
            LLMResponse with content, usage and attempt metadata

        Raises:
            ValidationError: If the provider identifier is not supported
            LLMError: When the call fails terminally; carries the classification
                of the last failure, the provider and the number of attempts
        """
        provider_id = parse_provider(provider) if provider else resolve_llm_provider(self.settings)
        provider_name = provider_id.value
        adapter = self.registry.get(provider_id)
        model = self.registry.model_for(provider_id)
        messages = build_messages(prompt, system_prompt)
        temperature = self.settings.llm_temperature if temperature is None else temperature
        max_tokens = max_tokens or self.settings.llm_max_tokens
        max_attempts = self.policy.max_attempts

        request_info = {
            "provider": provider_name,
            "model": model,
            "prompt_length": len(prompt),
            "system_prompt_length": len(system_prompt or ""),
            "request_id": request_id,
        }
        self.observability.log_event(logging.INFO, f"🚀 Starting {provider_name} API call", request_info)

        started = self._clock()
        attempt_log: List[CallAttempt] = []
        last_error: Optional[BaseException] = None
        last_classification = ErrorClassification.UNKNOWN

        for attempt in range(1, max_attempts + 1):
            attempt_started = self._clock()
            started_at = time.time()
            self.observability.log_event(
                logging.DEBUG,
                f"LLM attempt {attempt}/{max_attempts}",
                {"provider": provider_name, "attempt": attempt, "request_id": request_id}
            )

            try:
                result = await adapter.send_completion(model, messages, temperature, max_tokens)
            except Exception as e:
                last_error = e
                last_classification = classify_exception(e)
                will_retry = is_retryable(last_classification) and attempt < max_attempts
                attempt_log.append(CallAttempt(
                    attempt_number=attempt,
                    provider=provider_name,
                    started_at=started_at,
                    elapsed_ms=self._elapsed_ms(attempt_started),
                    outcome="retry" if will_retry else "failed",
                    classification=last_classification
                ))
                failure_info = {
                    **request_info,
                    "attempt": attempt,
                    "classification": last_classification.value,
                    "elapsed_ms": self._elapsed_ms(started),
                    "error": _error_text(e),
                }

                if last_classification == ErrorClassification.AUTHENTICATION:
                    self.observability.log_event(logging.ERROR, "❌ API authentication failed", failure_info)
                    raise self._fail(
                        f"LLM API authentication failed. Please check your {provider_name.upper()} API key.",
                        provider_name, last_classification, attempt, started, request_id
                    ) from e

                if not is_retryable(last_classification):
                    self.observability.log_event(logging.ERROR, "❌ Non-retryable LLM error", failure_info)
                    raise self._fail(
                        f"LLM API call failed: {_error_text(e)}",
                        provider_name, last_classification, attempt, started, request_id
                    ) from e

                if not will_retry:
                    self.observability.log_event(logging.ERROR, "❌ Max retry attempts reached", failure_info)
                    break

                delay_ms = self.policy.delay_ms(attempt)
                self.stats.record_retry(last_classification)
                self.observability.log_event(
                    logging.WARNING,
                    f"⚠️ Retryable error on attempt {attempt}/{max_attempts}, retrying in {delay_ms:.0f}ms",
                    {**failure_info, "delay_ms": delay_ms}
                )
                await self._sleep(delay_ms / 1000)
                continue

            elapsed_ms = self._elapsed_ms(started)
            attempt_log.append(CallAttempt(
                attempt_number=attempt,
                provider=provider_name,
                started_at=started_at,
                elapsed_ms=self._elapsed_ms(attempt_started),
                outcome="success"
            ))
            usage = None
            if result.prompt_tokens is not None or result.completion_tokens is not None:
                usage = TokenUsage(result.prompt_tokens, result.completion_tokens)
            if attempt > 1:
                self.stats.record_outcome(success=True)

            self.observability.log_event(
                logging.INFO,
                f"✅ {provider_name} API call successful",
                {
                    "provider": provider_name,
                    "attempt": attempt,
                    "elapsed_ms": elapsed_ms,
                    "response_length": len(result.text),
                    "request_id": request_id,
                }
            )
            self.observability.record_metric("llm_call", {
                "duration": elapsed_ms,
                "request_id": request_id,
                "metadata": {
                    "provider": provider_name,
                    "model": model,
                    "tokens_used": usage.total_tokens if usage else None,
                    "attempts": attempt,
                    "outcome": "success",
                },
            })
            return LLMResponse(
                content=result.text,
                provider=provider_name,
                model=model,
                attempts=attempt,
                elapsed_ms=elapsed_ms,
                usage=usage,
                attempt_log=attempt_log
            )

        # Attempts exhausted on a retryable failure
        if max_attempts > 1:
            self.stats.record_outcome(success=False, error_message=_error_text(last_error))
        if last_classification == ErrorClassification.RATE_LIMITED:
            message = (
                f"LLM API rate limit exceeded after {max_attempts} attempts ({provider_name}). "
                f"Please try again later."
            )
        elif last_classification == ErrorClassification.TIMEOUT:
            message = (
                f"LLM API request timed out after {max_attempts} attempts ({provider_name}). "
                f"Please try again."
            )
        else:
            message = (
                f"LLM API call failed after {max_attempts} attempts ({provider_name}): "
                f"{_error_text(last_error)}"
            )
        raise self._fail(
            message, provider_name, last_classification, max_attempts, started, request_id
        ) from last_error

    def _fail(
        self,
        message: str,
        provider: str,
        classification: ErrorClassification,
        attempts: int,
        started: float,
        request_id: Optional[str]
    ) -> LLMError:
        elapsed_ms = self._elapsed_ms(started)
        self.observability.record_metric("llm_call", {
            "duration": elapsed_ms,
            "request_id": request_id,
            "metadata": {
                "provider": provider,
                "attempts": attempts,
                "outcome": "failed",
                "classification": classification.value,
            },
        })
        return LLMError(
            message,
            provider=provider,
            classification=classification,
            attempts=attempts,
            elapsed_ms=elapsed_ms,
            request_id=request_id
        )

    async def call_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        provider: Optional[Union[str, LLMProvider]] = None,
        *,
        request_id: Optional[str] = None
    ) -> Any:
        """
        Call the LLM asking for JSON and parse the response.

        Raises:
            LLMError: From the call itself, or when the response is empty or
                not valid JSON
        """
        response = await self.call(
            f"{prompt}\n\n{JSON_INSTRUCTION}",
            system_prompt=system_prompt,
            provider=provider,
            request_id=request_id
        )
        parsed = parse_json(response.content, provider=response.provider)
        logger.info(
            f"✅ Parsed JSON response from {response.provider} "
            f"(response length {len(response.content)}, type {type(parsed).__name__})"
        )
        return parsed


# Global client instance (initialized lazily)
_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get the process-wide LLM client."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client


def reset_llm_client() -> None:
    """Drop the shared client so the next access rebuilds it from settings."""
    global _llm_client
    _llm_client = None


async def call_llm(
    prompt: str,
    system_prompt: Optional[str] = None,
    provider: Optional[Union[str, LLMProvider]] = None
) -> LLMResponse:
    """Convenience wrapper around the shared client's ``call``."""
    return await get_llm_client().call(prompt, system_prompt=system_prompt, provider=provider)


async def call_llm_json(
    prompt: str,
    system_prompt: Optional[str] = None,
    provider: Optional[Union[str, LLMProvider]] = None
) -> Any:
    """Convenience wrapper around the shared client's ``call_json``."""
    return await get_llm_client().call_json(prompt, system_prompt=system_prompt, provider=provider)
