"""
Unit tests for the retrying LLM client.
"""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from llm_orchestrator.services.core.providers import (
    CompletionResult,
    LLMProvider,
    ProviderRegistry,
)
from llm_orchestrator.services.llm_client import (
    JSON_INSTRUCTION,
    LLMClient,
    build_messages,
    call_llm,
    call_llm_json,
    get_llm_client,
    reset_llm_client,
)
from llm_orchestrator.services.observability import ObservabilitySink, SafeObservability
from llm_orchestrator.utils.exceptions import (
    ErrorClassification,
    LLMError,
    ProviderCallError,
    ValidationError,
)
from llm_orchestrator.utils.retry_helper import BackoffPolicy, RetryStats


def provider_error(classification: ErrorClassification, message: str = "provider failure") -> ProviderCallError:
    return ProviderCallError(message, classification=classification, provider="openai")


class TestLLMClient:
    """Retry loop behaviour."""

    @pytest.fixture
    def stats(self):
        return RetryStats()

    @pytest.fixture
    def make_client(self, test_settings, sleep_recorder, observability, stats):
        def _make(provider, policy=None):
            registry = ProviderRegistry(
                providers={provider.provider: provider},
                settings=test_settings
            )
            return LLMClient(
                settings=test_settings,
                registry=registry,
                observability=observability,
                policy=policy or BackoffPolicy(max_attempts=3, initial_delay_ms=1000, multiplier=2.0, max_delay_ms=10000),
                sleep=sleep_recorder,
                stats=stats
            )
        return _make

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, make_client, scripted_provider, sleep_recorder):
        provider = scripted_provider([CompletionResult("hello", prompt_tokens=10, completion_tokens=5)])
        client = make_client(provider)

        response = await client.call("Say hello", system_prompt="Be brief")

        assert response.content == "hello"
        assert response.provider == "openai"
        assert response.model == "gpt-4-turbo-preview"
        assert response.attempts == 1
        assert response.usage.total_tokens == 15
        assert [a.outcome for a in response.attempt_log] == ["success"]
        assert sleep_recorder.delays == []
        assert provider.calls[0]["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Say hello"},
        ]

    @pytest.mark.asyncio
    async def test_retryable_failure_exhausts_exactly_max_attempts(
        self, make_client, scripted_provider, sleep_recorder, stats
    ):
        provider = scripted_provider([provider_error(ErrorClassification.SERVER_FAULT, "upstream 503")])
        client = make_client(provider)

        with pytest.raises(LLMError) as exc_info:
            await client.call("prompt")

        error = exc_info.value
        assert len(provider.calls) == 3
        assert sleep_recorder.delays == [1.0, 2.0]
        assert error.classification == ErrorClassification.SERVER_FAULT
        assert error.attempts == 3
        assert error.provider == "openai"
        assert error.message == "LLM API call failed after 3 attempts (openai): upstream 503"
        assert stats.get_stats()["total_retries"] == 2
        assert stats.get_stats()["failed_retries"] == 1

    @pytest.mark.asyncio
    async def test_authentication_failure_is_immediate(self, make_client, scripted_provider, sleep_recorder):
        provider = scripted_provider([provider_error(ErrorClassification.AUTHENTICATION, "bad key")])
        client = make_client(provider)

        with pytest.raises(LLMError) as exc_info:
            await client.call("prompt")

        assert len(provider.calls) == 1
        assert sleep_recorder.delays == []
        assert exc_info.value.classification == ErrorClassification.AUTHENTICATION
        assert exc_info.value.message == "LLM API authentication failed. Please check your OPENAI API key."
        assert exc_info.value.attempts == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("classification", [ErrorClassification.CLIENT_INPUT, ErrorClassification.UNKNOWN])
    async def test_non_retryable_failure_is_immediate(
        self, make_client, scripted_provider, sleep_recorder, classification
    ):
        provider = scripted_provider([provider_error(classification, "bad request")])
        client = make_client(provider)

        with pytest.raises(LLMError) as exc_info:
            await client.call("prompt")

        assert len(provider.calls) == 1
        assert sleep_recorder.delays == []
        assert exc_info.value.classification == classification
        assert exc_info.value.message == "LLM API call failed: bad request"

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, make_client, scripted_provider, sleep_recorder, stats):
        provider = scripted_provider([
            provider_error(ErrorClassification.RATE_LIMITED),
            CompletionResult("recovered"),
        ])
        client = make_client(provider)

        response = await client.call("prompt")

        assert response.content == "recovered"
        assert response.attempts == 2
        assert [a.outcome for a in response.attempt_log] == ["retry", "success"]
        assert response.attempt_log[0].classification == ErrorClassification.RATE_LIMITED
        assert sleep_recorder.delays == [1.0]
        assert stats.get_stats()["successful_retries"] == 1

    @pytest.mark.asyncio
    async def test_rate_limit_exhaustion_message(self, make_client, scripted_provider):
        provider = scripted_provider([provider_error(ErrorClassification.RATE_LIMITED)])

        with pytest.raises(LLMError) as exc_info:
            await make_client(provider).call("prompt")

        assert exc_info.value.message == (
            "LLM API rate limit exceeded after 3 attempts (openai). Please try again later."
        )

    @pytest.mark.asyncio
    async def test_timeout_exhaustion_message(self, make_client, scripted_provider):
        provider = scripted_provider([provider_error(ErrorClassification.TIMEOUT)])

        with pytest.raises(LLMError) as exc_info:
            await make_client(provider).call("prompt")

        assert exc_info.value.message == (
            "LLM API request timed out after 3 attempts (openai). Please try again."
        )
        assert exc_info.value.classification == ErrorClassification.TIMEOUT

    @pytest.mark.asyncio
    async def test_backoff_delays_are_capped(self, make_client, scripted_provider, sleep_recorder):
        provider = scripted_provider([provider_error(ErrorClassification.NETWORK)])
        policy = BackoffPolicy(max_attempts=5, initial_delay_ms=1000, multiplier=2.0, max_delay_ms=3000)

        with pytest.raises(LLMError):
            await make_client(provider, policy).call("prompt")

        assert len(provider.calls) == 5
        assert sleep_recorder.delays == [1.0, 2.0, 3.0, 3.0]

    @pytest.mark.asyncio
    async def test_single_attempt_policy_never_sleeps(self, make_client, scripted_provider, sleep_recorder):
        provider = scripted_provider([provider_error(ErrorClassification.SERVER_FAULT)])

        with pytest.raises(LLMError) as exc_info:
            await make_client(provider, BackoffPolicy(max_attempts=1)).call("prompt")

        assert len(provider.calls) == 1
        assert sleep_recorder.delays == []
        assert exc_info.value.attempts == 1

    @pytest.mark.asyncio
    async def test_reports_attempts_and_metrics_to_observability(self, make_client, scripted_provider, mock_sink):
        provider = scripted_provider([provider_error(ErrorClassification.NETWORK), CompletionResult("ok")])

        await make_client(provider).call("prompt")

        levels = [c.args[0] for c in mock_sink.log_event.call_args_list]
        assert logging.WARNING in levels
        metric_call = mock_sink.record_metric.call_args
        assert metric_call.args[0] == "llm_call"
        assert metric_call.args[1]["metadata"]["attempts"] == 2
        assert metric_call.args[1]["metadata"]["outcome"] == "success"

    @pytest.mark.asyncio
    async def test_broken_sink_does_not_affect_call(self, test_settings, scripted_provider, sleep_recorder):
        sink = MagicMock(spec=ObservabilitySink)
        sink.log_event.side_effect = RuntimeError("sink down")
        sink.record_metric.side_effect = RuntimeError("sink down")
        provider = scripted_provider([provider_error(ErrorClassification.TIMEOUT), CompletionResult("fine")])
        client = LLMClient(
            settings=test_settings,
            registry=ProviderRegistry(providers={LLMProvider.OPENAI: provider}, settings=test_settings),
            observability=SafeObservability(sink),
            policy=BackoffPolicy(),
            sleep=sleep_recorder,
            stats=RetryStats()
        )

        response = await client.call("prompt")

        assert response.content == "fine"
        assert sink.log_event.called

    @pytest.mark.asyncio
    async def test_unsupported_provider_rejected(self, make_client, scripted_provider):
        client = make_client(scripted_provider([CompletionResult("x")]))

        with pytest.raises(ValidationError):
            await client.call("prompt", provider="mistral")

    @pytest.mark.asyncio
    async def test_explicit_provider_is_used(self, make_client, scripted_provider):
        provider = scripted_provider([CompletionResult("from claude")], provider=LLMProvider.ANTHROPIC)
        client = make_client(provider)

        response = await client.call("prompt", provider="anthropic")

        assert response.provider == "anthropic"
        assert response.model == "claude-3-5-sonnet-20241022"

    @pytest.mark.asyncio
    async def test_overrides_for_temperature_and_max_tokens(self, make_client, scripted_provider):
        provider = scripted_provider([CompletionResult("x")])

        await make_client(provider).call("prompt", temperature=0.0, max_tokens=50)

        assert provider.calls[0]["temperature"] == 0.0
        assert provider.calls[0]["max_tokens"] == 50

    @pytest.mark.asyncio
    async def test_error_carries_request_id(self, make_client, scripted_provider):
        provider = scripted_provider([provider_error(ErrorClassification.CLIENT_INPUT)])

        with pytest.raises(LLMError) as exc_info:
            await make_client(provider).call("prompt", request_id="req-1")

        assert exc_info.value.request_id == "req-1"


class TestCallJson:
    """JSON convenience call."""

    @pytest.fixture
    def client_for(self, test_settings, sleep_recorder, observability):
        def _make(provider):
            return LLMClient(
                settings=test_settings,
                registry=ProviderRegistry(providers={LLMProvider.OPENAI: provider}, settings=test_settings),
                observability=observability,
                sleep=sleep_recorder,
                stats=RetryStats()
            )
        return _make

    @pytest.mark.asyncio
    async def test_parses_fenced_json(self, client_for, scripted_provider):
        provider = scripted_provider([CompletionResult('```json\n{"score": 3}\n```')])

        result = await client_for(provider).call_json("Rate this")

        assert result == {"score": 3}
        user_message = provider.calls[0]["messages"][-1]["content"]
        assert user_message.endswith(JSON_INSTRUCTION)

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, client_for, scripted_provider):
        provider = scripted_provider([CompletionResult("I cannot answer that.")])

        with pytest.raises(LLMError, match="Invalid JSON response from LLM"):
            await client_for(provider).call_json("Rate this")

    @pytest.mark.asyncio
    async def test_empty_content_raises(self, client_for, scripted_provider):
        provider = scripted_provider([CompletionResult("")])

        with pytest.raises(LLMError, match="LLM returned empty response"):
            await client_for(provider).call_json("Rate this")


class TestModuleHelpers:
    """Shared client and convenience wrappers."""

    def test_shared_client_is_reused_until_reset(self):
        reset_llm_client()
        first = get_llm_client()
        assert get_llm_client() is first
        reset_llm_client()
        assert get_llm_client() is not first
        reset_llm_client()

    @pytest.mark.asyncio
    async def test_call_llm_delegates_to_shared_client(self):
        shared = MagicMock()
        shared.call = AsyncMock(return_value="response")

        with patch("llm_orchestrator.services.llm_client.get_llm_client", return_value=shared):
            assert await call_llm("prompt", system_prompt="sys", provider="anthropic") == "response"

        shared.call.assert_awaited_once_with("prompt", system_prompt="sys", provider="anthropic")

    @pytest.mark.asyncio
    async def test_call_llm_json_delegates_to_shared_client(self):
        shared = MagicMock()
        shared.call_json = AsyncMock(return_value={"ok": True})

        with patch("llm_orchestrator.services.llm_client.get_llm_client", return_value=shared):
            assert await call_llm_json("prompt") == {"ok": True}


class TestBuildMessages:

    def test_without_system_prompt(self):
        assert build_messages("hi") == [{"role": "user", "content": "hi"}]

    def test_with_system_prompt(self):
        assert build_messages("hi", "sys")[0] == {"role": "system", "content": "sys"}
