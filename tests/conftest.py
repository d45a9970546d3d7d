"""
Shared pytest configuration and fixtures for LLM Orchestrator tests.

This module provides common test fixtures, configuration, and utilities
used across all test modules in the test suite.
"""

import os
from typing import Generator, List, Union
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from llm_orchestrator.config import Settings
from llm_orchestrator.main import create_app
from llm_orchestrator.services.core.providers import (
    CompletionProvider,
    CompletionResult,
    LLMProvider,
)
from llm_orchestrator.services.metrics import get_metrics_collector
from llm_orchestrator.services.observability import ObservabilitySink, SafeObservability
from llm_orchestrator.utils.rate_limiter import reset_rate_limiter
from llm_orchestrator.utils.retry_helper import retry_stats


class ScriptedProvider(CompletionProvider):
    """
    Provider adapter that replays scripted outcomes.

    Each call consumes the next outcome; the last one repeats. Exceptions are
    raised, CompletionResults returned.
    """

    provider = LLMProvider.OPENAI

    def __init__(self, outcomes: List[Union[CompletionResult, BaseException]], provider: LLMProvider = None):
        super().__init__(clients=MagicMock())
        if provider is not None:
            self.provider = provider
        self.outcomes = list(outcomes)
        self.calls = []

    async def _create(self, model, messages, temperature, max_tokens):
        self.calls.append({
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class SleepRecorder:
    """Async sleep replacement that records requested delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


@pytest.fixture
def test_settings() -> Settings:
    """Provide test-specific settings configuration."""
    env = {
        "OPENAI_API_KEY": "sk-test",
        "ANTHROPIC_API_KEY": "sk-ant-test",
        "GEMINI_API_KEY": "gemini-test",
        "SENTRY_ENABLED": "false",
    }
    with patch.dict(os.environ, env, clear=True):
        yield Settings()


@pytest.fixture
def scripted_provider():
    """Factory for ScriptedProvider instances."""
    return ScriptedProvider


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def mock_sink():
    """Observability sink that records calls."""
    return MagicMock(spec=ObservabilitySink)


@pytest.fixture
def observability(mock_sink) -> SafeObservability:
    return SafeObservability(mock_sink)


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Reset process-wide state between tests."""
    reset_rate_limiter()
    get_metrics_collector().clear()
    retry_stats.reset()
    yield
    reset_rate_limiter()


@pytest.fixture
def app():
    """Create FastAPI application instance for testing."""
    return create_app()


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create synchronous test client for FastAPI application."""
    with TestClient(app) as test_client:
        yield test_client


# Pytest configuration
def pytest_collection_modifyitems(config, items):
    """Mark everything under tests/unit as a unit test."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
