"""
Utilities Package for the LLM Orchestrator

This package contains the leaf components of the orchestration layer (timeout
racing, rate limiting, backoff, JSON extraction) along with logging, exception
and text helpers used throughout the application.
"""

from .exceptions import (
    ErrorClassification,
    OrchestratorError,
    ValidationError,
    AuthenticationError,
    RateLimitError,
    OperationTimeoutError,
    FileProcessingError,
    LLMError,
    ProviderCallError,
    is_retryable,
)
from .logging import OperationLogger, LoggingMiddleware
from .timeout_guard import race_with_timeout
from .rate_limiter import ClientRateLimiter, get_client_key, get_rate_limiter
from .retry_helper import BackoffPolicy
from .json_extractor import parse_json

__all__ = [
    "ErrorClassification",
    "OrchestratorError",
    "ValidationError",
    "AuthenticationError",
    "RateLimitError",
    "OperationTimeoutError",
    "FileProcessingError",
    "LLMError",
    "ProviderCallError",
    "is_retryable",
    "OperationLogger",
    "LoggingMiddleware",
    "race_with_timeout",
    "ClientRateLimiter",
    "get_client_key",
    "get_rate_limiter",
    "BackoffPolicy",
    "parse_json",
]
