"""
Custom Exception Classes for the LLM Orchestrator

This module defines the error taxonomy used across the orchestration layer.
Every failure is classified once, as close to its origin as possible, into a
fixed ErrorClassification that drives retry eligibility. Further up the stack
errors are only wrapped with additional context (request identifier, elapsed
time), never reclassified.

Each error resolves to a stable {message, code, details} triple so the HTTP
boundary can map it to a status code without inspecting internal types.
"""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorClassification(str, Enum):
    """Terminal-vs-retryable category assigned to a failure."""

    AUTHENTICATION = "authentication"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK = "network"
    CLIENT_INPUT = "client_input"
    SERVER_FAULT = "server_fault"
    UNKNOWN = "unknown"


RETRYABLE_CLASSIFICATIONS = frozenset({
    ErrorClassification.RATE_LIMITED,
    ErrorClassification.TIMEOUT,
    ErrorClassification.NETWORK,
    ErrorClassification.SERVER_FAULT,
})


def is_retryable(classification: ErrorClassification) -> bool:
    """
    Decide retry eligibility from a classification alone.

    Args:
        classification: Classification produced at the failure origin

    Returns:
        True for provider-side rate limits, timeouts, network and server faults
    """
    return classification in RETRYABLE_CLASSIFICATIONS


class OrchestratorError(Exception):
    """
    Base exception class for all orchestration errors.

    Subclasses fix ``status_code``, ``default_code`` and ``classification`` so the
    boundary layer and the retry loop can both act on an error without
    looking at its message text.
    """

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"
    classification: ErrorClassification = ErrorClassification.UNKNOWN

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        status_code: Optional[int] = None
    ):
        """
        Initialize the orchestration error.

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
            details: Optional dictionary with additional error context
            request_id: Identifier of the request that failed, when known
            status_code: Override for the HTTP status code of this class
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        self.request_id = request_id
        if status_code is not None:
            self.status_code = status_code

    def with_context(self, request_id: Optional[str] = None, **details) -> "OrchestratorError":
        """
        Attach request context without changing the classification.

        Returns:
            The same error instance, for use in ``raise err.with_context(...)``
        """
        if request_id and not self.request_id:
            self.request_id = request_id
        self.details.update({k: v for k, v in details.items() if v is not None})
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        payload = {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }
        if self.request_id:
            payload["request_id"] = self.request_id
        return payload


class ValidationError(OrchestratorError):
    """Raised when the caller supplied malformed input. Never retried."""

    status_code = 400
    default_code = "VALIDATION_ERROR"
    classification = ErrorClassification.CLIENT_INPUT


class AuthenticationError(OrchestratorError):
    """Raised on credential failures. Never retried."""

    status_code = 401
    default_code = "AUTHENTICATION_ERROR"
    classification = ErrorClassification.AUTHENTICATION


class RateLimitError(OrchestratorError):
    """
    Raised when a local or provider-side quota is exceeded.

    Local occurrences are terminal for the request; ``retry_after_seconds`` tells
    the caller when the window that rejected it resets.
    """

    status_code = 429
    default_code = "RATE_LIMIT_EXCEEDED"
    classification = ErrorClassification.RATE_LIMITED

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after_seconds: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None
    ):
        details = dict(details or {})
        if retry_after_seconds is not None:
            details["retry_after_seconds"] = retry_after_seconds
        super().__init__(message, details=details, request_id=request_id)
        self.retry_after_seconds = retry_after_seconds


class OperationTimeoutError(OrchestratorError):
    """
    Raised when a deadline elapses before an operation settles.

    Not retried inside the timeout wrapper itself; callers of the whole
    operation may retry.
    """

    status_code = 504
    default_code = "TIMEOUT_ERROR"
    classification = ErrorClassification.TIMEOUT

    def __init__(
        self,
        message: str = "Operation timed out",
        timeout_ms: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None
    ):
        details = dict(details or {})
        if timeout_ms is not None:
            details["timeout_ms"] = timeout_ms
        super().__init__(message, details=details, request_id=request_id)
        self.timeout_ms = timeout_ms


class FileProcessingError(OrchestratorError):
    """Raised when document text extraction fails. Treated as terminal."""

    status_code = 422
    default_code = "FILE_PROCESSING_ERROR"

    def __init__(
        self,
        message: str = "File processing failed",
        file_name: Optional[str] = None,
        classification: Optional[ErrorClassification] = None,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None
    ):
        details = dict(details or {})
        if file_name:
            details["file_name"] = file_name
        super().__init__(message, details=details, request_id=request_id)
        if classification is not None:
            self.classification = classification
        self.details["classification"] = self.classification.value


class LLMError(OrchestratorError):
    """
    Wraps any terminal failure from the retrying caller.

    Always carries the provider identifier and, where available, the number of
    attempts made and the elapsed processing time.
    """

    status_code = 500
    default_code = "LLM_ERROR"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        classification: ErrorClassification = ErrorClassification.UNKNOWN,
        attempts: Optional[int] = None,
        elapsed_ms: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None
    ):
        details = dict(details or {})
        details.update({
            "provider": provider,
            "classification": classification.value,
        })
        if attempts is not None:
            details["attempts"] = attempts
        if elapsed_ms is not None:
            details["elapsed_ms"] = round(elapsed_ms, 2)
        super().__init__(message, details=details, request_id=request_id)
        self.provider = provider
        self.classification = classification
        self.attempts = attempts
        self.elapsed_ms = elapsed_ms


class ProviderCallError(OrchestratorError):
    """
    Raised by provider adapters for a single failed vendor call.

    The adapter maps vendor-specific exceptions to a classification here, so
    the retry loop never has to inspect error text.
    """

    status_code = 502
    default_code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        classification: ErrorClassification,
        provider: Optional[str] = None,
        status: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        details = {
            "provider": provider,
            "classification": classification.value,
            "status": status,
        }
        if original_error is not None:
            details["original_error_type"] = type(original_error).__name__
        super().__init__(message, details=details)
        self.classification = classification
        self.provider = provider
        self.status = status
        self.original_error = original_error


def get_http_status_code(exception: Exception) -> int:
    """
    Get the appropriate HTTP status code for an exception.

    Args:
        exception: The exception instance

    Returns:
        HTTP status code (defaults to 500 for unknown exceptions)
    """
    if isinstance(exception, OrchestratorError):
        return exception.status_code
    return 500


def create_error_response(exception: Exception, request_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Create a standardized error response dictionary from an exception.

    Args:
        exception: The exception instance
        request_id: Request identifier to include when the error has none

    Returns:
        Dictionary containing error information suitable for API responses
    """
    if isinstance(exception, OrchestratorError):
        if request_id:
            exception.with_context(request_id=request_id)
        return exception.to_dict()

    payload = {
        "error": "INTERNAL_ERROR",
        "message": "An unexpected error occurred",
        "details": {
            "exception_type": type(exception).__name__
        }
    }
    if request_id:
        payload["request_id"] = request_id
    return payload
