"""
Operation Logging for the LLM Orchestrator

Structured, single-line operation logs (start, success, failure) with context,
and an ASGI middleware that tags every HTTP request with a request id and logs
its lifecycle.
"""

import logging
import time
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from .text_utils import generate_request_id


def format_context(context: Dict[str, Any]) -> str:
    """Render ``key=value`` pairs for a log line."""
    return ", ".join([f"{k}={v}" for k, v in context.items()])


class OperationLogger:
    """
    Logger for orchestration operations.

    Provides structured logging with context information and timing, so an
    operation's start, outcome and duration can be correlated by its id.
    """

    def __init__(self, name: str = __name__):
        """
        Initialize the operation logger.

        Args:
            name: Logger name, typically __name__ from calling module
        """
        self.logger = logging.getLogger(name)
        self._started: Dict[str, float] = {}

    def log_operation_start(self, operation: str, operation_id: Optional[str] = None, **context) -> str:
        """
        Log the start of an operation.

        Args:
            operation: Name of the operation (e.g., "llm_call", "knowledge_batch")
            operation_id: Reuse an existing id (e.g. the request id) instead of generating one
            **context: Additional context information

        Returns:
            Operation ID for tracking
        """
        operation_id = operation_id or f"{operation}_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}"
        self._started[operation_id] = time.monotonic()
        self.logger.info(
            f"🚀 Starting operation: {operation} [ID: {operation_id}] | Context: {format_context(context)}"
        )
        return operation_id

    def _elapsed_ms(self, operation_id: str) -> Optional[float]:
        started = self._started.pop(operation_id, None)
        if started is None:
            return None
        return round((time.monotonic() - started) * 1000, 2)

    def log_operation_success(self, operation_id: str, operation: str, **results):
        """
        Log successful completion of an operation.

        Args:
            operation_id: Operation ID from log_operation_start
            operation: Name of the operation
            **results: Results and metrics from the operation
        """
        elapsed = self._elapsed_ms(operation_id)
        if elapsed is not None:
            results.setdefault("duration_ms", elapsed)
        self.logger.info(
            f"✅ Completed operation: {operation} [ID: {operation_id}] | Results: {format_context(results)}"
        )

    def log_operation_error(self, operation_id: str, operation: str, error: BaseException, **context):
        """
        Log error during an operation.

        Args:
            operation_id: Operation ID from log_operation_start
            operation: Name of the operation
            error: Exception that occurred
            **context: Additional context information
        """
        elapsed = self._elapsed_ms(operation_id)
        if elapsed is not None:
            context.setdefault("duration_ms", elapsed)
        self.logger.error(
            f"❌ Failed operation: {operation} [ID: {operation_id}] | "
            f"Error: {type(error).__name__}: {str(error)} | Context: {format_context(context)}"
        )
        self.logger.debug(f"Full traceback for {operation_id}:\n{traceback.format_exc()}")

    def log_file_processing(self, filename: str, file_size: int, operation: str):
        """
        Log file processing information.

        Args:
            filename: Name of the file being processed
            file_size: Size of the file in bytes
            operation: Type of processing operation
        """
        size_mb = file_size / (1024 * 1024)
        self.logger.info(
            f"📄 Processing file: {filename} ({size_mb:.2f} MB) | Operation: {operation}"
        )

    def log_health_check(self, status: str, **details):
        """
        Log health check information.

        Args:
            status: Health status (healthy, degraded, unhealthy)
            **details: Additional health check details
        """
        status_emoji = {"healthy": "💚", "degraded": "💛", "unhealthy": "❤️"}.get(status, "❓")
        self.logger.info(f"{status_emoji} Health check: {status} | Details: {format_context(details)}")


class LoggingMiddleware:
    """
    ASGI middleware for request/response logging.

    Stores the generated request id in ``request.state.request_id`` and echoes
    it in the ``X-Request-ID`` response header.
    """

    def __init__(self, app):
        self.app = app
        self.logger = OperationLogger("llm_orchestrator.middleware")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = generate_request_id()
        scope.setdefault("state", {})["request_id"] = request_id
        status_holder: Dict[str, int] = {}

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                status_holder["status"] = message["status"]
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        self.logger.log_operation_start(
            "http_request",
            operation_id=request_id,
            method=scope.get("method"),
            path=scope.get("path")
        )

        try:
            await self.app(scope, receive, send_wrapper)
            self.logger.log_operation_success(
                request_id,
                "http_request",
                status=status_holder.get("status")
            )
        except BaseException as e:  # also cancellation on client disconnect
            self.logger.log_operation_error(request_id, "http_request", e)
            raise
