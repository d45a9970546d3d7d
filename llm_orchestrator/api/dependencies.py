"""
Shared FastAPI dependencies.
"""

import logging

from fastapi import Request

from llm_orchestrator.config import get_settings
from llm_orchestrator.utils.rate_limiter import get_client_key, get_rate_limiter
from llm_orchestrator.utils.text_utils import generate_request_id

logger = logging.getLogger(__name__)


def get_request_id(request: Request) -> str:
    """Request id assigned by LoggingMiddleware, or a fresh one."""
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = generate_request_id()
        request.state.request_id = request_id
    return request_id


def enforce_rate_limit(request: Request) -> str:
    """
    Admit the request for its client key or raise RateLimitError.

    Returns:
        The client key the request was counted against
    """
    client_key = get_client_key(request.headers)
    if get_settings().enable_rate_limiting:
        get_rate_limiter().admit(client_key)
    return client_key
