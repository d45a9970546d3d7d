"""
Centralized AI Client Service

Provides process-wide instances of the vendor API clients (OpenAI, Anthropic)
and a shared httpx client for plain REST calls (Gemini document extraction).
Clients are created lazily on first access and reused afterwards.

SDK-level retries are disabled: the retrying LLM caller is the only place
attempts are repeated, so the number of vendor invocations per logical call is
exactly what the backoff policy allows.
"""

import logging
from typing import Optional

import httpx
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from llm_orchestrator.config import Settings, get_settings
from llm_orchestrator.utils.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


class AIClientService:
    """
    Centralized service for managing AI API clients.

    All clients are initialized lazily on first access. A missing API key is
    reported as an AuthenticationError at that point, not at startup.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

        # Client instances (initialized lazily)
        self._anthropic_async_client: Optional[AsyncAnthropic] = None
        self._openai_async_client: Optional[AsyncOpenAI] = None
        self._httpx_client: Optional[httpx.AsyncClient] = None

        logger.info("✅ AIClientService initialized")

    @property
    def anthropic_async(self) -> AsyncAnthropic:
        """Get asynchronous Anthropic client (lazy initialization)."""
        if self._anthropic_async_client is None:
            if not self.settings.anthropic_api_key:
                raise AuthenticationError(
                    "ANTHROPIC_API_KEY is not configured",
                    details={"provider": "anthropic"}
                )

            self._anthropic_async_client = AsyncAnthropic(
                api_key=self.settings.anthropic_api_key,
                timeout=self.settings.anthropic_timeout,
                max_retries=0
            )
            logger.info("✅ Anthropic async client initialized")

        return self._anthropic_async_client

    @property
    def openai_async(self) -> AsyncOpenAI:
        """Get asynchronous OpenAI client (lazy initialization)."""
        if self._openai_async_client is None:
            if not self.settings.openai_api_key:
                raise AuthenticationError(
                    "OPENAI_API_KEY is not configured",
                    details={"provider": "openai"}
                )

            self._openai_async_client = AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.settings.openai_timeout,
                max_retries=0
            )
            logger.info("✅ OpenAI async client initialized")

        return self._openai_async_client

    @property
    def httpx(self) -> httpx.AsyncClient:
        """
        Get shared httpx async client for REST APIs.

        The transport timeout sits slightly above the Gemini extraction deadline
        so the timeout race, not the transport, decides when to give up.
        """
        if self._httpx_client is None:
            timeout_s = self.settings.gemini_timeout_ms / 1000 + 5
            self._httpx_client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout_s),
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=100)
            )
            logger.info(f"✅ HTTPX async client initialized (timeout: {timeout_s:.0f}s)")

        return self._httpx_client

    async def close(self):
        """Close all async clients (call on application shutdown)."""
        if self._httpx_client:
            await self._httpx_client.aclose()
            self._httpx_client = None
            logger.info("✅ HTTPX client closed")
        if self._openai_async_client:
            await self._openai_async_client.close()
            self._openai_async_client = None
        if self._anthropic_async_client:
            await self._anthropic_async_client.close()
            self._anthropic_async_client = None


# Factory function for easy access
_ai_client_service: Optional[AIClientService] = None


def get_ai_client_service() -> AIClientService:
    """
    Get the singleton AIClientService instance.

    Returns:
        AIClientService: Singleton instance
    """
    global _ai_client_service
    if _ai_client_service is None:
        _ai_client_service = AIClientService()
    return _ai_client_service


def reset_ai_client_service() -> None:
    """Forget the cached clients so the next access rebuilds them from settings."""
    global _ai_client_service
    _ai_client_service = None
