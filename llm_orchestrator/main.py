"""
LLM Orchestrator FastAPI Application

Thin HTTP boundary over the orchestration layer: health, knowledge search and
document upload endpoints, with error mapping to stable JSON error bodies.
"""

import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from llm_orchestrator.config import configure_logging, get_settings
from llm_orchestrator.api import documents, health, search
from llm_orchestrator.services.core.ai_client_service import get_ai_client_service
from llm_orchestrator.services.metrics import get_metrics_collector
from llm_orchestrator.utils.exceptions import (
    OrchestratorError,
    RateLimitError,
    create_error_response,
    get_http_status_code,
)
from llm_orchestrator.utils.logging import LoggingMiddleware

logger = logging.getLogger(__name__)


def init_sentry() -> bool:
    """Initialize Sentry when enabled and a DSN is configured."""
    settings = get_settings()
    sentry_config = settings.get_sentry_config()

    if not (sentry_config["enabled"] and sentry_config["dsn"]):
        logger.info("⚠️ Sentry error tracking disabled - no DSN configured or disabled in settings")
        return False

    try:
        sentry_sdk.init(
            dsn=sentry_config["dsn"],
            environment=sentry_config["environment"],
            traces_sample_rate=sentry_config["traces_sample_rate"],
            release=sentry_config["release"],
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
        )
    except Exception as e:
        logger.error(f"❌ Failed to initialize Sentry: {str(e)}")
        return False

    sentry_sdk.set_tag("service", "llm-orchestrator")
    sentry_sdk.set_tag("version", settings.app_version)
    logger.info("✅ Sentry error tracking initialized successfully")
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager for startup and shutdown events.
    """
    settings = get_settings()
    configure_logging()
    logger.info(f"Service: {settings.app_name} v{settings.app_version}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(
        f"LLM provider mode: {settings.llm_provider} | retries: {settings.max_retry_attempts} | "
        f"rate limits: {settings.rate_limit_requests_per_minute}/min, "
        f"{settings.rate_limit_requests_per_hour}/hour"
    )
    init_sentry()

    yield

    logger.info("Shutting down LLM Orchestrator...")
    await get_ai_client_service().close()


def _capture_in_sentry(request: Request, exc: Exception, error_type: str):
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("error_type", error_type)
        scope.set_context("request", {
            "url": str(request.url),
            "method": request.method,
        })
        sentry_sdk.capture_exception(exc)


def register_exception_handlers(app: FastAPI):
    """Map orchestration errors to JSON responses."""

    @app.exception_handler(OrchestratorError)
    async def orchestrator_exception_handler(request: Request, exc: OrchestratorError):
        request_id = getattr(request.state, "request_id", None)
        status_code = get_http_status_code(exc)
        content = create_error_response(exc, request_id)

        log = logger.error if status_code >= 500 else logger.warning
        log(f"❌ {exc.error_code} ({status_code}) on {request.url.path}: {exc.message} [{request_id}]")
        get_metrics_collector().record_api_error(
            request.url.path, request_id, status_code, exc.error_code,
            metadata={"classification": exc.classification.value}
        )
        if status_code >= 500:
            _capture_in_sentry(request, exc, "orchestrator_error")

        headers = None
        if isinstance(exc, RateLimitError):
            headers = {"Retry-After": str(exc.retry_after_seconds or 60)}
        return JSONResponse(status_code=status_code, content=content, headers=headers)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions with a generic error body."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
        get_metrics_collector().record_api_error(
            request.url.path, request_id, 500, "INTERNAL_ERROR"
        )
        _capture_in_sentry(request, exc, "unhandled_exception")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=create_error_response(exc, request_id)
        )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Resilient orchestration of LLM, document-extraction and knowledge-base calls: "
            "per-client rate limiting, timeout racing, retry with backoff and "
            "concurrency-bounded batch querying."
        ),
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.add_middleware(CORSMiddleware, **settings.get_cors_config())
    app.add_middleware(LoggingMiddleware)

    app.include_router(health.router)
    app.include_router(search.router)
    app.include_router(documents.router)

    register_exception_handlers(app)
    return app


app = create_app()


def main():
    """
    Main entry point for running the application with uvicorn.

    Used when running the module directly or via the ``llm-orchestrator``
    console script.
    """
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "llm_orchestrator.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True
    )


if __name__ == "__main__":
    main()
