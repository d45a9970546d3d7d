"""
Health Check API Endpoints

Provides health status for monitoring systems:
- Provider API key availability
- Request metrics summary
- Feature flags
- Retry statistics
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from llm_orchestrator.config import get_settings
from llm_orchestrator.services.metrics import get_metrics_collector
from llm_orchestrator.utils.logging import OperationLogger
from llm_orchestrator.utils.retry_helper import retry_stats

logger = logging.getLogger(__name__)
health_logger = OperationLogger(__name__)


class ApiKeyStatus(BaseModel):
    """Which provider credentials are configured"""
    openai: bool = Field(description="OpenAI API key present")
    anthropic: bool = Field(description="Anthropic API key present")
    gemini: bool = Field(description="Gemini API key present")
    has_any_llm: bool = Field(description="At least one completion provider is usable")
    has_all_required: bool = Field(description="A completion provider and document extraction are both usable")


class MetricsSummary(BaseModel):
    """Request metrics over the retained event window"""
    total_requests: int = Field(description="API requests recorded")
    total_errors: int = Field(description="API errors recorded")
    average_response_time: float = Field(description="Average successful response time in milliseconds")
    error_rate: float = Field(description="Errors as a percentage of requests")
    recent_errors: List[Dict[str, Any]] = Field(description="Most recent errors, newest first")


class HealthResponse(BaseModel):
    """Overall service health"""
    status: Literal["healthy", "degraded"] = Field(description="Service status")
    timestamp: str = Field(description="Timestamp of health check")
    version: str = Field(description="Service version")
    environment: str = Field(description="Deployment environment")
    response_time_ms: float = Field(description="Time taken to build this report")
    api_keys: ApiKeyStatus
    metrics: MetricsSummary
    feature_flags: Dict[str, Any] = Field(description="Active feature flags")
    retry_stats: Dict[str, Any] = Field(description="LLM retry statistics since startup")


router = APIRouter(
    prefix="/health",
    tags=["Health & Monitoring"],
    responses={
        503: {"description": "Service degraded"}
    }
)


@router.get(
    "",
    response_model=HealthResponse,
    summary="Service Health",
    description="Reports API key availability, metrics and feature flags. Returns 503 when degraded."
)
async def health_check():
    """
    **Service Health Check**

    `healthy` requires a completion provider key (OpenAI or Anthropic) and the
    Gemini key used for PDF extraction; anything less is `degraded`.
    """
    started = time.monotonic()
    settings = get_settings()

    has_openai = bool(settings.openai_api_key)
    has_anthropic = bool(settings.anthropic_api_key)
    has_gemini = bool(settings.gemini_api_key)
    api_keys = ApiKeyStatus(
        openai=has_openai,
        anthropic=has_anthropic,
        gemini=has_gemini,
        has_any_llm=has_openai or has_anthropic,
        has_all_required=(has_openai or has_anthropic) and has_gemini
    )
    status = "healthy" if api_keys.has_all_required else "degraded"

    report = HealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.app_version,
        environment=settings.environment,
        response_time_ms=round((time.monotonic() - started) * 1000, 2),
        api_keys=api_keys,
        metrics=MetricsSummary(**get_metrics_collector().get_summary()),
        feature_flags=settings.get_feature_flags(),
        retry_stats=retry_stats.get_stats()
    )
    health_logger.log_health_check(status, has_any_llm=api_keys.has_any_llm, gemini=has_gemini)

    return JSONResponse(
        status_code=200 if status == "healthy" else 503,
        content=report.model_dump()
    )
