"""
Knowledge Search API

POST /api/search runs a batch of knowledge queries about a company. The
request is rate-limited per client and the whole batch is raced against the
API deadline.
"""

import logging
import time
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from llm_orchestrator.config import get_settings
from llm_orchestrator.services.knowledge_search import KnowledgeSearchService
from llm_orchestrator.services.metrics import get_metrics_collector
from llm_orchestrator.utils.exceptions import ValidationError
from llm_orchestrator.utils.text_utils import sanitize_text
from llm_orchestrator.utils.timeout_guard import race_with_timeout
from .dependencies import enforce_rate_limit, get_request_id

logger = logging.getLogger(__name__)

ENDPOINT = "/api/search"
MAX_QUERIES = 20


class SearchRequest(BaseModel):
    """Knowledge search request"""
    company_name: str = Field(min_length=1, max_length=200, description="Company to search for")
    queries: Optional[List[str]] = Field(default=None, description="Topics to query (scope 'custom' only)")
    scope: Literal["custom", "track_record", "esg_practices"] = Field(
        default="custom", description="Predefined query set, or 'custom' to use `queries`"
    )


class SearchResponse(BaseModel):
    """Knowledge search results keyed by query"""
    request_id: str = Field(description="Request identifier")
    company_name: str = Field(description="Company searched for")
    results: Dict[str, Dict[str, Any]] = Field(description="Outcome per query")
    total_results: int = Field(description="Number of non-empty results across all queries")


router = APIRouter(prefix="/api", tags=["Knowledge Search"])

_search_service: Optional[KnowledgeSearchService] = None


def get_knowledge_search_service() -> KnowledgeSearchService:
    """Shared knowledge search service."""
    global _search_service
    if _search_service is None:
        _search_service = KnowledgeSearchService()
    return _search_service


@router.post("/search", response_model=SearchResponse, summary="Company Knowledge Search")
async def search_company(
    body: SearchRequest,
    request: Request,
    service: KnowledgeSearchService = Depends(get_knowledge_search_service)
) -> SearchResponse:
    started = time.monotonic()
    request_id = get_request_id(request)
    metrics = get_metrics_collector()
    metrics.record_api_request(ENDPOINT, request_id)

    enforce_rate_limit(request)

    company_name = sanitize_text(body.company_name, max_length=200)
    if not company_name:
        raise ValidationError("Company name is required", request_id=request_id)

    if body.scope == "track_record":
        operation = service.search_track_record(company_name)
    elif body.scope == "esg_practices":
        operation = service.search_esg_practices(company_name)
    else:
        queries = [sanitize_text(q, max_length=500) for q in (body.queries or [])]
        queries = [q for q in queries if q]
        if not queries:
            raise ValidationError(
                "At least one query is required for a custom search",
                request_id=request_id
            )
        if len(queries) > MAX_QUERIES:
            raise ValidationError(
                f"Too many queries ({len(queries)}); at most {MAX_QUERIES} are allowed",
                details={"query_count": len(queries), "max_queries": MAX_QUERIES},
                request_id=request_id
            )
        operation = service.search_company_info(company_name, queries)

    settings = get_settings()
    outcomes = await race_with_timeout(
        operation,
        settings.api_timeout_ms,
        f"Knowledge search timed out after {settings.api_timeout_ms / 1000:.0f} seconds"
    )
    if isinstance(outcomes, dict):
        outcomes = list(outcomes.values())

    results = {outcome.query: outcome.to_dict() for outcome in outcomes}
    total_results = sum(len(outcome.results) for outcome in outcomes)

    duration = round((time.monotonic() - started) * 1000, 2)
    metrics.record_api_success(ENDPOINT, request_id, duration, metadata={"total_results": total_results})
    logger.info(f"✅ Knowledge search for {company_name}: {total_results} results [{request_id}]")

    return SearchResponse(
        request_id=request_id,
        company_name=company_name,
        results=results,
        total_results=total_results
    )
