"""
Document Upload API

POST /api/upload extracts text from an uploaded PDF, Word or text file.
"""

import logging
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile
from pydantic import BaseModel, Field

from llm_orchestrator.config import get_settings
from llm_orchestrator.services.document_processor import DocumentProcessor
from llm_orchestrator.services.metrics import get_metrics_collector
from llm_orchestrator.utils.exceptions import ValidationError
from llm_orchestrator.utils.text_utils import (
    is_valid_file_type,
    sanitize_file_name,
    sanitize_text,
)
from llm_orchestrator.utils.timeout_guard import race_with_timeout
from .dependencies import enforce_rate_limit, get_request_id

logger = logging.getLogger(__name__)

ENDPOINT = "/api/upload"


class UploadResponse(BaseModel):
    """Extracted document text"""
    request_id: str = Field(description="Request identifier")
    file_name: str = Field(description="Sanitized file name")
    file_size: int = Field(description="File size in bytes")
    text: str = Field(description="Extracted text, sanitized and truncated")
    text_length: int = Field(description="Length of the full extracted text")
    truncated: bool = Field(description="Whether the returned text was truncated")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Extractor metadata")


router = APIRouter(prefix="/api", tags=["Documents"])

_document_processor: Optional[DocumentProcessor] = None


def get_document_processor() -> DocumentProcessor:
    """Shared document processor."""
    global _document_processor
    if _document_processor is None:
        _document_processor = DocumentProcessor()
    return _document_processor


@router.post("/upload", response_model=UploadResponse, summary="Extract Text from Document")
async def upload_document(
    request: Request,
    file: UploadFile = File(..., description="PDF, Word (.docx) or text file"),
    processor: DocumentProcessor = Depends(get_document_processor)
) -> UploadResponse:
    started = time.monotonic()
    request_id = get_request_id(request)
    metrics = get_metrics_collector()
    metrics.record_api_request(ENDPOINT, request_id)

    enforce_rate_limit(request)
    settings = get_settings()

    original_name = file.filename or ""
    file_name = sanitize_file_name(original_name)
    if not is_valid_file_type(original_name, settings.allowed_extensions):
        raise ValidationError(
            f"Unsupported file type. Allowed types: {', '.join(settings.allowed_extensions)}",
            details={"file_name": file_name},
            request_id=request_id
        )

    data = await file.read()
    if not data:
        raise ValidationError("Uploaded file is empty", details={"file_name": file_name}, request_id=request_id)
    if not settings.is_file_size_valid(len(data)):
        max_mb = settings.max_file_size / 1024 / 1024
        raise ValidationError(
            f"File size ({len(data) / 1024 / 1024:.2f}MB) exceeds maximum allowed size of "
            f"{max_mb:.1f}MB. Please upload a smaller file.",
            details={"file_name": file_name, "file_size": len(data), "max_size": settings.max_file_size},
            request_id=request_id,
            status_code=413
        )

    extracted = await race_with_timeout(
        processor.extract_text(file_name, file.content_type, data),
        settings.api_timeout_ms,
        f"Document processing timed out after {settings.api_timeout_ms / 1000:.0f} seconds"
    )

    text = sanitize_text(extracted.text, max_length=settings.max_text_length)
    duration = round((time.monotonic() - started) * 1000, 2)
    metrics.record_api_success(ENDPOINT, request_id, duration, metadata={"file_name": file_name})
    logger.info(f"✅ Extracted {len(extracted.text)} chars from {file_name} [{request_id}]")

    return UploadResponse(
        request_id=request_id,
        file_name=file_name,
        file_size=len(data),
        text=text,
        text_length=len(extracted.text),
        truncated=len(extracted.text) > settings.max_text_length,
        metadata=extracted.metadata
    )
