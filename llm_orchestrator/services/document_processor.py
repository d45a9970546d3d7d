"""
Document Text Extraction

Extracts plain text from uploaded PDF, Word (.docx) and text files.

PDFs are sent to the Gemini ``generateContent`` REST endpoint, which handles
both text-based and scanned documents; the call is raced against a hard
deadline. Word documents are read locally with docx2txt, text files are decoded
as UTF-8. Every failure surfaces as a FileProcessingError with a message the
user can act on.
"""

import asyncio
import base64
import io
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import docx2txt
import httpx

from llm_orchestrator.config import Settings, get_settings
from llm_orchestrator.utils.exceptions import (
    ErrorClassification,
    FileProcessingError,
    OperationTimeoutError,
)
from llm_orchestrator.utils.logging import OperationLogger
from llm_orchestrator.utils.timeout_guard import race_with_timeout
from .core.ai_client_service import AIClientService, get_ai_client_service
from .core.providers import classify_exception, classify_status
from .observability import SafeObservability, create_default_observability

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIME = "text/plain"

PDF_EXTRACTION_PROMPT = (
    "Extract all text from this PDF document. Return only the extracted text content, "
    "preserving structure. Include headings, paragraphs, lists, and tables."
)


@dataclass
class ExtractedText:
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class DocumentProcessor:
    """Extracts text from uploaded documents."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clients: Optional[AIClientService] = None,
        observability: Optional[SafeObservability] = None
    ):
        self.settings = settings or get_settings()
        self._clients = clients
        self.observability = observability or create_default_observability()
        self.op_logger = OperationLogger(__name__)

    @property
    def clients(self) -> AIClientService:
        if self._clients is None:
            self._clients = get_ai_client_service()
        return self._clients

    async def extract_text(self, file_name: str, content_type: Optional[str], data: bytes) -> ExtractedText:
        """
        Extract text from a file.

        Args:
            file_name: Original file name, used to detect the type when the
                content type is missing or generic
            content_type: MIME type reported by the client
            data: Raw file content

        Raises:
            FileProcessingError: For unsupported types, empty documents and
                extraction failures
        """
        lowered = file_name.lower()
        content_type = (content_type or "").split(";")[0].strip().lower()
        self.op_logger.log_file_processing(file_name, len(data), "extract_text")

        if content_type == PDF_MIME or lowered.endswith(".pdf"):
            file_type, extractor = "pdf", self._extract_pdf
        elif content_type == DOCX_MIME or lowered.endswith(".docx"):
            file_type, extractor = "docx", self._extract_docx
        elif content_type == TEXT_MIME or lowered.endswith(".txt"):
            file_type, extractor = "txt", self._extract_txt
        else:
            logger.error(f"❌ Unsupported file type: {content_type or 'unknown'} ({file_name})")
            raise FileProcessingError(
                f"Unsupported file type: {content_type or 'unknown'}. "
                f"Please upload PDF, Word (.docx), or text files.",
                file_name=file_name,
                classification=ErrorClassification.CLIENT_INPUT
            )

        started = time.monotonic()
        success = False
        try:
            extracted = await extractor(file_name, data)
            success = True
            return extracted
        finally:
            self.observability.record_metric("file_processing", {
                "duration": round((time.monotonic() - started) * 1000, 2),
                "metadata": {"file_name": file_name, "file_type": file_type, "success": success},
            })

    async def _extract_pdf(self, file_name: str, data: bytes) -> ExtractedText:
        api_key = self.settings.gemini_api_key
        if not api_key:
            raise FileProcessingError(
                "GEMINI_API_KEY is not set. Cannot use Gemini API for PDF extraction.",
                file_name=file_name,
                classification=ErrorClassification.AUTHENTICATION
            )

        operation_id = self.op_logger.log_operation_start(
            "gemini_pdf_extraction", file_name=file_name, model=self.settings.gemini_model
        )
        timeout_ms = self.settings.gemini_timeout_ms
        try:
            text = await race_with_timeout(
                self._call_gemini(data),
                timeout_ms,
                f"Gemini API call timed out after {timeout_ms / 1000:.0f} seconds",
                cancel_on_timeout=True
            )
        except Exception as e:
            self.op_logger.log_operation_error(operation_id, "gemini_pdf_extraction", e, file_name=file_name)
            raise self._pdf_error(e, file_name) from e

        if not text.strip():
            raise FileProcessingError(
                "Gemini API returned empty text for this PDF.",
                file_name=file_name,
                classification=ErrorClassification.UNKNOWN
            )

        self.op_logger.log_operation_success(
            operation_id, "gemini_pdf_extraction", text_length=len(text)
        )
        return ExtractedText(text=text.strip(), metadata={"title": file_name})

    async def _call_gemini(self, data: bytes) -> str:
        url = f"{self.settings.gemini_api_base}/models/{self.settings.gemini_model}:generateContent"
        payload = {
            "contents": [{
                "parts": [
                    {"inline_data": {"mime_type": PDF_MIME, "data": base64.b64encode(data).decode("ascii")}},
                    {"text": PDF_EXTRACTION_PROMPT},
                ]
            }]
        }
        response = await self.clients.httpx.post(
            url,
            json=payload,
            headers={"x-goog-api-key": self.settings.gemini_api_key}
        )
        response.raise_for_status()

        body = response.json()
        candidates = body.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def _pdf_error(self, error: Exception, file_name: str) -> FileProcessingError:
        """Turn a Gemini failure into an actionable FileProcessingError."""
        if isinstance(error, FileProcessingError):
            return error

        status = None
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            classification = classify_status(status)
        elif isinstance(error, OperationTimeoutError):
            classification = ErrorClassification.TIMEOUT
        else:
            classification = classify_exception(error)

        if classification == ErrorClassification.AUTHENTICATION:
            message = "Gemini API authentication failed. Please check your GEMINI_API_KEY environment variable."
        elif status == 413:
            message = "The PDF file is too large. Please try a smaller file or split it into multiple files."
        elif status == 400:
            message = "The PDF file appears to be corrupted or invalid. Please try a different file."
        elif classification == ErrorClassification.TIMEOUT:
            message = (
                "PDF processing timed out. The file may be too large or complex. "
                "Please try a smaller file or split it into multiple files."
            )
        elif classification == ErrorClassification.RATE_LIMITED:
            message = "Gemini API rate limit exceeded. Please try again later."
        else:
            message = (
                f"Failed to extract text from PDF: {error}. Please try converting the PDF "
                f"to text format or use a Word document instead."
            )

        return FileProcessingError(
            message,
            file_name=file_name,
            classification=classification,
            details={"status": status} if status else None
        )

    async def _extract_docx(self, file_name: str, data: bytes) -> ExtractedText:
        try:
            text = await asyncio.to_thread(docx2txt.process, io.BytesIO(data))
        except Exception as e:
            logger.error(f"❌ Word document extraction failed for {file_name}: {e}")
            raise FileProcessingError(
                "Failed to read the Word document. Please check the file and try again.",
                file_name=file_name,
                classification=ErrorClassification.CLIENT_INPUT
            ) from e

        if not text or not text.strip():
            raise FileProcessingError(
                "No text extracted from Word document",
                file_name=file_name,
                classification=ErrorClassification.CLIENT_INPUT
            )

        logger.info(f"📄 Word document extraction successful: {file_name} ({len(text)} chars)")
        return ExtractedText(text=text)

    async def _extract_txt(self, file_name: str, data: bytes) -> ExtractedText:
        text = data.decode("utf-8", errors="replace")
        if not text.strip():
            raise FileProcessingError(
                "Text file is empty",
                file_name=file_name,
                classification=ErrorClassification.CLIENT_INPUT
            )
        logger.info(f"📄 Text file processed: {file_name} ({len(text)} chars)")
        return ExtractedText(text=text)
