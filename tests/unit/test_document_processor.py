"""
Unit tests for document text extraction.
"""

import asyncio
import io
import zipfile
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from llm_orchestrator.services.document_processor import (
    DOCX_MIME,
    PDF_MIME,
    DocumentProcessor,
)
from llm_orchestrator.utils.exceptions import ErrorClassification, FileProcessingError

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent"

DOCUMENT_XML = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
    '<w:body><w:p><w:r><w:t>{text}</w:t></w:r></w:p></w:body></w:document>'
)


def build_docx(text: str) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("word/document.xml", DOCUMENT_XML.format(text=text))
    return buffer.getvalue()


def gemini_response(status: int = 200, text: str = "Extracted PDF text") -> httpx.Response:
    body = {"candidates": [{"content": {"parts": [{"text": text}]}}]} if status == 200 else {"error": {}}
    return httpx.Response(status, json=body, request=httpx.Request("POST", GEMINI_URL))


class TestDocumentProcessor:
    """Text extraction per file type."""

    @pytest.fixture
    def clients(self):
        clients = MagicMock()
        clients.httpx.post = AsyncMock(return_value=gemini_response())
        return clients

    @pytest.fixture
    def processor(self, test_settings, clients, observability):
        return DocumentProcessor(settings=test_settings, clients=clients, observability=observability)

    @pytest.mark.asyncio
    async def test_text_file(self, processor):
        extracted = await processor.extract_text("notes.txt", "text/plain", "Line one\nLine two".encode("utf-8"))
        assert extracted.text == "Line one\nLine two"

    @pytest.mark.asyncio
    async def test_empty_text_file_rejected(self, processor):
        with pytest.raises(FileProcessingError, match="Text file is empty"):
            await processor.extract_text("empty.txt", "text/plain", b"   \n")

    @pytest.mark.asyncio
    async def test_type_detected_from_extension(self, processor):
        extracted = await processor.extract_text("notes.TXT", "application/octet-stream", b"hello")
        assert extracted.text == "hello"

    @pytest.mark.asyncio
    async def test_unsupported_type(self, processor):
        with pytest.raises(FileProcessingError) as exc_info:
            await processor.extract_text("image.png", "image/png", b"\x89PNG")

        assert exc_info.value.classification == ErrorClassification.CLIENT_INPUT
        assert "Unsupported file type: image/png" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_docx_file(self, processor):
        extracted = await processor.extract_text("report.docx", DOCX_MIME, build_docx("Board oversight of ESG"))
        assert extracted.text == "Board oversight of ESG"

    @pytest.mark.asyncio
    async def test_corrupt_docx(self, processor):
        with pytest.raises(FileProcessingError, match="Failed to read the Word document"):
            await processor.extract_text("report.docx", DOCX_MIME, b"not a zip archive")

    @pytest.mark.asyncio
    async def test_docx_without_text(self, processor):
        with pytest.raises(FileProcessingError, match="No text extracted from Word document"):
            await processor.extract_text("blank.docx", DOCX_MIME, build_docx(""))

    @pytest.mark.asyncio
    async def test_pdf_via_gemini(self, processor, clients):
        extracted = await processor.extract_text("report.pdf", PDF_MIME, b"%PDF-1.4 data")

        assert extracted.text == "Extracted PDF text"
        assert extracted.metadata == {"title": "report.pdf"}
        args, kwargs = clients.httpx.post.call_args
        assert args[0] == GEMINI_URL
        assert kwargs["headers"] == {"x-goog-api-key": "gemini-test"}
        inline = kwargs["json"]["contents"][0]["parts"][0]["inline_data"]
        assert inline["mime_type"] == PDF_MIME

    @pytest.mark.asyncio
    async def test_pdf_without_gemini_key(self, test_settings, clients, observability):
        settings = test_settings.model_copy(update={"gemini_api_key": ""})
        processor = DocumentProcessor(settings=settings, clients=clients, observability=observability)

        with pytest.raises(FileProcessingError) as exc_info:
            await processor.extract_text("report.pdf", PDF_MIME, b"%PDF")

        assert exc_info.value.classification == ErrorClassification.AUTHENTICATION
        clients.httpx.post.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, classification, fragment", [
        (401, ErrorClassification.AUTHENTICATION, "Gemini API authentication failed"),
        (413, ErrorClassification.CLIENT_INPUT, "too large"),
        (400, ErrorClassification.CLIENT_INPUT, "corrupted or invalid"),
        (429, ErrorClassification.RATE_LIMITED, "Gemini API rate limit exceeded"),
        (500, ErrorClassification.SERVER_FAULT, "Failed to extract text from PDF"),
    ])
    async def test_pdf_http_errors(self, processor, clients, status, classification, fragment):
        clients.httpx.post.return_value = gemini_response(status)

        with pytest.raises(FileProcessingError) as exc_info:
            await processor.extract_text("report.pdf", PDF_MIME, b"%PDF")

        assert fragment in exc_info.value.message
        assert exc_info.value.classification == classification
        assert exc_info.value.details["status"] == status

    @pytest.mark.asyncio
    async def test_pdf_timeout(self, test_settings, clients, observability):
        async def slow_post(*args, **kwargs):
            await asyncio.sleep(1)
            return gemini_response()

        clients.httpx.post = slow_post
        settings = test_settings.model_copy(update={"gemini_timeout_ms": 50})
        processor = DocumentProcessor(settings=settings, clients=clients, observability=observability)

        with pytest.raises(FileProcessingError) as exc_info:
            await processor.extract_text("report.pdf", PDF_MIME, b"%PDF")

        assert exc_info.value.classification == ErrorClassification.TIMEOUT
        assert "PDF processing timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_pdf_empty_text(self, processor, clients):
        clients.httpx.post.return_value = gemini_response(text="  ")

        with pytest.raises(FileProcessingError, match="empty text"):
            await processor.extract_text("report.pdf", PDF_MIME, b"%PDF")

    @pytest.mark.asyncio
    async def test_records_file_processing_metric(self, processor, mock_sink):
        await processor.extract_text("notes.txt", "text/plain", b"hello")
        with pytest.raises(FileProcessingError):
            await processor.extract_text("empty.txt", "text/plain", b"")

        calls = [c.args for c in mock_sink.record_metric.call_args_list]
        assert [c[0] for c in calls] == ["file_processing", "file_processing"]
        assert calls[0][1]["metadata"]["success"] is True
        assert calls[1][1]["metadata"]["success"] is False
