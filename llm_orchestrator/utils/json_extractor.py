"""
JSON Extraction from LLM Output

Turns a raw model response into a structured value, tolerating the usual
formatting noise: fenced code blocks (```json ... ```) and prose around the
JSON payload.
"""

import json
import logging
import re
from typing import Any, Optional

from .exceptions import ErrorClassification, LLMError

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200

_OPENING_FENCE_RE = re.compile(r"^\s*```[\w+-]*[ \t]*\r?\n?")
_CLOSING_FENCE_RE = re.compile(r"\r?\n?```\s*$")
_OBJECT_SPAN_RE = re.compile(r"\{[\s\S]*\}")


def strip_code_fences(text: str) -> str:
    """Remove an outer fenced code block, keeping its contents.

    Only a fence opening the text and one closing it are stripped; fences
    inside the payload (e.g. code snippets in string values) are kept.
    """
    text = _OPENING_FENCE_RE.sub("", text, count=1)
    return _CLOSING_FENCE_RE.sub("", text, count=1).strip()


def parse_json(raw_text: Optional[str], provider: Optional[str] = None) -> Any:
    """
    Parse a JSON value out of raw model output.

    The cleaned text is parsed as-is first. If that fails, the greedy span from
    the first ``{`` to the last ``}`` is parsed instead, which recovers objects
    wrapped in explanatory prose.

    Args:
        raw_text: Response text as returned by the provider
        provider: Provider identifier, carried on errors

    Returns:
        The decoded JSON value

    Raises:
        LLMError: If the text is empty or nothing in it parses. The message
            includes at most the first 200 characters of the raw text.
    """
    if raw_text is None or not raw_text.strip():
        logger.error("❌ Empty LLM response, nothing to parse")
        raise LLMError(
            "LLM returned empty response",
            provider=provider,
            classification=ErrorClassification.UNKNOWN
        )

    cleaned = strip_code_fences(raw_text)

    try:
        return json.loads(cleaned)
    except ValueError:
        pass

    match = _OBJECT_SPAN_RE.search(cleaned)
    if match:
        try:
            return json.loads(match.group(0))
        except ValueError as e:
            parse_error = e
    else:
        parse_error = None

    logger.error(
        f"❌ JSON parsing failed (response length {len(raw_text)}): "
        f"{parse_error or 'no JSON object found'}"
    )
    raise LLMError(
        f"Invalid JSON response from LLM. Response preview: {raw_text[:PREVIEW_LENGTH]}...",
        provider=provider,
        classification=ErrorClassification.UNKNOWN,
        details={"response_length": len(raw_text)}
    )
