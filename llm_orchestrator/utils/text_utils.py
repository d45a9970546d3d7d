"""
Input sanitization and small text helpers used at the HTTP boundary.
"""

import re
import secrets
import string
import time
from typing import Iterable

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_UNSAFE_FILENAME_CHARS_RE = re.compile(r"[^a-zA-Z0-9._-]")
_ID_ALPHABET = string.ascii_lowercase + string.digits


def sanitize_file_name(file_name: str) -> str:
    """
    Make an uploaded file name safe to log and echo back.

    Parent-directory references are removed, separators and any other
    character outside ``[a-zA-Z0-9._-]`` become underscores, and the result is
    capped at 255 characters. Empty results fall back to ``"file"``.
    """
    if not file_name or not file_name.strip():
        return "file"

    sanitized = file_name.replace("..", "")
    sanitized = re.sub(r"[/\\]", "_", sanitized)
    sanitized = _UNSAFE_FILENAME_CHARS_RE.sub("_", sanitized)[:255]
    return sanitized.strip() or "file"


def sanitize_text(text: str, max_length: int = 20000) -> str:
    """Strip control characters (keeping newlines and tabs) and truncate."""
    if not text or not isinstance(text, str):
        return ""
    sanitized = _CONTROL_CHARS_RE.sub("", text)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length]
    return sanitized.strip()


def is_valid_file_type(file_name: str, allowed_types: Iterable[str]) -> bool:
    """
    Check a file name's extension against allowed types.

    ``allowed_types`` may be given with or without the leading dot.
    """
    if "." not in file_name:
        return False
    extension = file_name.lower().rsplit(".", 1)[-1]
    allowed = {t.lower().lstrip(".") for t in allowed_types}
    return extension in allowed


def generate_request_id(prefix: str = "req") -> str:
    """Generate an identifier like ``req-1718000000000-k3j9x0a2b``."""
    timestamp = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}-{timestamp}-{suffix}"
