"""Text extraction for files attached to user turns."""

from __future__ import annotations

import base64
import binascii
import logging
import re

from ..schemas.chat import FileAttachment

logger = logging.getLogger(__name__)


DATA_URL_PATTERN = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)

MAX_EXTRACTED_CHARS = 50_000
TRUNCATION_MARKER = "\n\n[... content truncated ...]"

# Share of NUL characters at or above which decoded content counts as binary
NUL_BYTE_THRESHOLD = 0.1


def parse_data_url(data_url: str) -> tuple[str, str] | None:
    """Split a base64 data URL into ``(mime_type, payload)``."""

    if not isinstance(data_url, str):
        return None
    match = DATA_URL_PATTERN.match(data_url.strip())
    if match is None:
        return None
    return match.group(1).strip().lower(), match.group(2)


def looks_binary(text: str) -> bool:
    """Return True when the NUL character share reaches the threshold."""

    if not text:
        return False
    return text.count("\0") >= len(text) * NUL_BYTE_THRESHOLD


def truncate_text(text: str, limit: int = MAX_EXTRACTED_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def _decode_text(raw: bytes) -> str | None:
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        text = None
    if text is not None and not looks_binary(text):
        return text

    # latin-1 maps every byte, so only the NUL heuristic can reject it
    fallback = raw.decode("latin-1")
    if looks_binary(fallback):
        return None
    return fallback


def extract_file_content(file: FileAttachment) -> str | None:
    """Return the readable text of a non-image attachment, or ``None``."""

    try:
        parsed = parse_data_url(file.data)
        if parsed is None:
            return None
        mime_type, payload = parsed
        if file.is_image or mime_type.startswith("image/"):
            return None

        try:
            raw = base64.b64decode(re.sub(r"\s+", "", payload), validate=True)
        except (binascii.Error, ValueError):
            logger.debug("Attachment %s has an invalid base64 payload", file.name)
            return None

        text = _decode_text(raw)
        if text is None:
            return None
        return truncate_text(text)
    except Exception:
        logger.warning("Error extracting content from %s", file.name, exc_info=True)
        return None


__all__ = [
    "DATA_URL_PATTERN",
    "MAX_EXTRACTED_CHARS",
    "NUL_BYTE_THRESHOLD",
    "TRUNCATION_MARKER",
    "extract_file_content",
    "looks_binary",
    "parse_data_url",
    "truncate_text",
]
