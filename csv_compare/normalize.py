"""
Value and upload normalization.

Responsibilities:
- canonical comparison key for a single cell (trim + case-fold)
- encoding detection + decoding of uploaded bytes
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from charset_normalizer import from_bytes

logger = logging.getLogger(__name__)

UTF8_BOM = b"\xef\xbb\xbf"


def normalize_value(value: Optional[Any]) -> str:
    """
    Canonical comparison key for a cell value.

    Absent values read as the empty string. Everything else is converted to
    text, stripped of surrounding whitespace and lower-cased. Two cells are
    equal for matching purposes iff their keys are identical.
    """
    if value is None:
        return ""
    return str(value).strip().lower()


def decode_upload(raw: bytes) -> tuple[str, Dict[str, Any]]:
    """
    Decode uploaded bytes to text.

    Rules:
    - Detect encoding best-effort via charset-normalizer.
    - A leading UTF-8 BOM is never part of the decoded text.
    - If decode with the detected encoding fails, try UTF-8.
    - If that fails too, decode with replacement characters and report it.
    """
    detected = None

    match = from_bytes(raw).best()
    if match is not None:
        detected = match.encoding

    decode_used = detected or "utf-8"
    if raw.startswith(UTF8_BOM) and (decode_used.lower().replace("-", "_") in ("utf_8", "utf8")):
        decode_used = "utf-8-sig"

    decode_fallback = False

    try:
        text = raw.decode(decode_used)
    except (UnicodeDecodeError, LookupError):
        try:
            text = raw.decode("utf-8-sig")
            decode_used = "utf-8-sig"
        except UnicodeDecodeError:
            text = raw.decode("utf-8-sig", errors="replace")
            decode_used = "utf-8-sig"
        decode_fallback = True
        logger.warning(f"Could not decode upload as {detected!r}, fell back to {decode_used}")

    report = {
        "detected": detected,
        "decode_used": decode_used,
        "decode_fallback": decode_fallback,
    }
    return text, report
