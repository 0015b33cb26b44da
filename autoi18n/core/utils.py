"""
Shared utility functions for autoi18n.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone

_UNSAFE_SEGMENT = re.compile(r"[^a-zA-Z0-9._-]")
_UNICODE_ESCAPE = re.compile(r"\\u([0-9a-fA-F]{4})")


def generate_id(prefix: str = "") -> str:
    """
    Generate a unique ID with optional prefix.
    
    Args:
        prefix: Optional prefix (e.g., "batch", "mock_batch")
        
    Returns:
        A unique ID like "batch_a1b2c3d4e5f6"
    """
    uid = str(uuid.uuid4())[:12]
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def sanitize_segment(value: str) -> str:
    """Make a value safe to use as a single storage path segment."""
    return _UNSAFE_SEGMENT.sub("_", value)


def decode_unicode_escapes(text: str) -> str:
    """
    Decode literal ``\\uXXXX`` sequences left in provider output.
    
    Some providers double-escape non-ASCII text inside JSON strings, so the
    decoded content still carries the escape sequences verbatim.
    """
    return _UNICODE_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), text)
