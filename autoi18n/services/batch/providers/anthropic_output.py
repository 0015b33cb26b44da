"""
Anthropic message batch wire format.

Requests are stored as one JSON array of ``{custom_id, params}`` entries.
Results are streamed from the API and saved as a JSON array of entries:

    {"custom_id": "...",
     "result": {"type": "succeeded", "message": {"content": [...], ...}}}

where ``type`` is one of succeeded, errored, canceled or expired.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from autoi18n.core.errors import DataIntegrityError
from autoi18n.core.models import BatchManifest, ProcessedTranslation
from autoi18n.core.utils import decode_unicode_escapes
from autoi18n.services.batch.providers.base import (
    as_dict,
    error_message,
    unmatched_translation,
)

logger = logging.getLogger(__name__)

TRUNCATED_MESSAGE = "Content truncated - exceeded token limit"
NO_CONTENT_MESSAGE = "Failed to extract content"
EXPIRED_MESSAGE = "Request expired after 24 hours"
CANCELED_MESSAGE = "Request canceled before processing"


# =============================================================================
# JSON array codec
# =============================================================================


def encode_json_array(entries: list[dict[str, Any]]) -> str:
    return json.dumps(entries, ensure_ascii=False, indent=2)


def parse_json_array(text: str, source: str = "artifact") -> list[dict[str, Any]]:
    """
    Parse a JSON array artifact.

    The container itself must parse; individual entries that are not
    objects are skipped and logged.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DataIntegrityError(f"{source} is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise DataIntegrityError(f"{source} is not a JSON array")

    entries: list[dict[str, Any]] = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            logger.warning(f"Skipping non-object entry {index} in {source}")
            continue
        entries.append(entry)
    return entries


# =============================================================================
# Entry classification
# =============================================================================


def extract_content(entry: dict[str, Any]) -> tuple[str | None, str | None]:
    """``(content, None)`` for a usable message, ``(None, error)`` otherwise."""
    result = as_dict(entry.get("result"))
    result_type = result.get("type")

    if result_type != "succeeded":
        if result_type == "errored":
            return None, error_message(result.get("error")) or "Request errored"
        if result_type == "expired":
            return None, EXPIRED_MESSAGE
        if result_type == "canceled":
            return None, CANCELED_MESSAGE
        return None, f"Unexpected result type: {result_type}"

    message = as_dict(result.get("message"))
    if message.get("stop_reason") == "max_tokens":
        return None, TRUNCATED_MESSAGE

    blocks = message.get("content")
    texts = [
        block["text"]
        for block in (blocks if isinstance(blocks, list) else [])
        if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
    ]
    content = "\n".join(texts)
    if not content.strip():
        return None, NO_CONTENT_MESSAGE

    return decode_unicode_escapes(content), None


def failed_custom_ids(text: str) -> set[str]:
    """Custom ids of every result entry that did not yield usable content."""
    failed: set[str] = set()
    for entry in parse_json_array(text, "results artifact"):
        custom_id = entry.get("custom_id")
        if not isinstance(custom_id, str):
            continue
        _, error = extract_content(entry)
        if error is not None:
            failed.add(custom_id)
    return failed


# =============================================================================
# Processing
# =============================================================================


def process_anthropic_results(manifest: BatchManifest, name: str, text: str) -> list[ProcessedTranslation]:
    records = manifest.records_by_id()
    results: list[ProcessedTranslation] = []
    seen: set[str] = set()

    for entry in parse_json_array(text, name):
        custom_id = entry.get("custom_id")
        if not isinstance(custom_id, str) or "result" not in entry:
            logger.warning(f"Skipping result entry without custom_id or result in {name}")
            continue
        if custom_id in seen:
            logger.warning(f"Ignoring repeated result for {custom_id} in {name}")
            continue
        seen.add(custom_id)

        record = records.get(custom_id)
        if record is None:
            logger.warning(f"Result {custom_id} in {name} has no manifest record")
            results.append(unmatched_translation(custom_id))
            continue

        content, error = extract_content(entry)
        if error is not None:
            results.append(ProcessedTranslation.failure(record, error))
        else:
            results.append(ProcessedTranslation.success(record, content))

    return results
