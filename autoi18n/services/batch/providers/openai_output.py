"""
OpenAI batch wire format: the JSONL request container and the JSONL result
files (output and error) the batch API produces.

Result rows look like::

    {"id": "...", "custom_id": "...",
     "response": {"status_code": 200, "body": {"choices": [...]}},
     "error": null}

The mock adapter writes the same shape, so it reuses this module.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

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


# =============================================================================
# JSONL codec
# =============================================================================


def encode_jsonl(rows: Iterable[dict[str, Any]]) -> str:
    return "".join(json.dumps(row, ensure_ascii=False) + "\n" for row in rows)


def parse_jsonl(text: str, source: str = "artifact") -> list[dict[str, Any]]:
    """Parse JSONL, skipping blank and malformed lines."""
    rows: list[dict[str, Any]] = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            row = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping malformed line {line_number} in {source}: {e}")
            continue
        if not isinstance(row, dict):
            logger.warning(f"Skipping non-object line {line_number} in {source}")
            continue
        rows.append(row)
    return rows


# =============================================================================
# Row classification
# =============================================================================


def extract_content(row: dict[str, Any]) -> tuple[str | None, str | None]:
    """
    Pull the translated text out of one result row.

    Returns ``(content, None)`` for a usable completion and
    ``(None, error message)`` otherwise.
    """
    response = as_dict(row.get("response"))
    body = as_dict(response.get("body"))
    status_code = response.get("status_code")

    if status_code != 200:
        message = (
            error_message(body.get("error"))
            or error_message(row.get("error"))
            or f"Request failed with status {status_code}"
        )
        return None, message

    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        return None, error_message(row.get("error")) or "No choices returned"

    choice = as_dict(choices[0])
    if choice.get("finish_reason") == "length":
        return None, TRUNCATED_MESSAGE

    message = as_dict(choice.get("message"))
    content = message.get("content")
    if not isinstance(content, str) or not content.strip():
        return None, error_message(message.get("refusal")) or NO_CONTENT_MESSAGE

    return decode_unicode_escapes(content), None


def _is_result_row(row: dict[str, Any]) -> bool:
    return isinstance(row.get("custom_id"), str) and ("response" in row or "error" in row)


def failed_custom_ids(text: str) -> set[str]:
    """Custom ids of every row in a result file that is not a usable completion."""
    failed: set[str] = set()
    for row in parse_jsonl(text, "error artifact"):
        if not _is_result_row(row):
            continue
        _, error = extract_content(row)
        if error is not None:
            failed.add(row["custom_id"])
    return failed


# =============================================================================
# Processing
# =============================================================================


def process_openai_output(
    manifest: BatchManifest,
    artifacts: list[tuple[str, str]],
) -> list[ProcessedTranslation]:
    """
    Turn downloaded result files into processed rows.

    Args:
        manifest: The batch the results belong to
        artifacts: (name, text) pairs, output file first, then error file

    A row is kept once per custom id; a repeat in a later file is ignored.
    """
    records = manifest.records_by_id()
    results: list[ProcessedTranslation] = []
    seen: set[str] = set()

    for name, text in artifacts:
        for row in parse_jsonl(text, name):
            if not _is_result_row(row):
                logger.warning(f"Skipping result row without custom_id or response in {name}")
                continue

            custom_id = row["custom_id"]
            if custom_id in seen:
                logger.warning(f"Ignoring repeated result for {custom_id} in {name}")
                continue
            seen.add(custom_id)

            record = records.get(custom_id)
            if record is None:
                logger.warning(f"Result {custom_id} in {name} has no manifest record")
                results.append(unmatched_translation(custom_id))
                continue

            content, error = extract_content(row)
            if error is not None:
                results.append(ProcessedTranslation.failure(record, error))
            else:
                results.append(ProcessedTranslation.success(record, content))

    return results
