"""
Delta engine.

Computes what changed between two versions of a source file, turns only
the changed fragments into translation units, and merges translated
fragments back into the previously translated document.

JSON deltas work on top-level keys: a changed nested object is
``modified`` as a whole value. Merging is a shallow overlay per top-level
key, so the two always agree on granularity.

Markdown deltas are line aligned: line N of the old version is compared
with line N of the new one. Only added and modified lines are sent for
translation, as a ``{line number: text}`` JSON object.
"""

from __future__ import annotations

import copy
import json
import logging
from enum import Enum
from pathlib import PurePosixPath
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from autoi18n.core.models import (
    BatchSourceFile,
    ChangedFile,
    RequestFormat,
    unit_key,
)
from autoi18n.services.batch.builders import TranslationUnit, UnitKind

logger = logging.getLogger(__name__)

DELTA_ARTIFACT = "delta.json"


# =============================================================================
# Delta models
# =============================================================================


class JsonDelta(BaseModel):
    kind: Literal["json"] = "json"
    added: dict[str, Any] = Field(default_factory=dict)
    modified: dict[str, Any] = Field(default_factory=dict)
    deleted: list[str] = Field(default_factory=list)

    def to_translate(self) -> dict[str, Any]:
        return {**self.added, **self.modified}


class MarkdownChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class MarkdownChange(BaseModel):
    line_number: int  # 1-based
    old_line: str | None = None
    new_line: str | None = None
    type: MarkdownChangeType


class MarkdownDelta(BaseModel):
    kind: Literal["markdown"] = "markdown"
    changes: list[MarkdownChange] = Field(default_factory=list)
    new_line_count: int = 0

    def lines_to_translate(self) -> dict[str, str]:
        return {
            str(c.line_number): c.new_line or ""
            for c in self.changes
            if c.type != MarkdownChangeType.DELETED
        }


FileDelta = Annotated[Union[JsonDelta, MarkdownDelta], Field(discriminator="kind")]


class DeltaSet(BaseModel):
    """Deltas of one delta batch, keyed by unit key (``type:relative/path``)."""

    deltas: dict[str, FileDelta] = Field(default_factory=dict)


# =============================================================================
# Extraction
# =============================================================================


def extract_json_delta(old: dict[str, Any], new: dict[str, Any]) -> JsonDelta:
    """
    Top-level key diff between two JSON objects.

    Values equal under deep equality are left out; new keys are added,
    changed keys are modified, removed keys are listed as deleted.
    """
    delta = JsonDelta()
    for key, value in new.items():
        if key not in old:
            delta.added[key] = copy.deepcopy(value)
        elif old[key] != value:
            delta.modified[key] = copy.deepcopy(value)
    delta.deleted = [key for key in old if key not in new]
    return delta


def extract_markdown_delta(old: str, new: str) -> MarkdownDelta:
    old_lines = old.split("\n")
    new_lines = new.split("\n")
    changes: list[MarkdownChange] = []

    for index in range(max(len(old_lines), len(new_lines))):
        old_line = old_lines[index] if index < len(old_lines) else None
        new_line = new_lines[index] if index < len(new_lines) else None
        if old_line == new_line:
            continue
        if old_line is None:
            change_type = MarkdownChangeType.ADDED
        elif new_line is None:
            change_type = MarkdownChangeType.DELETED
        else:
            change_type = MarkdownChangeType.MODIFIED
        changes.append(
            MarkdownChange(
                line_number=index + 1,
                old_line=old_line,
                new_line=new_line,
                type=change_type,
            )
        )

    return MarkdownDelta(changes=changes, new_line_count=len(new_lines))


def is_delta_empty(delta: JsonDelta | MarkdownDelta) -> bool:
    return count_delta_changes(delta) == 0


def count_delta_changes(delta: JsonDelta | MarkdownDelta) -> int:
    if isinstance(delta, JsonDelta):
        return len(delta.added) + len(delta.modified) + len(delta.deleted)
    return len(delta.changes)


# =============================================================================
# Merge
# =============================================================================


def merge_translated_delta(original: dict[str, Any], translated_delta: dict[str, Any]) -> dict[str, Any]:
    """Shallow overlay of translated keys onto a copy of the original."""
    merged = copy.deepcopy(original)
    merged.update(translated_delta)
    return merged


def apply_json_deletions(document: dict[str, Any], deleted: list[str]) -> dict[str, Any]:
    return {key: value for key, value in document.items() if key not in set(deleted)}


def merge_markdown_delta(
    previous_translation: str,
    translated_lines: dict[str, str],
    delta: MarkdownDelta,
) -> str:
    """
    Replace modified lines, append added lines and drop deleted tail lines.

    A line the provider left out keeps the new source text so line
    positions stay aligned.
    """
    lines = previous_translation.split("\n")
    for change in delta.changes:
        if change.type == MarkdownChangeType.DELETED:
            continue
        text = translated_lines.get(str(change.line_number))
        if text is None:
            logger.warning(f"Translated delta is missing line {change.line_number}")
            text = change.new_line or ""
        index = change.line_number - 1
        while len(lines) <= index:
            lines.append("")
        lines[index] = text

    if any(c.type == MarkdownChangeType.DELETED for c in delta.changes):
        lines = lines[:delta.new_line_count]
    return "\n".join(lines)


def unwrap_translation(content: str) -> Any:
    """Parse a JSON response and strip the ``{"translation": ...}`` wrapper."""
    data = json.loads(content)
    if isinstance(data, dict) and set(data) == {"translation"}:
        return data["translation"]
    return data


def apply_translated_delta(
    previous_translation: str,
    translated_content: str,
    delta: JsonDelta | MarkdownDelta,
) -> str:
    """
    Full translated document after merging one translated fragment.

    Raises ValueError when the provider's response or the previous
    translation does not have the expected shape.
    """
    fragment = unwrap_translation(translated_content)
    if not isinstance(fragment, dict):
        raise ValueError("Translated delta is not a JSON object")

    if isinstance(delta, MarkdownDelta):
        lines = {str(k): str(v) for k, v in fragment.items()}
        return merge_markdown_delta(previous_translation, lines, delta)

    previous = json.loads(previous_translation)
    if not isinstance(previous, dict):
        raise ValueError("Previous translation is not a JSON object")
    merged = apply_json_deletions(merge_translated_delta(previous, fragment), delta.deleted)
    return json.dumps(merged, ensure_ascii=False, indent=2)


# =============================================================================
# Units
# =============================================================================


def _load_json_object(text: str, label: str) -> dict[str, Any] | None:
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"Skipping {label}: invalid JSON ({e})")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Skipping {label}: not a JSON object")
        return None
    return data


def build_delta_units(changes: list[ChangedFile]) -> tuple[list[TranslationUnit], DeltaSet]:
    """
    Translation units covering only what changed in each file.

    Files whose delta has nothing to translate are skipped.
    """
    units: list[TranslationUnit] = []
    delta_set = DeltaSet()

    for change in changes:
        path = PurePosixPath(change.relative_path)
        folder = path.parent.as_posix()
        source = BatchSourceFile(
            type=change.type,
            format=change.type.request_format,
            relative_path=change.relative_path,
            file_name=path.name,
            folder_path=None if folder == "." else folder,
            size=len(change.current.encode("utf-8")),
        )
        label = f"{change.type.value}/{change.relative_path}"

        if source.format == RequestFormat.JSON:
            old = _load_json_object(change.previous, f"previous {label}")
            new = _load_json_object(change.current, f"current {label}")
            if old is None or new is None:
                continue
            delta: JsonDelta | MarkdownDelta = extract_json_delta(old, new)
            payload: Any = delta.to_translate()
            unit = TranslationUnit(source=source, kind=UnitKind.JSON, payload=payload)
        else:
            delta = extract_markdown_delta(change.previous, change.current)
            payload = delta.lines_to_translate()
            unit = TranslationUnit(source=source, kind=UnitKind.MARKDOWN_DELTA, payload=payload)

        if not payload:
            logger.info(f"No translatable changes in {label}")
            continue

        units.append(unit)
        delta_set.deltas[unit_key(change.type, change.relative_path)] = delta

    return units, delta_set
