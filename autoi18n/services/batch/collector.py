"""
Source collection, target locale resolution and the inclusion filter.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Iterable, Literal

from autoi18n.core.errors import BatchValidationError
from autoi18n.core.locales import normalize_locale_code
from autoi18n.core.models import ALL_TYPES, BatchSourceFile, TranslationType
from autoi18n.storage.base import Categories, FileStorage

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS: dict[TranslationType, str] = {
    TranslationType.CONTENT: ".md",
    TranslationType.GLOBAL: ".json",
    TranslationType.PAGE: ".json",
}


# =============================================================================
# Types and locales
# =============================================================================


def requested_types(
    types: Iterable[TranslationType | str] | Literal["all"] | None,
) -> list[TranslationType]:
    """Resolve the requested unit types, keeping the canonical order."""
    if types is None or types == "all":
        return list(ALL_TYPES)
    wanted = {TranslationType(t) for t in types}
    if not wanted:
        return list(ALL_TYPES)
    return [t for t in ALL_TYPES if t in wanted]


def resolve_target_locales(
    source_locale: str,
    requested: Iterable[str] | Literal["all"] | None,
    supported: Iterable[str],
) -> list[str]:
    """
    Work out which locales a batch translates into.
    
    'all', None or an empty list mean every supported locale except the
    source. Unsupported codes and the source locale itself are dropped.
    The result is de-duplicated and sorted.
    """
    supported_codes = {normalize_locale_code(code) for code in supported}
    source = normalize_locale_code(source_locale)
    if source not in supported_codes:
        raise BatchValidationError(f"Source locale {source_locale} is not supported")

    if requested is None or requested == "all":
        candidates = supported_codes
    else:
        candidates = {normalize_locale_code(code) for code in requested}
        if not candidates:
            candidates = supported_codes

    targets = sorted(code for code in candidates if code in supported_codes and code != source)
    if not targets:
        raise BatchValidationError("No valid target locales provided")
    return targets


# =============================================================================
# Inclusion filter
# =============================================================================


def normalize_descriptor(value: str) -> str:
    """Canonical form of an include-list entry or a unit path."""
    return value.replace("\\", "/").strip().lstrip("/").lower()


def include_descriptors(file_type: TranslationType, relative_path: str) -> set[str]:
    """Every spelling an include-list entry may use for one unit."""
    path = normalize_descriptor(relative_path)
    return {path, f"{file_type.value}/{path}", f"{file_type.value}:{path}"}


def should_include_file(
    file_type: TranslationType,
    relative_path: str,
    include_files: Iterable[str] | Literal["all"] | None,
) -> bool:
    if include_files is None or include_files == "all":
        return True
    wanted = {normalize_descriptor(entry) for entry in include_files if entry.strip()}
    if not wanted:
        return True
    return not wanted.isdisjoint(include_descriptors(file_type, relative_path))


# =============================================================================
# Collection
# =============================================================================


async def collect_sources(
    files: FileStorage,
    sender_id: str,
    source_locale: str,
    types: Iterable[TranslationType],
) -> list[BatchSourceFile]:
    """
    Enumerate translatable uploads for a sender and source locale.
    
    Markdown is collected for content, JSON for global and page. A missing
    upload root simply contributes nothing.
    """
    sources: list[BatchSourceFile] = []
    for file_type in types:
        extension = SOURCE_EXTENSIONS[file_type]
        stored = await files.list_files(sender_id, source_locale, file_type, Categories.UPLOADS)
        for item in stored:
            path = PurePosixPath(item.relative_path)
            if path.suffix.lower() != extension:
                continue
            folder = path.parent.as_posix()
            sources.append(
                BatchSourceFile(
                    type=file_type,
                    format=file_type.request_format,
                    relative_path=item.relative_path,
                    file_name=path.name,
                    folder_path=None if folder == "." else folder,
                    file_path=item.location,
                    size=item.size,
                )
            )
        logger.debug(f"Collected {len(stored)} {file_type.value} uploads for {sender_id}/{source_locale}")
    return sources
