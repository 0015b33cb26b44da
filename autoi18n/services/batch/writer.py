"""
Translation writer.

Writes successful processed rows to file storage under the
``translations`` category, mirroring the uploads layout:

    {sender}/translations/{target locale}/{type}/{relative path}

JSON files named after the source locale (``en.json``) are renamed for the
target locale (``de.json``).
"""

from __future__ import annotations

import json
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from autoi18n.core.models import ProcessedTranslation, RequestFormat
from autoi18n.services.batch.delta import unwrap_translation
from autoi18n.storage.base import Categories, FileStorage

logger = logging.getLogger(__name__)

_DUPLICATE_FRONT_MATTER = re.compile(r"\A---\s*\n(?:\s*\n)*---\s*\n")


def translated_relative_path(
    relative_path: str,
    request_format: RequestFormat | None,
    source_locale: str | None,
    target_locale: str,
) -> str:
    path = PurePosixPath(relative_path)
    if request_format == RequestFormat.JSON and source_locale and path.stem == source_locale:
        return path.with_name(f"{target_locale}{path.suffix}").as_posix()
    return path.as_posix()


def format_markdown(content: str) -> str:
    """Collapse a doubled opening front matter delimiter some models emit."""
    return _DUPLICATE_FRONT_MATTER.sub("---\n", content, count=1)


def format_json(content: str) -> str:
    """Unwrap ``{"translation": ...}`` and pretty-print; raises ValueError if not JSON."""
    return json.dumps(unwrap_translation(content), ensure_ascii=False, indent=2) + "\n"


@dataclass
class WriteSummary:
    saved_paths: list[str] = field(default_factory=list)
    skipped: int = 0
    failures: dict[str, str] = field(default_factory=dict)  # custom id -> reason


class TranslationWriter:
    """Persists processed translations to file storage."""

    def __init__(self, files: FileStorage):
        self.files = files

    def render(self, translation: ProcessedTranslation) -> str:
        if translation.format == RequestFormat.JSON:
            return format_json(translation.translated_content)
        return format_markdown(translation.translated_content)

    async def save(self, sender_id: str, translation: ProcessedTranslation) -> str:
        relative_path = translated_relative_path(
            translation.relative_path,
            translation.format,
            translation.source_locale,
            translation.target_locale,
        )
        return await self.files.write(
            sender_id,
            translation.target_locale,
            translation.type,
            relative_path,
            self.render(translation),
            Categories.TRANSLATIONS,
        )

    async def save_all(self, sender_id: str, translations: list[ProcessedTranslation]) -> WriteSummary:
        summary = WriteSummary()
        for translation in translations:
            if not translation.is_success or translation.type is None:
                summary.skipped += 1
                continue
            try:
                summary.saved_paths.append(await self.save(sender_id, translation))
            except ValueError as e:
                logger.warning(f"Could not write {translation.custom_id}: {e}")
                summary.failures[translation.custom_id] = str(e)

        logger.info(
            f"Wrote {len(summary.saved_paths)} translations for {sender_id} "
            f"({summary.skipped} skipped, {len(summary.failures)} failed)"
        )
        return summary


def translation_summary(translations: list[ProcessedTranslation]) -> dict[str, dict[str, int]]:
    """Successful rows grouped by target locale, then by type."""
    summary: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for translation in translations:
        if translation.is_success and translation.type is not None:
            summary[translation.target_locale][translation.type.value] += 1
    return {locale: dict(types) for locale, types in summary.items()}
