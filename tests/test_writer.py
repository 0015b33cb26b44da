"""
Tests for the translation writer, the prompt template and locale helpers.
"""

import json

import pytest

from autoi18n.core.locales import get_locale_name, parse_locale_list
from autoi18n.core.models import (
    ProcessedTranslation,
    RequestFormat,
    TranslationStatus,
    TranslationType,
)
from autoi18n.services.batch.builders import UnitKind
from autoi18n.services.batch.writer import (
    TranslationWriter,
    format_json,
    format_markdown,
    translated_relative_path,
    translation_summary,
)
from autoi18n.storage import Categories

from conftest import SENDER


def row(locale, file_type, path, content, status=TranslationStatus.SUCCESS):
    return ProcessedTranslation(
        custom_id=f"{locale}-{path}",
        target_locale=locale,
        source_locale="en",
        type=file_type,
        format=file_type.request_format,
        relative_path=path,
        translated_content=content,
        status=status,
    )


# =============================================================================
# Paths and formatting
# =============================================================================


class TestTranslatedPath:
    @pytest.mark.parametrize(
        "path,fmt,expected",
        [
            ("en.json", RequestFormat.JSON, "de.json"),
            ("home/en.json", RequestFormat.JSON, "home/de.json"),
            ("home/strings.json", RequestFormat.JSON, "home/strings.json"),
            ("docs/en.md", RequestFormat.MARKDOWN, "docs/en.md"),
        ],
    )
    def test_locale_named_json_is_renamed(self, path, fmt, expected):
        assert translated_relative_path(path, fmt, "en", "de") == expected


class TestFormatting:
    def test_doubled_front_matter_collapsed(self):
        assert format_markdown("---\n---\ntitle: X\n---\nBody") == "---\ntitle: X\n---\nBody"

    def test_plain_markdown_untouched(self):
        assert format_markdown("# Title\n\n---\n\nText") == "# Title\n\n---\n\nText"

    def test_json_unwrapped_and_pretty(self):
        assert format_json('{"translation": {"a": "ü"}}') == '{\n  "a": "ü"\n}\n'

    def test_invalid_json(self):
        with pytest.raises(ValueError):
            format_json("not json")


# =============================================================================
# Writer
# =============================================================================


class TestTranslationWriter:
    @pytest.mark.asyncio
    async def test_save_all(self, storage):
        writer = TranslationWriter(storage.files)
        rows = [
            row("de", TranslationType.PAGE, "home/en.json", '{"translation": {"t": "Hallo"}}'),
            row("de", TranslationType.CONTENT, "a.md", "# A"),
            row("de", TranslationType.CONTENT, "b.md", "", TranslationStatus.ERROR),
            row("fr", TranslationType.GLOBAL, "en.json", "{broken"),
        ]

        summary = await writer.save_all(SENDER, rows)

        assert len(summary.saved_paths) == 2
        assert summary.skipped == 1
        assert list(summary.failures) == ["fr-en.json"]
        page = await storage.files.read(SENDER, "de", TranslationType.PAGE, "home/de.json", Categories.TRANSLATIONS)
        assert json.loads(page) == {"t": "Hallo"}

    def test_summary(self):
        rows = [
            row("de", TranslationType.CONTENT, "a.md", "x"),
            row("de", TranslationType.CONTENT, "b.md", "x"),
            row("fr", TranslationType.GLOBAL, "en.json", "{}"),
            row("fr", TranslationType.CONTENT, "c.md", "", TranslationStatus.ERROR),
        ]
        assert translation_summary(rows) == {"de": {"content": 2}, "fr": {"global": 1}}


# =============================================================================
# Prompts and locales
# =============================================================================


class TestPrompts:
    @pytest.mark.parametrize("kind", [UnitKind.MARKDOWN, UnitKind.JSON, UnitKind.MARKDOWN_DELTA])
    def test_every_kind_renders(self, prompts, kind):
        text = prompts.instruction(kind, "en", "de")
        assert "German" in text
        assert "{" + "target_name}" not in text

    def test_unknown_kind(self, prompts):
        with pytest.raises(ValueError, match="Unknown instruction kind"):
            prompts.instruction("poetry", "en", "de")

    def test_round_trip(self, prompts):
        copy = type(prompts).from_dict(prompts.to_dict())
        assert copy.instruction(UnitKind.JSON, "en", "fr") == prompts.instruction(UnitKind.JSON, "en", "fr")


class TestLocales:
    def test_parse_list(self):
        assert parse_locale_list(" EN, de_AT ,en,") == ["en", "de-at"]

    def test_empty_falls_back(self):
        assert parse_locale_list("") == ["en", "ru", "zh"]

    def test_names(self):
        assert get_locale_name("zh_TW") == "Chinese (Traditional)"
        assert get_locale_name("xx") == "xx"
