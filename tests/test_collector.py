"""
Tests for source collection, target locale resolution and the include filter.
"""

import pytest

from autoi18n.core.errors import BatchValidationError
from autoi18n.core.models import RequestFormat, TranslationType
from autoi18n.services.batch.collector import (
    collect_sources,
    requested_types,
    resolve_target_locales,
    should_include_file,
)

from conftest import SENDER, upload


SUPPORTED = ["en", "de", "fr", "ru"]


# =============================================================================
# Target locales
# =============================================================================


class TestResolveTargetLocales:
    @pytest.mark.parametrize("requested", [None, "all", []])
    def test_defaults_to_every_other_supported_locale(self, requested):
        assert resolve_target_locales("en", requested, SUPPORTED) == ["de", "fr", "ru"]

    def test_sorted_and_deduplicated(self):
        assert resolve_target_locales("en", ["ru", "de", "RU", "de"], SUPPORTED) == ["de", "ru"]

    def test_drops_source_and_unsupported(self):
        assert resolve_target_locales("en", ["en", "fr", "xx"], SUPPORTED) == ["fr"]

    def test_unsupported_source_rejected(self):
        with pytest.raises(BatchValidationError, match="Source locale ja is not supported"):
            resolve_target_locales("ja", None, SUPPORTED)

    def test_empty_result_rejected(self):
        with pytest.raises(BatchValidationError, match="No valid target locales"):
            resolve_target_locales("en", ["en", "xx"], SUPPORTED)


# =============================================================================
# Types and inclusion
# =============================================================================


class TestRequestedTypes:
    def test_all(self):
        assert requested_types("all") == [
            TranslationType.CONTENT,
            TranslationType.GLOBAL,
            TranslationType.PAGE,
        ]

    def test_keeps_canonical_order(self):
        assert requested_types(["page", "content"]) == [TranslationType.CONTENT, TranslationType.PAGE]


class TestIncludeFilter:
    def test_default_includes_everything(self):
        assert should_include_file(TranslationType.CONTENT, "docs/a.md", None)
        assert should_include_file(TranslationType.CONTENT, "docs/a.md", "all")
        assert should_include_file(TranslationType.CONTENT, "docs/a.md", [])

    @pytest.mark.parametrize("entry", ["docs/a.md", "content/docs/a.md", "content:docs/a.md", "Content:DOCS/A.md"])
    def test_accepted_spellings(self, entry):
        assert should_include_file(TranslationType.CONTENT, "docs/a.md", [entry])

    def test_other_type_not_matched(self):
        assert not should_include_file(TranslationType.CONTENT, "docs/a.md", ["page/docs/a.md"])


# =============================================================================
# Collection
# =============================================================================


class TestCollectSources:
    @pytest.mark.asyncio
    async def test_collects_by_type_and_extension(self, storage):
        await upload(storage, TranslationType.CONTENT, "index.md", "# Hi")
        await upload(storage, TranslationType.CONTENT, "blog/post.md", "Post")
        await upload(storage, TranslationType.CONTENT, "notes.txt", "not markdown")
        await upload(storage, TranslationType.PAGE, "home/en.json", "{}")

        sources = await collect_sources(
            storage.files, SENDER, "en", [TranslationType.CONTENT, TranslationType.PAGE]
        )

        paths = [(s.type, s.relative_path) for s in sources]
        assert paths == [
            (TranslationType.CONTENT, "blog/post.md"),
            (TranslationType.CONTENT, "index.md"),
            (TranslationType.PAGE, "home/en.json"),
        ]
        blog = sources[0]
        assert blog.folder_path == "blog"
        assert blog.file_name == "post.md"
        assert blog.format == RequestFormat.MARKDOWN
        assert sources[1].folder_path is None
        assert sources[2].format == RequestFormat.JSON

    @pytest.mark.asyncio
    async def test_missing_root_is_empty(self, storage):
        assert await collect_sources(storage.files, SENDER, "en", [TranslationType.GLOBAL]) == []
