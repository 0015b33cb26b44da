"""
Tests for the batch service: provider selection, lifecycle events, the
session hook, output processing with saving, and delta batches.
"""

import json

import pytest

from autoi18n.core.errors import (
    BatchNotFoundError,
    BatchValidationError,
    ConfigurationError,
    UnsupportedOperationError,
)
from autoi18n.core.events import (
    BATCH_CREATED,
    BATCH_STATUS_CHANGED,
    BATCH_SUBMITTED,
    BATCH_TERMINAL,
    EventBus,
)
from autoi18n.core.models import (
    BatchMode,
    BatchProvider,
    BatchStatus,
    ChangedFile,
    CreateBatchOptions,
    CreateDeltaBatchOptions,
    TranslationType,
)
from autoi18n.services.batch.providers.mock_adapter import output_file_name
from autoi18n.services.batch.service import BatchService
from autoi18n.storage import Categories

from conftest import SENDER, jsonl, openai_row


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def hook_calls():
    return []


@pytest.fixture
def service(mock_settings, storage, events, hook_calls):
    async def session_hook(manifest):
        hook_calls.append(manifest.batch_id)

    return BatchService(mock_settings, storage, event_bus=events, session_hook=session_hook)


def options(**overrides) -> CreateBatchOptions:
    return CreateBatchOptions(sender_id=SENDER, source_locale="en", **overrides)


async def read_translation(storage, locale, file_type, path):
    return await storage.files.read(SENDER, locale, file_type, path, Categories.TRANSLATIONS)


# =============================================================================
# Provider selection
# =============================================================================


class TestProviderSelection:
    def test_mock_mode_wins(self, mock_settings, storage):
        service = BatchService(mock_settings.model_copy(update={"openai_api_key": "sk-test"}), storage)
        assert service.resolve_provider() == BatchProvider.MOCK
        assert service.resolve_provider(BatchProvider.OPENAI) == BatchProvider.MOCK

    def test_mock_provider_name_enables_mock_mode(self, settings, storage):
        service = BatchService(settings.model_copy(update={"translation_provider": "mock"}), storage)
        assert service.resolve_provider() == BatchProvider.MOCK

    def test_explicit_choice(self, settings, storage):
        service = BatchService(settings.model_copy(update={"openai_api_key": "sk-test"}), storage)
        assert service.resolve_provider("anthropic") == BatchProvider.ANTHROPIC

    def test_configured_provider(self, settings, storage):
        service = BatchService(
            settings.model_copy(update={"translation_provider": "Anthropic", "openai_api_key": "sk"}),
            storage,
        )
        assert service.resolve_provider() == BatchProvider.ANTHROPIC

    def test_unknown_configured_provider(self, settings, storage):
        service = BatchService(settings.model_copy(update={"translation_provider": "bogus"}), storage)
        with pytest.raises(ConfigurationError, match="bogus"):
            service.resolve_provider()

    @pytest.mark.parametrize(
        "keys,expected",
        [
            ({"openai_api_key": "sk"}, BatchProvider.OPENAI),
            ({"anthropic_api_key": "sk-ant"}, BatchProvider.ANTHROPIC),
            ({"openai_api_key": "sk", "anthropic_api_key": "sk-ant"}, BatchProvider.OPENAI),
        ],
    )
    def test_from_credentials(self, settings, storage, keys, expected):
        service = BatchService(settings.model_copy(update=keys), storage)
        assert service.resolve_provider() == expected

    def test_nothing_configured(self, settings, storage):
        service = BatchService(settings, storage)

        assert service.is_batch_processing_available().available is False
        with pytest.raises(ConfigurationError, match="No batch translation provider"):
            service.resolve_provider()

    def test_injected_client_counts_as_available(self, settings, storage, openai_client):
        service = BatchService(settings, storage, openai_client=openai_client)

        availability = service.is_batch_processing_available()

        assert availability.available
        assert availability.providers == [BatchProvider.OPENAI]

    def test_adapters_are_memoized(self, service):
        assert service.adapter(BatchProvider.MOCK) is service.adapter(BatchProvider.MOCK)

    @pytest.mark.asyncio
    async def test_provider_inferred_from_batch_id(self, service):
        assert await service.provider_for_batch(SENDER, "batch_anthropic_en_1_abc") == BatchProvider.ANTHROPIC
        assert await service.provider_for_batch(SENDER, "mock_batch_en_1_abc") == BatchProvider.MOCK
        assert await service.provider_for_batch(SENDER, "batch_en_1_abc") == BatchProvider.OPENAI
        with pytest.raises(BatchNotFoundError):
            await service.provider_for_batch(SENDER, "something_else")


# =============================================================================
# Full lifecycle with the mock adapter
# =============================================================================


class TestMockLifecycle:
    @pytest.mark.asyncio
    async def test_create_submit_check_process(self, service, storage, events, hook_calls, uploads):
        created = await service.create_batch(options())
        assert created.provider == BatchProvider.MOCK
        assert created.batch_id.startswith("mock_batch_en_")
        assert created.request_count == 9

        submitted = await service.submit_batch(SENDER, created.batch_id)
        assert submitted.provider_status == "in_progress"

        status = await service.check_batch_status(SENDER, created.batch_id)
        assert status.manifest_status == BatchStatus.COMPLETED
        assert status.request_counts.completed == 9
        assert hook_calls == [created.batch_id]

        await service.check_batch_status(SENDER, created.batch_id)
        assert hook_calls == [created.batch_id]

        result = await service.process_completed_batch(SENDER, created.batch_id, save=True)

        assert result.success_count == 9
        assert result.error_count == 0
        assert result.missing_custom_ids == []
        assert len(result.saved_paths) == 9

        assert await read_translation(storage, "de", TranslationType.CONTENT, "index.md") == (
            "# [de] Welcome\n\n[de] Hello there."
        )
        assert await read_translation(storage, "fr", TranslationType.CONTENT, "docs/guide.md") == (
            "---\ntitle: [fr] Guide\n---\n\n## [fr] Start\n\n[fr] Read this first."
        )
        global_de = json.loads(await read_translation(storage, "de", TranslationType.GLOBAL, "de.json"))
        assert global_de == {"nav": {"home": "[de] Home"}, "footer": "[de] All rights reserved"}

        history = [e.event_type for e in events.get_history(sender_id=SENDER)]
        assert history == [BATCH_CREATED, BATCH_SUBMITTED, BATCH_STATUS_CHANGED, BATCH_TERMINAL]

    @pytest.mark.asyncio
    async def test_process_without_save_writes_nothing(self, service, storage, uploads):
        created = await service.create_batch(options(types=["content"]))
        await service.submit_batch(SENDER, created.batch_id)
        await service.check_batch_status(SENDER, created.batch_id)

        result = await service.process_completed_batch(SENDER, created.batch_id)

        assert result.success_count == 6
        assert result.saved_paths == []
        assert not await storage.files.exists(
            SENDER, "de", TranslationType.CONTENT, "index.md", Categories.TRANSLATIONS
        )

    @pytest.mark.asyncio
    async def test_failing_session_hook_is_logged(self, mock_settings, storage, uploads, caplog):
        async def broken_hook(manifest):
            raise RuntimeError("session store down")

        service = BatchService(mock_settings, storage, session_hook=broken_hook)
        created = await service.create_batch(options(types=["global"]))
        await service.submit_batch(SENDER, created.batch_id)

        status = await service.check_batch_status(SENDER, created.batch_id)

        assert status.manifest_status == BatchStatus.COMPLETED
        assert "session store down" in caplog.text

    @pytest.mark.asyncio
    async def test_mock_batches_cannot_be_cancelled(self, service, uploads):
        created = await service.create_batch(options(types=["global"]))
        await service.submit_batch(SENDER, created.batch_id)

        with pytest.raises(UnsupportedOperationError):
            await service.cancel_batch(SENDER, created.batch_id)

    @pytest.mark.asyncio
    async def test_unknown_batch(self, service):
        with pytest.raises(BatchNotFoundError):
            await service.check_batch_status(SENDER, "mock_batch_en_1_missing")


# =============================================================================
# Output accounting
# =============================================================================


class TestOutputAccounting:
    @pytest.mark.asyncio
    async def test_missing_rows_and_write_failures(self, service, storage, uploads):
        created = await service.create_batch(options(types=["content", "global"], target_locales=["de"]))
        submitted = await service.submit_batch(SENDER, created.batch_id)
        await service.check_batch_status(SENDER, created.batch_id)
        records = {r.relative_path: r for r in created.manifest.files}

        # Only two of three results arrived, and the JSON one is not JSON
        await service.manifests.write_artifact(
            SENDER,
            created.batch_id,
            output_file_name(submitted.provider_batch_id),
            jsonl([
                openai_row(records["index.md"].custom_id, "# Willkommen"),
                openai_row(records["en.json"].custom_id, "not json"),
            ]),
        )

        result = await service.process_completed_batch(SENDER, created.batch_id, save=True)

        assert result.missing_custom_ids == [records["docs/guide.md"].custom_id]
        assert result.success_count == 1
        assert result.error_count == 1
        failed = next(t for t in result.translations if not t.is_success)
        assert failed.error_message.startswith("Failed to write translation")
        assert await read_translation(storage, "de", TranslationType.CONTENT, "index.md") == "# Willkommen"


# =============================================================================
# Delta batches
# =============================================================================


class TestDeltaBatches:
    @pytest.fixture
    def changes(self):
        return [
            ChangedFile(
                type=TranslationType.CONTENT,
                relative_path="index.md",
                previous="# Welcome\n\nHello there.",
                current="# Welcome\n\nHello again.\nNew line",
            ),
            ChangedFile(
                type=TranslationType.GLOBAL,
                relative_path="en.json",
                previous=json.dumps({"nav": {"home": "Home"}, "footer": "All rights reserved"}),
                current=json.dumps({"nav": {"home": "Home"}, "footer": "Copyright", "extra": "More"}),
            ),
        ]

    @pytest.mark.asyncio
    async def test_delta_merged_into_previous_translation(self, service, storage, changes):
        await storage.files.write(SENDER, "de", TranslationType.CONTENT, "index.md", "# Willkommen\n\nHallo.")
        await storage.files.write(
            SENDER,
            "de",
            TranslationType.GLOBAL,
            "de.json",
            json.dumps({"nav": {"home": "Startseite"}, "footer": "Alle Rechte vorbehalten"}),
        )

        created = await service.create_delta_batch(
            CreateDeltaBatchOptions(
                sender_id=SENDER, source_locale="en", target_locales=["de", "fr"], changes=changes
            )
        )
        assert created.manifest.mode == BatchMode.DELTA
        assert created.request_count == 4
        assert created.manifest.types == [TranslationType.CONTENT, TranslationType.GLOBAL]

        await service.submit_batch(SENDER, created.batch_id)
        await service.check_batch_status(SENDER, created.batch_id)
        result = await service.process_completed_batch(SENDER, created.batch_id, save=True)

        assert result.success_count == 2
        assert result.error_count == 2
        assert {t.error_message for t in result.translations if not t.is_success} == {"Original file not found"}

        assert await read_translation(storage, "de", TranslationType.CONTENT, "index.md") == (
            "# Willkommen\n\n[de] Hello again.\n[de] New line"
        )
        merged = json.loads(await read_translation(storage, "de", TranslationType.GLOBAL, "de.json"))
        assert merged == {
            "nav": {"home": "Startseite"},
            "footer": "[de] Copyright",
            "extra": "[de] More",
        }

    @pytest.mark.asyncio
    async def test_nothing_changed(self, service):
        unchanged = [
            ChangedFile(type=TranslationType.CONTENT, relative_path="a.md", previous="same", current="same")
        ]
        with pytest.raises(BatchValidationError, match="No translatable changes"):
            await service.create_delta_batch(
                CreateDeltaBatchOptions(sender_id=SENDER, source_locale="en", changes=unchanged)
            )


# =============================================================================
# Real adapter through the service
# =============================================================================


class TestOpenAIThroughService:
    @pytest.mark.asyncio
    async def test_terminal_event_once(self, settings, storage, openai_client, uploads):
        events = EventBus()
        service = BatchService(settings, storage, openai_client=openai_client, event_bus=events)
        created = await service.create_batch(options(types=["global"], target_locales=["de"]))
        submitted = await service.submit_batch(SENDER, created.batch_id)

        openai_client.batches.batches[submitted.provider_batch_id].status = "in_progress"
        await service.check_batch_status(SENDER, created.batch_id)
        await service.check_batch_status(SENDER, created.batch_id)

        [record] = created.manifest.files
        openai_client.finish(
            submitted.provider_batch_id,
            jsonl([openai_row(record.custom_id, json.dumps({"translation": {"footer": "Alle Rechte"}}))]),
        )
        await service.check_batch_status(SENDER, created.batch_id)
        await service.check_batch_status(SENDER, created.batch_id)

        changes = events.get_history(event_type=BATCH_STATUS_CHANGED)
        assert [e.payload["status"] for e in changes] == ["in_progress", "completed"]
        assert len(events.get_history(event_type=BATCH_TERMINAL)) == 1

        result = await service.process_completed_batch(SENDER, created.batch_id, save=True)
        assert result.success_count == 1
        saved = json.loads(await read_translation(storage, "de", TranslationType.GLOBAL, "de.json"))
        assert saved == {"footer": "Alle Rechte"}
