"""
Tests for retry batches.

Core principle: a retry batch carries exactly the failed requests of the
original, with the same custom ids.
"""

import json

import pytest

from autoi18n.core.errors import BatchValidationError, DataIntegrityError
from autoi18n.core.models import (
    BatchMode,
    BatchProvider,
    BatchStatus,
    ChangedFile,
    CreateBatchOptions,
    CreateDeltaBatchOptions,
    TranslationType,
)
from autoi18n.services.batch import retry
from autoi18n.services.batch.delta import DELTA_ARTIFACT
from autoi18n.services.batch.providers.anthropic_adapter import AnthropicBatchAdapter
from autoi18n.services.batch.service import BatchService

from conftest import SENDER, anthropic_entry, jsonl, openai_row


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def service(mock_settings, storage):
    return BatchService(mock_settings, storage)


async def failed_mock_batch(service, failing: int = 2):
    """A submitted mock batch whose first ``failing`` requests failed."""
    created = await service.create_batch(
        CreateBatchOptions(sender_id=SENDER, source_locale="en", types=["content"])
    )
    failed_ids = {r.custom_id for r in created.manifest.files[:failing]}
    service.adapter(BatchProvider.MOCK).fail_custom_ids = failed_ids
    await service.submit_batch(SENDER, created.batch_id)
    return created, failed_ids


# =============================================================================
# Retry from the error artifact
# =============================================================================


class TestRetryBatch:
    @pytest.mark.asyncio
    async def test_only_failed_requests(self, service, uploads):
        created, failed_ids = await failed_mock_batch(service)

        result = await service.create_retry_batch(SENDER, created.batch_id)

        assert result.batch_id != created.batch_id
        assert result.request_count == 2
        assert result.failed_request_count == 2
        manifest = result.manifest
        assert {r.custom_id for r in manifest.files} == failed_ids
        assert manifest.total_requests == 2
        assert manifest.retry_of == created.batch_id
        assert manifest.status == BatchStatus.DRAFT
        assert manifest.provider == BatchProvider.MOCK
        assert manifest.model == created.manifest.model

        container = await service.manifests.read_artifact(SENDER, result.batch_id, "input.jsonl")
        assert {json.loads(line)["custom_id"] for line in container.splitlines()} == failed_ids

    @pytest.mark.asyncio
    async def test_target_locales_narrow_to_failures(self, service, uploads):
        created, failed_ids = await failed_mock_batch(service, failing=1)

        result = await service.create_retry_batch(SENDER, created.batch_id)

        [record] = result.manifest.files
        assert result.manifest.target_locales == [record.target_locale]
        assert result.manifest.types == [TranslationType.CONTENT]

    @pytest.mark.asyncio
    async def test_model_override(self, service, uploads):
        created, _ = await failed_mock_batch(service)

        result = await service.create_retry_batch(SENDER, created.batch_id, model="bigger-model")

        assert result.manifest.model == "bigger-model"
        container = await service.manifests.read_artifact(SENDER, result.batch_id, "input.jsonl")
        assert all(json.loads(line)["body"]["model"] == "bigger-model" for line in container.splitlines())

    @pytest.mark.asyncio
    async def test_retry_can_be_submitted(self, service, uploads):
        created, _ = await failed_mock_batch(service)
        service.adapter(BatchProvider.MOCK).fail_custom_ids = set()
        result = await service.create_retry_batch(SENDER, created.batch_id)

        await service.submit_batch(SENDER, result.batch_id)
        await service.check_batch_status(SENDER, result.batch_id)
        processed = await service.process_completed_batch(SENDER, result.batch_id)

        assert processed.success_count == 2
        assert processed.error_count == 0


# =============================================================================
# Rejections
# =============================================================================


class TestRetryRejections:
    @pytest.mark.asyncio
    async def test_no_error_artifact(self, service, uploads):
        created, _ = await failed_mock_batch(service, failing=0)

        with pytest.raises(BatchValidationError, match="not found"):
            await service.create_retry_batch(SENDER, created.batch_id)

    @pytest.mark.asyncio
    async def test_artifact_without_failures(self, service, uploads):
        created, _ = await failed_mock_batch(service, failing=0)
        output_name = f"mock_{created.batch_id}_output.jsonl"

        with pytest.raises(BatchValidationError, match="No failed requests"):
            await service.create_retry_batch(SENDER, created.batch_id, output_name)

    @pytest.mark.asyncio
    async def test_never_submitted(self, service, uploads):
        created = await service.create_batch(
            CreateBatchOptions(sender_id=SENDER, source_locale="en", types=["content"])
        )
        with pytest.raises(BatchValidationError, match="never submitted"):
            await service.create_retry_batch(SENDER, created.batch_id)

    @pytest.mark.asyncio
    async def test_failures_from_another_batch(self, service, uploads):
        created, _ = await failed_mock_batch(service, failing=0)
        stranger = "markdown_content_de_0123456789abcdef_other_md"
        await service.manifests.write_artifact(
            SENDER, created.batch_id, "foreign.jsonl", jsonl([openai_row(stranger, None, 500)])
        )

        with pytest.raises(DataIntegrityError, match="match the input"):
            await service.create_retry_batch(SENDER, created.batch_id, "foreign.jsonl")


# =============================================================================
# Provider and mode variants
# =============================================================================


class TestRetryVariants:
    @pytest.mark.asyncio
    async def test_anthropic_results_file_is_the_error_artifact(
        self, settings, storage, manifests, prompts, anthropic_client, uploads
    ):
        adapter = AnthropicBatchAdapter(settings, storage.files, manifests, prompts, client=anthropic_client)
        created = await adapter.create_batch(
            CreateBatchOptions(sender_id=SENDER, source_locale="en", types=["content"], target_locales=["de"])
        )
        submitted = await adapter.submit_batch(SENDER, created.batch_id)
        ok, failed = created.manifest.files
        anthropic_client.finish(
            submitted.provider_batch_id,
            [anthropic_entry(ok.custom_id, "fine"), anthropic_entry(failed.custom_id, None, "errored")],
        )
        await adapter.check_status(SENDER, created.batch_id)
        manifest = await manifests.load(SENDER, created.batch_id)

        result = await retry.create_retry_batch(
            adapter, manifests, SENDER, created.batch_id, adapter.error_artifact_name(manifest)
        )

        assert result.batch_id.startswith("batch_anthropic_")
        assert [r.custom_id for r in result.manifest.files] == [failed.custom_id]
        entries = json.loads(await manifests.read_artifact(SENDER, result.batch_id, "input.json"))
        assert [e["custom_id"] for e in entries] == [failed.custom_id]

    @pytest.mark.asyncio
    async def test_delta_retry_keeps_the_delta(self, service, uploads):
        created = await service.create_delta_batch(
            CreateDeltaBatchOptions(
                sender_id=SENDER,
                source_locale="en",
                target_locales=["de", "fr"],
                changes=[
                    ChangedFile(
                        type=TranslationType.CONTENT,
                        relative_path="index.md",
                        previous="# Welcome\n\nHello there.",
                        current="# Welcome\n\nHello again.",
                    )
                ],
            )
        )
        service.adapter(BatchProvider.MOCK).fail_custom_ids = {created.manifest.files[0].custom_id}
        await service.submit_batch(SENDER, created.batch_id)

        result = await service.create_retry_batch(SENDER, created.batch_id)

        assert result.manifest.mode == BatchMode.DELTA
        original = await service.manifests.read_artifact(SENDER, created.batch_id, DELTA_ARTIFACT)
        copied = await service.manifests.read_artifact(SENDER, result.batch_id, DELTA_ARTIFACT)
        assert copied == original
