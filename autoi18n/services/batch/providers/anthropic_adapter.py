"""
Anthropic message batches adapter.

The request container is a single JSON array sent inline with the batch
create call. When the batch has ended, results are streamed from the API
and saved as one JSON array artifact, which also serves as the error
artifact for retries.
"""

from __future__ import annotations

import logging
from typing import Any

import anthropic
from anthropic import AsyncAnthropic
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from autoi18n.config import Settings
from autoi18n.core.errors import BatchStateError, ConfigurationError
from autoi18n.core.models import (
    AnthropicBatchMetadata,
    BatchManifest,
    BatchMode,
    BatchProvider,
    BatchRequestCounts,
    BatchStatus,
    CheckBatchStatusResult,
    CreateBatchOptions,
    CreateBatchResult,
    ProcessedTranslation,
    SubmitBatchResult,
    TranslationType,
)
from autoi18n.resources.prompt_template import PromptTemplate
from autoi18n.services.batch.builders import AnthropicRequestBuilder, BuiltRequest
from autoi18n.services.batch.manifest import ManifestStore
from autoi18n.services.batch.planner import (
    check_request_limit,
    new_batch_id,
    plan_batch,
    stage_batch,
)
from autoi18n.services.batch.providers.anthropic_output import (
    encode_json_array,
    failed_custom_ids,
    parse_json_array,
    process_anthropic_results,
)
from autoi18n.services.batch.providers.base import (
    advance_unless_finished,
    ensure_submittable,
    read_input_container,
    require_remote,
)
from autoi18n.storage.base import FileStorage

logger = logging.getLogger(__name__)

INPUT_ARTIFACT = "input.json"
BATCH_RESPONSE_ARTIFACT = "anthropic-batch-response.json"
MAX_REQUESTS = 100_000

TERMINAL_REMOTE_STATUSES = {"ended", "canceling"}

STATUS_MAP: dict[str, BatchStatus] = {
    "ended": BatchStatus.COMPLETED,
    "canceling": BatchStatus.CANCELLED,
}

TRANSIENT_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
    anthropic.RateLimitError,
)


def results_file_name(remote_batch_id: str) -> str:
    return f"{remote_batch_id}_output.json"


class AnthropicBatchAdapter:
    """Batch lifecycle against the Anthropic Message Batches API."""

    provider = BatchProvider.ANTHROPIC
    input_artifact = INPUT_ARTIFACT
    supports_cancel = True

    def __init__(
        self,
        settings: Settings,
        files: FileStorage,
        manifests: ManifestStore,
        prompts: PromptTemplate,
        client: AsyncAnthropic | None = None,
    ):
        self.settings = settings
        self.files = files
        self.manifests = manifests
        self.prompts = prompts
        self._client = client

    @property
    def client(self) -> AsyncAnthropic:
        """Lazy-load Anthropic client."""
        if self._client is None:
            if not self.settings.anthropic_api_key:
                raise ConfigurationError("ANTHROPIC_API_KEY not set")
            self._client = AsyncAnthropic(
                api_key=self.settings.anthropic_api_key,
                base_url=self.settings.anthropic_base_url or None,
                timeout=self.settings.provider_timeout_seconds,
            )
        return self._client

    @property
    def model(self) -> str:
        return self.settings.anthropic_model

    def request_builder(self, model: str | None = None) -> AnthropicRequestBuilder:
        return AnthropicRequestBuilder(
            self.prompts,
            model or self.model,
            max_tokens=self.settings.anthropic_max_tokens,
        )

    # =========================================================================
    # Wire container
    # =========================================================================

    def encode_container(self, requests: list[dict[str, Any]]) -> str:
        return encode_json_array(requests)

    def decode_container(self, text: str) -> list[dict[str, Any]]:
        return parse_json_array(text, INPUT_ARTIFACT)

    def with_model(self, request: dict[str, Any], model: str) -> dict[str, Any]:
        return {**request, "params": {**request.get("params", {}), "model": model}}

    # =========================================================================
    # Create
    # =========================================================================

    async def create_batch(self, options: CreateBatchOptions) -> CreateBatchResult:
        builder = self.request_builder(options.model)
        plan = await plan_batch(
            self.files, options, builder, self.settings.supported_locale_codes
        )
        return await self.stage_requests(
            sender_id=options.sender_id,
            source_locale=options.source_locale,
            target_locales=plan.target_locales,
            types=plan.types,
            requests=plan.requests,
            model=builder.model,
        )

    async def stage_requests(
        self,
        *,
        sender_id: str,
        source_locale: str,
        target_locales: list[str],
        types: list[TranslationType],
        requests: list[BuiltRequest],
        model: str,
        mode: BatchMode = BatchMode.FULL,
    ) -> CreateBatchResult:
        check_request_limit(self.provider, len(requests), MAX_REQUESTS)
        return await stage_batch(
            self.manifests,
            provider=self.provider,
            batch_id=new_batch_id(self.provider, source_locale),
            sender_id=sender_id,
            source_locale=source_locale,
            target_locales=target_locales,
            types=types,
            model=model,
            records=[r.record for r in requests],
            container=self.encode_container([r.request for r in requests]),
            input_artifact=INPUT_ARTIFACT,
            mode=mode,
        )

    # =========================================================================
    # Submit
    # =========================================================================

    async def submit_batch(
        self,
        sender_id: str,
        batch_id: str,
        metadata: dict[str, str] | None = None,
    ) -> SubmitBatchResult:
        # Message batches carry no metadata; the manifest keeps the mapping
        async with self.manifests.update(sender_id, batch_id) as manifest:
            ensure_submittable(manifest)
            requests = self.decode_container(await read_input_container(self.manifests, manifest))

            batch = await self.client.messages.batches.create(requests=requests)
            await self.manifests.write_artifact(
                sender_id, batch_id, BATCH_RESPONSE_ARTIFACT, batch.model_dump_json(indent=2)
            )

            manifest.remote = AnthropicBatchMetadata(
                batch_id=batch.id,
                status=batch.processing_status,
                processing_status=batch.processing_status,
            )
            manifest.advance(BatchStatus.SUBMITTED)

        logger.info(
            f"Submitted batch {batch_id} as Anthropic batch {batch.id} ({batch.processing_status})"
        )
        return SubmitBatchResult(
            batch_id=batch_id,
            provider_batch_id=batch.id,
            provider_status=batch.processing_status,
            provider=self.provider,
        )

    # =========================================================================
    # Status and cancel
    # =========================================================================

    async def check_status(self, sender_id: str, batch_id: str) -> CheckBatchStatusResult:
        async with self.manifests.update(sender_id, batch_id) as manifest:
            remote = require_remote(manifest, AnthropicBatchMetadata)
            batch = await self.client.messages.batches.retrieve(remote.batch_id)

            remote.status = batch.processing_status
            remote.processing_status = batch.processing_status
            remote.results_url = batch.results_url or remote.results_url

            if batch.processing_status == "ended":
                await self._save_results(manifest, remote)

            advance_unless_finished(manifest, STATUS_MAP.get(batch.processing_status))

        return self._status_result(manifest, remote, batch)

    async def cancel_batch(self, sender_id: str, batch_id: str) -> CheckBatchStatusResult:
        async with self.manifests.update(sender_id, batch_id) as manifest:
            remote = require_remote(manifest, AnthropicBatchMetadata)
            if manifest.status.is_terminal:
                raise BatchStateError(
                    f"Batch {batch_id} already finished with status {manifest.status.value}"
                )
            batch = await self.client.messages.batches.cancel(remote.batch_id)
            remote.status = batch.processing_status
            remote.processing_status = batch.processing_status
            advance_unless_finished(manifest, BatchStatus.CANCELLED)

        logger.info(
            f"Cancelled batch {batch_id} (Anthropic batch {remote.batch_id}: {batch.processing_status})"
        )
        return self._status_result(manifest, remote, batch)

    def is_remote_terminal(self, remote_status: str | None) -> bool:
        return remote_status in TERMINAL_REMOTE_STATUSES

    def _status_result(
        self,
        manifest: BatchManifest,
        remote: AnthropicBatchMetadata,
        batch: Any,
    ) -> CheckBatchStatusResult:
        counts = getattr(batch, "request_counts", None)
        request_counts = None
        if counts is not None:
            request_counts = BatchRequestCounts(
                total=(
                    counts.processing + counts.succeeded + counts.errored
                    + counts.canceled + counts.expired
                ),
                completed=counts.succeeded,
                failed=counts.errored,
                processing=counts.processing,
                cancelled=counts.canceled,
                expired=counts.expired,
            )
        return CheckBatchStatusResult(
            batch_id=manifest.batch_id,
            provider_batch_id=remote.batch_id,
            status=remote.status,
            manifest_status=manifest.status,
            provider=self.provider,
            request_counts=request_counts,
            results_location=remote.results_url,
        )

    # =========================================================================
    # Results
    # =========================================================================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    async def _stream_results(self, remote_batch_id: str) -> list[dict[str, Any]]:
        """Stream every result entry, retrying the whole stream on transient errors."""
        entries: list[dict[str, Any]] = []
        stream = await self.client.messages.batches.results(remote_batch_id)
        async for entry in stream:
            entries.append(entry.model_dump(mode="json"))
        return entries

    async def _save_results(self, manifest: BatchManifest, remote: AnthropicBatchMetadata) -> None:
        """Stream the results into one artifact unless an earlier check already did."""
        name = results_file_name(remote.batch_id)
        if await self.manifests.artifact_exists(manifest.sender_id, manifest.batch_id, name):
            return
        try:
            entries = await self._stream_results(remote.batch_id)
        except (anthropic.APIError, OSError) as e:
            logger.error(f"Failed to stream results for batch {manifest.batch_id}: {e}")
            raise
        await self.manifests.write_artifact(
            manifest.sender_id, manifest.batch_id, name, encode_json_array(entries)
        )
        logger.info(f"Saved {len(entries)} results to {name} for batch {manifest.batch_id}")

    def error_artifact_name(self, manifest: BatchManifest) -> str | None:
        if manifest.remote is None:
            return None
        return results_file_name(manifest.remote.batch_id)

    def failed_custom_ids(self, artifact_text: str) -> set[str]:
        return failed_custom_ids(artifact_text)

    async def process_output(self, manifest: BatchManifest) -> list[ProcessedTranslation]:
        remote = require_remote(manifest, AnthropicBatchMetadata)
        name = results_file_name(remote.batch_id)
        if not await self.manifests.artifact_exists(manifest.sender_id, manifest.batch_id, name):
            raise BatchStateError(f"Batch {manifest.batch_id} has no downloaded results yet")
        text = await self.manifests.read_artifact(manifest.sender_id, manifest.batch_id, name)
        return process_anthropic_results(manifest, name, text)
