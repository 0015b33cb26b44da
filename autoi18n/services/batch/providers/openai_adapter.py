"""
OpenAI batch adapter.

Requests go up as a JSONL file (``purpose="batch"``), the batch runs against
``/v1/chat/completions`` with a 24h completion window, and results come back
as separate output and error files that are downloaded once the batch
reaches a terminal status.
"""

from __future__ import annotations

import logging
from typing import Any

import openai
from openai import AsyncOpenAI
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from autoi18n.config import Settings
from autoi18n.core.errors import BatchStateError, ConfigurationError
from autoi18n.core.models import (
    BatchManifest,
    BatchMode,
    BatchProvider,
    BatchRequestCounts,
    BatchStatus,
    CheckBatchStatusResult,
    CreateBatchOptions,
    CreateBatchResult,
    OpenAIBatchMetadata,
    ProcessedTranslation,
    SubmitBatchResult,
    TranslationType,
)
from autoi18n.resources.prompt_template import PromptTemplate
from autoi18n.services.batch.builders import (
    CHAT_COMPLETIONS_ENDPOINT,
    BuiltRequest,
    OpenAIRequestBuilder,
)
from autoi18n.services.batch.manifest import ManifestStore
from autoi18n.services.batch.planner import (
    check_request_limit,
    new_batch_id,
    plan_batch,
    stage_batch,
)
from autoi18n.services.batch.providers.base import (
    advance_unless_finished,
    ensure_submittable,
    read_input_container,
    require_remote,
    submission_metadata,
)
from autoi18n.services.batch.providers.openai_output import (
    encode_jsonl,
    failed_custom_ids,
    parse_jsonl,
    process_openai_output,
)
from autoi18n.storage.base import FileStorage

logger = logging.getLogger(__name__)

INPUT_ARTIFACT = "input.jsonl"
UPLOAD_RESPONSE_ARTIFACT = "upload-response.json"
BATCH_RESPONSE_ARTIFACT = "openai-batch-response.json"
COMPLETION_WINDOW = "24h"
MAX_REQUESTS = 50_000

TERMINAL_REMOTE_STATUSES = {"completed", "failed", "expired", "cancelled"}

# Remote statuses that move the manifest; the rest leave it submitted
STATUS_MAP: dict[str, BatchStatus] = {
    "completed": BatchStatus.COMPLETED,
    "failed": BatchStatus.FAILED,
    "expired": BatchStatus.EXPIRED,
    "cancelling": BatchStatus.CANCELLED,
    "cancelled": BatchStatus.CANCELLED,
}

TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.InternalServerError,
    openai.RateLimitError,
)


def output_file_name(remote_batch_id: str) -> str:
    return f"{remote_batch_id}_output.jsonl"


def error_file_name(remote_batch_id: str) -> str:
    return f"{remote_batch_id}_error.jsonl"


class OpenAIBatchAdapter:
    """Batch lifecycle against the OpenAI Batch API."""

    provider = BatchProvider.OPENAI
    input_artifact = INPUT_ARTIFACT
    supports_cancel = True

    def __init__(
        self,
        settings: Settings,
        files: FileStorage,
        manifests: ManifestStore,
        prompts: PromptTemplate,
        client: AsyncOpenAI | None = None,
    ):
        self.settings = settings
        self.files = files
        self.manifests = manifests
        self.prompts = prompts
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy-load OpenAI client."""
        if self._client is None:
            if not self.settings.openai_api_key:
                raise ConfigurationError("OPENAI_API_KEY not set")
            self._client = AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                base_url=self.settings.openai_base_url or None,
                timeout=self.settings.provider_timeout_seconds,
            )
        return self._client

    @property
    def model(self) -> str:
        return self.settings.openai_model

    def request_builder(self, model: str | None = None) -> OpenAIRequestBuilder:
        return OpenAIRequestBuilder(
            self.prompts,
            model or self.model,
            max_completion_tokens=self.settings.openai_max_completion_tokens,
        )

    # =========================================================================
    # Wire container
    # =========================================================================

    def encode_container(self, requests: list[dict[str, Any]]) -> str:
        return encode_jsonl(requests)

    def decode_container(self, text: str) -> list[dict[str, Any]]:
        return parse_jsonl(text, INPUT_ARTIFACT)

    def with_model(self, request: dict[str, Any], model: str) -> dict[str, Any]:
        return {**request, "body": {**request.get("body", {}), "model": model}}

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
        async with self.manifests.update(sender_id, batch_id) as manifest:
            ensure_submittable(manifest)
            container = await read_input_container(self.manifests, manifest)

            uploaded = await self.client.files.create(
                file=(INPUT_ARTIFACT, container.encode("utf-8")),
                purpose="batch",
            )
            await self.manifests.write_artifact(
                sender_id, batch_id, UPLOAD_RESPONSE_ARTIFACT, uploaded.model_dump_json(indent=2)
            )

            batch = await self.client.batches.create(
                input_file_id=uploaded.id,
                endpoint=CHAT_COMPLETIONS_ENDPOINT,
                completion_window=COMPLETION_WINDOW,
                metadata=submission_metadata(manifest, metadata),
            )
            await self.manifests.write_artifact(
                sender_id, batch_id, BATCH_RESPONSE_ARTIFACT, batch.model_dump_json(indent=2)
            )

            manifest.remote = OpenAIBatchMetadata(
                batch_id=batch.id,
                status=batch.status,
                input_file_id=uploaded.id,
                endpoint=CHAT_COMPLETIONS_ENDPOINT,
            )
            manifest.advance(BatchStatus.SUBMITTED)

        logger.info(f"Submitted batch {batch_id} as OpenAI batch {batch.id} ({batch.status})")
        return SubmitBatchResult(
            batch_id=batch_id,
            provider_batch_id=batch.id,
            provider_status=batch.status,
            provider=self.provider,
        )

    # =========================================================================
    # Status and cancel
    # =========================================================================

    async def check_status(self, sender_id: str, batch_id: str) -> CheckBatchStatusResult:
        async with self.manifests.update(sender_id, batch_id) as manifest:
            remote = require_remote(manifest, OpenAIBatchMetadata)
            batch = await self.client.batches.retrieve(remote.batch_id)

            remote.status = batch.status
            remote.output_file_id = batch.output_file_id or remote.output_file_id
            remote.error_file_id = batch.error_file_id or remote.error_file_id

            if batch.status in TERMINAL_REMOTE_STATUSES:
                await self._download_results(manifest, remote)

            advance_unless_finished(manifest, STATUS_MAP.get(batch.status))

        return self._status_result(manifest, remote, batch)

    async def cancel_batch(self, sender_id: str, batch_id: str) -> CheckBatchStatusResult:
        async with self.manifests.update(sender_id, batch_id) as manifest:
            remote = require_remote(manifest, OpenAIBatchMetadata)
            if manifest.status.is_terminal:
                raise BatchStateError(
                    f"Batch {batch_id} already finished with status {manifest.status.value}"
                )
            batch = await self.client.batches.cancel(remote.batch_id)
            remote.status = batch.status
            advance_unless_finished(manifest, BatchStatus.CANCELLED)

        logger.info(f"Cancelled batch {batch_id} (OpenAI batch {remote.batch_id}: {batch.status})")
        return self._status_result(manifest, remote, batch)

    def is_remote_terminal(self, remote_status: str | None) -> bool:
        return remote_status in TERMINAL_REMOTE_STATUSES

    def _status_result(
        self,
        manifest: BatchManifest,
        remote: OpenAIBatchMetadata,
        batch: Any,
    ) -> CheckBatchStatusResult:
        counts = getattr(batch, "request_counts", None)
        return CheckBatchStatusResult(
            batch_id=manifest.batch_id,
            provider_batch_id=remote.batch_id,
            status=remote.status,
            manifest_status=manifest.status,
            provider=self.provider,
            request_counts=BatchRequestCounts(
                total=counts.total,
                completed=counts.completed,
                failed=counts.failed,
            ) if counts else None,
            results_location=remote.output_file_id,
            error_location=remote.error_file_id,
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
    async def _download_file(self, file_id: str) -> str:
        """Download a result file with retry on transient errors."""
        content = await self.client.files.content(file_id)
        return content.text

    async def _download_results(self, manifest: BatchManifest, remote: OpenAIBatchMetadata) -> None:
        """
        Fetch output and error files independently; one failing keeps the other.

        Files saved by an earlier check are not fetched again. If any file
        could not be fetched the first error is raised once the rest are
        saved, so the manifest is not rewritten and the next check retries.
        """
        failure: Exception | None = None
        downloads = [
            (remote.output_file_id, output_file_name(remote.batch_id)),
            (remote.error_file_id, error_file_name(remote.batch_id)),
        ]
        for file_id, name in downloads:
            if not file_id:
                continue
            if await self.manifests.artifact_exists(manifest.sender_id, manifest.batch_id, name):
                continue
            try:
                text = await self._download_file(file_id)
            except (openai.APIError, OSError) as e:
                logger.error(f"Failed to download {name} for batch {manifest.batch_id}: {e}")
                failure = failure or e
                continue
            await self.manifests.write_artifact(manifest.sender_id, manifest.batch_id, name, text)
            logger.info(f"Saved {name} for batch {manifest.batch_id}")
        if failure is not None:
            raise failure

    def error_artifact_name(self, manifest: BatchManifest) -> str | None:
        if manifest.remote is None:
            return None
        return error_file_name(manifest.remote.batch_id)

    def failed_custom_ids(self, artifact_text: str) -> set[str]:
        return failed_custom_ids(artifact_text)

    async def process_output(self, manifest: BatchManifest) -> list[ProcessedTranslation]:
        remote = require_remote(manifest, OpenAIBatchMetadata)
        artifacts: list[tuple[str, str]] = []
        for name in (output_file_name(remote.batch_id), error_file_name(remote.batch_id)):
            if await self.manifests.artifact_exists(manifest.sender_id, manifest.batch_id, name):
                text = await self.manifests.read_artifact(manifest.sender_id, manifest.batch_id, name)
                artifacts.append((name, text))

        if not artifacts:
            raise BatchStateError(f"Batch {manifest.batch_id} has no downloaded results yet")
        return process_openai_output(manifest, artifacts)
