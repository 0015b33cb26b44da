"""
Retry batches.

A retry batch re-sends only the requests that failed in an earlier batch.
The failed custom ids come from the error artifact, the request bodies come
from the original request container, and the manifest records come from
the original manifest, so custom ids stay the same across retries.
"""

from __future__ import annotations

import logging

from autoi18n.core.errors import BatchNotFoundError, BatchValidationError, DataIntegrityError
from autoi18n.core.models import BatchMode, CreateRetryBatchResult
from autoi18n.services.batch.delta import DELTA_ARTIFACT
from autoi18n.services.batch.manifest import ManifestStore
from autoi18n.services.batch.planner import new_batch_id, stage_batch
from autoi18n.services.batch.providers.base import BatchAdapter, read_input_container

logger = logging.getLogger(__name__)


async def create_retry_batch(
    adapter: BatchAdapter,
    manifests: ManifestStore,
    sender_id: str,
    original_batch_id: str,
    error_artifact_name: str,
    model: str | None = None,
) -> CreateRetryBatchResult:
    """
    Build a draft batch containing only the failed requests of another batch.

    Args:
        adapter: Adapter of the original batch's provider
        manifests: Manifest store
        sender_id: Owner of the batch
        original_batch_id: Batch whose failures are retried
        error_artifact_name: Artifact listing the failed requests
        model: Optional model to use instead of the original one
    """
    original = await manifests.load(sender_id, original_batch_id)

    try:
        error_text = await manifests.read_artifact(sender_id, original_batch_id, error_artifact_name)
    except BatchNotFoundError:
        raise BatchValidationError(
            f"Error artifact {error_artifact_name} not found for batch {original_batch_id}"
        ) from None

    failed_ids = adapter.failed_custom_ids(error_text)
    if not failed_ids:
        raise BatchValidationError(f"No failed requests found in {error_artifact_name}")

    requests = adapter.decode_container(await read_input_container(manifests, original))
    selected = [r for r in requests if r.get("custom_id") in failed_ids]
    if not selected:
        raise DataIntegrityError(
            f"None of the {len(failed_ids)} failed requests match the input of {original_batch_id}"
        )
    if model:
        selected = [adapter.with_model(r, model) for r in selected]

    records_by_id = original.records_by_id()
    missing = [r["custom_id"] for r in selected if r["custom_id"] not in records_by_id]
    if missing:
        raise DataIntegrityError(
            f"{len(missing)} retried requests have no record in the manifest of {original_batch_id}"
        )
    records = [records_by_id[r["custom_id"]] for r in selected]

    batch_id = new_batch_id(original.provider, original.source_locale)
    if original.mode == BatchMode.DELTA:
        delta_text = await manifests.read_artifact(sender_id, original_batch_id, DELTA_ARTIFACT)
        await manifests.write_artifact(sender_id, batch_id, DELTA_ARTIFACT, delta_text)

    created = await stage_batch(
        manifests,
        provider=original.provider,
        batch_id=batch_id,
        sender_id=sender_id,
        source_locale=original.source_locale,
        target_locales=sorted({r.target_locale for r in records}),
        types=[t for t in original.types if any(r.type == t for r in records)],
        model=model or original.model,
        records=records,
        container=adapter.encode_container(selected),
        input_artifact=original.input_artifact,
        mode=original.mode,
        retry_of=original_batch_id,
    )

    logger.info(
        f"Retry batch {batch_id} re-sends {len(records)} of {len(failed_ids)} "
        f"failed requests from {original_batch_id}"
    )
    return CreateRetryBatchResult(
        batch_id=batch_id,
        request_count=created.request_count,
        failed_request_count=len(failed_ids),
        manifest=created.manifest,
        input_artifact_path=created.input_artifact_path,
    )
