"""
The batch adapter contract and helpers shared by every adapter.

Adapters are not related by inheritance. Each one is a standalone class
that satisfies ``BatchAdapter`` and is picked from a provider-tag lookup
table by the batch service.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol, TypeVar

from autoi18n.core.errors import BatchStateError, BatchValidationError
from autoi18n.core.models import (
    BatchManifest,
    BatchMode,
    BatchProvider,
    BatchStatus,
    CheckBatchStatusResult,
    CreateBatchOptions,
    CreateBatchResult,
    ProcessedTranslation,
    RemoteBatchMetadata,
    SubmitBatchResult,
    TranslationStatus,
    TranslationType,
)
from autoi18n.services.batch.builders import BuiltRequest, RequestBuilder
from autoi18n.services.batch.correlation import parse_custom_id
from autoi18n.services.batch.manifest import ManifestStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=RemoteBatchMetadata)


class BatchAdapter(Protocol):
    """Capabilities every provider adapter offers."""

    provider: BatchProvider
    input_artifact: str
    supports_cancel: bool

    @property
    def model(self) -> str: ...

    def request_builder(self, model: str | None = None) -> RequestBuilder: ...

    # Wire container
    def encode_container(self, requests: list[dict[str, Any]]) -> str: ...
    def decode_container(self, text: str) -> list[dict[str, Any]]: ...
    def with_model(self, request: dict[str, Any], model: str) -> dict[str, Any]: ...

    # Lifecycle
    async def create_batch(self, options: CreateBatchOptions) -> CreateBatchResult: ...

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
    ) -> CreateBatchResult: ...

    async def submit_batch(
        self, sender_id: str, batch_id: str, metadata: dict[str, str] | None = None
    ) -> SubmitBatchResult: ...

    async def check_status(self, sender_id: str, batch_id: str) -> CheckBatchStatusResult: ...

    async def cancel_batch(self, sender_id: str, batch_id: str) -> CheckBatchStatusResult: ...

    # Output
    async def process_output(self, manifest: BatchManifest) -> list[ProcessedTranslation]: ...
    def failed_custom_ids(self, artifact_text: str) -> set[str]: ...
    def error_artifact_name(self, manifest: BatchManifest) -> str | None: ...
    def is_remote_terminal(self, remote_status: str | None) -> bool: ...


# =============================================================================
# Lifecycle helpers
# =============================================================================


def ensure_submittable(manifest: BatchManifest) -> None:
    """
    Guard a submit call.

    Resubmitting a submitted batch is allowed with a warning. A finished
    batch cannot be resubmitted; a retry batch is the way to rerun it.
    """
    if manifest.status.is_terminal:
        raise BatchStateError(
            f"Batch {manifest.batch_id} already finished with status "
            f"{manifest.status.value}; create a retry batch instead"
        )
    if manifest.status != BatchStatus.DRAFT:
        logger.warning(
            f"Batch {manifest.batch_id} is {manifest.status.value}, not draft; submitting again"
        )


def require_remote(manifest: BatchManifest, metadata_type: type[M]) -> M:
    """The manifest's provider metadata block, or an error if never submitted."""
    if manifest.remote is None:
        raise BatchStateError(f"Batch {manifest.batch_id} has not been submitted")
    if not isinstance(manifest.remote, metadata_type):
        raise BatchStateError(
            f"Batch {manifest.batch_id} carries {manifest.remote.kind} metadata, "
            f"expected {metadata_type.__name__}"
        )
    return manifest.remote


def advance_unless_finished(manifest: BatchManifest, status: BatchStatus | None) -> bool:
    """Move a live manifest forward; a finished one keeps its status."""
    if status is None or manifest.status.is_terminal:
        return False
    changed = manifest.advance(status)
    if changed:
        logger.info(f"Batch {manifest.batch_id} is now {status.value}")
    return changed


async def read_input_container(manifests: ManifestStore, manifest: BatchManifest) -> str:
    if not await manifests.artifact_exists(
        manifest.sender_id, manifest.batch_id, manifest.input_artifact
    ):
        raise BatchValidationError(
            f"Batch input file {manifest.input_artifact} not found for {manifest.batch_id}"
        )
    return await manifests.read_artifact(
        manifest.sender_id, manifest.batch_id, manifest.input_artifact
    )


def submission_metadata(manifest: BatchManifest, extra: dict[str, str] | None = None) -> dict[str, str]:
    metadata = {
        "sender_id": manifest.sender_id,
        "batch_id": manifest.batch_id,
        "types": ",".join(t.value for t in manifest.types),
        "source_locale": manifest.source_locale,
    }
    metadata.update(extra or {})
    return metadata


# =============================================================================
# Output helpers
# =============================================================================


def unmatched_translation(custom_id: str) -> ProcessedTranslation:
    """
    Error row for a result whose custom id has no manifest record.

    Whatever structure the id itself still carries is recovered so the row
    can be attributed in reports.
    """
    parts = parse_custom_id(custom_id)
    return ProcessedTranslation(
        custom_id=custom_id,
        target_locale=parts.target_locale if parts else "unknown",
        type=parts.type if parts else None,
        format=parts.format if parts else None,
        status=TranslationStatus.ERROR,
        error_message=f"No manifest record matches custom id {custom_id}",
    )


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def error_message(value: Any) -> str | None:
    """Best readable message from a provider error value."""
    if isinstance(value, dict):
        message = value.get("message")
        if message:
            return str(message)
        nested = value.get("error")
        if isinstance(nested, dict):
            return error_message(nested)
        return json.dumps(value)
    if value:
        return str(value)
    return None
