"""
Batch planning and staging.

Planning turns the caller's options into built requests (collect, filter,
read, build). Staging writes a request container and a draft manifest.
Every adapter shares these steps and only supplies its request builder and
wire container.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass

from autoi18n.core.errors import BatchValidationError
from autoi18n.core.models import (
    BatchManifest,
    BatchMode,
    BatchProvider,
    BatchRequestRecord,
    BatchSourceFile,
    CreateBatchOptions,
    CreateBatchResult,
    RequestFormat,
    TranslationType,
)
from autoi18n.core.utils import sanitize_segment
from autoi18n.services.batch.builders import (
    BuiltRequest,
    RequestBuilder,
    TranslationUnit,
    UnitKind,
    build_requests,
)
from autoi18n.services.batch.collector import (
    collect_sources,
    requested_types,
    resolve_target_locales,
    should_include_file,
)
from autoi18n.services.batch.manifest import ManifestStore
from autoi18n.storage.base import Categories, FileStorage

logger = logging.getLogger(__name__)

BATCH_ID_PREFIXES: dict[BatchProvider, str] = {
    BatchProvider.OPENAI: "batch",
    BatchProvider.ANTHROPIC: "batch_anthropic",
    BatchProvider.MOCK: "mock_batch",
}


@dataclass
class BatchPlan:
    target_locales: list[str]
    types: list[TranslationType]
    requests: list[BuiltRequest]

    @property
    def records(self) -> list[BatchRequestRecord]:
        return [r.record for r in self.requests]


def new_batch_id(provider: BatchProvider, source_locale: str) -> str:
    """Batch id like ``batch_en_1718000000000_1a2b3c4d``."""
    millis = int(time.time() * 1000)
    return (
        f"{BATCH_ID_PREFIXES[provider]}_{sanitize_segment(source_locale)}"
        f"_{millis}_{uuid.uuid4().hex[:8]}"
    )


def provider_from_batch_id(batch_id: str) -> BatchProvider | None:
    if batch_id.startswith("batch_anthropic_"):
        return BatchProvider.ANTHROPIC
    if batch_id.startswith("mock_batch_"):
        return BatchProvider.MOCK
    if batch_id.startswith("batch_"):
        return BatchProvider.OPENAI
    return None


# =============================================================================
# Planning
# =============================================================================


async def load_units(
    files: FileStorage,
    sender_id: str,
    source_locale: str,
    sources: list[BatchSourceFile],
) -> list[TranslationUnit]:
    """Read every source; JSON that does not parse is skipped and logged."""
    units: list[TranslationUnit] = []
    for source in sources:
        text = await files.read(
            sender_id, source_locale, source.type, source.relative_path, Categories.UPLOADS
        )
        if source.format == RequestFormat.MARKDOWN:
            units.append(TranslationUnit(source=source, kind=UnitKind.MARKDOWN, payload=text))
            continue
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping invalid JSON source {source.type.value}/{source.relative_path}: {e}")
            continue
        units.append(TranslationUnit(source=source, kind=UnitKind.JSON, payload=data))
    return units


async def plan_batch(
    files: FileStorage,
    options: CreateBatchOptions,
    builder: RequestBuilder,
    supported_locales: list[str],
) -> BatchPlan:
    """Collect, filter, read and build the requests for a full batch."""
    target_locales = resolve_target_locales(
        options.source_locale, options.target_locales, supported_locales
    )
    types = requested_types(options.types)

    sources = await collect_sources(files, options.sender_id, options.source_locale, types)
    included = [
        s for s in sources if should_include_file(s.type, s.relative_path, options.include_files)
    ]
    if not included:
        raise BatchValidationError("No matching files were found to include in the batch")

    units = await load_units(files, options.sender_id, options.source_locale, included)
    requests = build_requests(
        builder,
        units,
        sender_id=options.sender_id,
        source_locale=options.source_locale,
        target_locales=target_locales,
    )
    if not requests:
        raise BatchValidationError("Unable to generate any translation requests for the batch")

    present_types = sorted({r.record.type for r in requests}, key=types.index)
    logger.info(
        f"Planned {len(requests)} requests for {options.sender_id}: "
        f"{len(units)} files x {len(target_locales)} locales"
    )
    return BatchPlan(target_locales=target_locales, types=present_types, requests=requests)


def check_request_limit(provider: BatchProvider, count: int, limit: int) -> None:
    if count > limit:
        raise BatchValidationError(
            f"{provider.value} batches accept at most {limit} requests, got {count}"
        )


# =============================================================================
# Staging
# =============================================================================


async def stage_batch(
    manifests: ManifestStore,
    *,
    provider: BatchProvider,
    batch_id: str,
    sender_id: str,
    source_locale: str,
    target_locales: list[str],
    types: list[TranslationType],
    model: str,
    records: list[BatchRequestRecord],
    container: str,
    input_artifact: str,
    mode: BatchMode = BatchMode.FULL,
    retry_of: str | None = None,
) -> CreateBatchResult:
    """Persist the request container and a draft manifest."""
    input_path = await manifests.write_artifact(sender_id, batch_id, input_artifact, container)

    manifest = BatchManifest(
        batch_id=batch_id,
        sender_id=sender_id,
        provider=provider,
        mode=mode,
        types=types,
        source_locale=source_locale,
        target_locales=target_locales,
        model=model,
        total_requests=len(records),
        files=records,
        input_artifact=input_artifact,
        retry_of=retry_of,
    )
    await manifests.save(manifest)

    logger.info(
        f"Created {provider.value} batch {batch_id} for {sender_id} "
        f"with {len(records)} requests"
    )
    return CreateBatchResult(
        batch_id=batch_id,
        request_count=len(records),
        manifest=manifest,
        input_artifact_path=input_path,
        provider=provider,
    )
