"""
Batch translation service.

The one object callers (the HTTP layer, the poller, scripts) talk to. It
owns the adapters for every provider, picks the right one for each call
and adds what no single adapter knows about: events, the session hook,
delta merging and writing translations to storage.

Adapters are built lazily from a provider lookup table and memoized on the
service instance, so tests construct isolated services instead of
resetting module state.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from autoi18n.config import Settings
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
    batch_event,
)
from autoi18n.core.models import (
    ALL_TYPES,
    BatchManifest,
    BatchMode,
    BatchProvider,
    CheckBatchStatusResult,
    CreateBatchOptions,
    CreateBatchResult,
    CreateDeltaBatchOptions,
    CreateRetryBatchResult,
    ProcessCompletedBatchResult,
    ProcessedTranslation,
    SubmitBatchResult,
    TranslationStatus,
    unit_key,
)
from autoi18n.resources.prompt_template import PromptTemplate, load_translation_prompts
from autoi18n.services.batch import retry
from autoi18n.services.batch.builders import build_requests
from autoi18n.services.batch.collector import resolve_target_locales
from autoi18n.services.batch.delta import (
    DELTA_ARTIFACT,
    DeltaSet,
    apply_translated_delta,
    build_delta_units,
)
from autoi18n.services.batch.manifest import ManifestStore
from autoi18n.services.batch.planner import provider_from_batch_id
from autoi18n.services.batch.providers.anthropic_adapter import AnthropicBatchAdapter
from autoi18n.services.batch.providers.base import BatchAdapter
from autoi18n.services.batch.providers.mock_adapter import MockBatchAdapter
from autoi18n.services.batch.providers.openai_adapter import OpenAIBatchAdapter
from autoi18n.services.batch.writer import TranslationWriter, translated_relative_path
from autoi18n.storage.base import Categories, StorageProvider

logger = logging.getLogger(__name__)

# Called once when a batch reaches a terminal status
SessionHook = Callable[[BatchManifest], Awaitable[None]]


class ProviderAvailability(BaseModel):
    available: bool
    providers: list[BatchProvider] = Field(default_factory=list)


# =============================================================================
# Adapter lookup table
# =============================================================================


def _openai_adapter(service: BatchService) -> BatchAdapter:
    return OpenAIBatchAdapter(
        service.settings,
        service.storage.files,
        service.manifests,
        service.prompts,
        client=service.openai_client,
    )


def _anthropic_adapter(service: BatchService) -> BatchAdapter:
    return AnthropicBatchAdapter(
        service.settings,
        service.storage.files,
        service.manifests,
        service.prompts,
        client=service.anthropic_client,
    )


def _mock_adapter(service: BatchService) -> BatchAdapter:
    return MockBatchAdapter(
        service.settings,
        service.storage.files,
        service.manifests,
        service.prompts,
    )


ADAPTER_FACTORIES: dict[BatchProvider, Callable[[BatchService], BatchAdapter]] = {
    BatchProvider.OPENAI: _openai_adapter,
    BatchProvider.ANTHROPIC: _anthropic_adapter,
    BatchProvider.MOCK: _mock_adapter,
}


# =============================================================================
# Service
# =============================================================================


class BatchService:
    """
    Batch translation operations across every provider.

    Construct one per process at the composition root and share it.

    Args:
        settings: Application settings
        storage: File and artifact storage
        prompts: Prompt template; loaded from the packaged YAML if omitted
        openai_client: Client handed to the OpenAI adapter (tests inject fakes)
        anthropic_client: Client handed to the Anthropic adapter
        adapters: Prebuilt adapters that replace the lookup table entries
        event_bus: Receives best effort lifecycle events
        session_hook: Called when a batch reaches a terminal status
    """

    def __init__(
        self,
        settings: Settings,
        storage: StorageProvider,
        prompts: PromptTemplate | None = None,
        *,
        openai_client: AsyncOpenAI | None = None,
        anthropic_client: AsyncAnthropic | None = None,
        adapters: dict[BatchProvider, BatchAdapter] | None = None,
        event_bus: EventBus | None = None,
        session_hook: SessionHook | None = None,
    ):
        self.settings = settings
        self.storage = storage
        self.prompts = prompts or load_translation_prompts()
        self.manifests = ManifestStore(storage.artifacts)
        self.writer = TranslationWriter(storage.files)
        self.openai_client = openai_client
        self.anthropic_client = anthropic_client
        self.event_bus = event_bus or EventBus()
        self.session_hook = session_hook
        self._adapters: dict[BatchProvider, BatchAdapter] = dict(adapters or {})

    # =========================================================================
    # Provider selection
    # =========================================================================

    def adapter(self, provider: BatchProvider) -> BatchAdapter:
        if provider not in self._adapters:
            self._adapters[provider] = ADAPTER_FACTORIES[provider](self)
        return self._adapters[provider]

    def available_providers(self) -> list[BatchProvider]:
        providers: list[BatchProvider] = []
        if self.settings.has_openai or self.openai_client is not None:
            providers.append(BatchProvider.OPENAI)
        if self.settings.has_anthropic or self.anthropic_client is not None:
            providers.append(BatchProvider.ANTHROPIC)
        if self.settings.is_mock_mode:
            providers.append(BatchProvider.MOCK)
        for provider in self._adapters:
            if provider not in providers:
                providers.append(provider)
        return providers

    def is_batch_processing_available(self) -> ProviderAvailability:
        providers = self.available_providers()
        return ProviderAvailability(available=bool(providers), providers=providers)

    def resolve_provider(self, explicit: BatchProvider | str | None = None) -> BatchProvider:
        """
        Pick the provider for a new batch.

        Mock mode wins over everything. Then an explicit choice, then the
        configured TRANSLATION_PROVIDER, then whichever credentials exist.
        """
        if self.settings.is_mock_mode:
            return BatchProvider.MOCK
        if explicit:
            return BatchProvider(explicit)

        configured = self.settings.translation_provider.strip().lower()
        if configured:
            try:
                return BatchProvider(configured)
            except ValueError:
                raise ConfigurationError(f"Unknown translation provider: {configured}") from None

        available = self.available_providers()
        if available:
            return available[0]
        raise ConfigurationError(
            "No batch translation provider is configured. "
            "Set OPENAI_API_KEY or ANTHROPIC_API_KEY, or enable MOCK_TRANSLATIONS"
        )

    async def provider_for_batch(self, sender_id: str, batch_id: str) -> BatchProvider:
        """Provider of an existing batch, from its manifest or its id."""
        try:
            return (await self.manifests.load(sender_id, batch_id)).provider
        except BatchNotFoundError:
            inferred = provider_from_batch_id(batch_id)
            if inferred is None:
                raise
            return inferred

    async def _adapter_for_batch(self, sender_id: str, batch_id: str) -> BatchAdapter:
        return self.adapter(await self.provider_for_batch(sender_id, batch_id))

    # =========================================================================
    # Create
    # =========================================================================

    async def create_batch(self, options: CreateBatchOptions) -> CreateBatchResult:
        provider = self.resolve_provider(options.provider)
        result = await self.adapter(provider).create_batch(options)
        await self._publish(
            BATCH_CREATED,
            result.manifest,
            request_count=result.request_count,
        )
        return result

    async def create_delta_batch(self, options: CreateDeltaBatchOptions) -> CreateBatchResult:
        """Create a draft batch that only translates what changed in each file."""
        provider = self.resolve_provider(options.provider)
        adapter = self.adapter(provider)

        target_locales = resolve_target_locales(
            options.source_locale, options.target_locales, self.settings.supported_locale_codes
        )
        units, delta_set = build_delta_units(options.changes)
        if not units:
            raise BatchValidationError("No translatable changes were found")

        builder = adapter.request_builder(options.model)
        requests = build_requests(
            builder,
            units,
            sender_id=options.sender_id,
            source_locale=options.source_locale,
            target_locales=target_locales,
        )
        present = {r.record.type for r in requests}

        result = await adapter.stage_requests(
            sender_id=options.sender_id,
            source_locale=options.source_locale,
            target_locales=target_locales,
            types=[t for t in ALL_TYPES if t in present],
            requests=requests,
            model=builder.model,
            mode=BatchMode.DELTA,
        )
        await self.manifests.write_artifact(
            options.sender_id, result.batch_id, DELTA_ARTIFACT, delta_set.model_dump_json(indent=2)
        )

        logger.info(
            f"Delta batch {result.batch_id} covers {len(units)} changed files "
            f"in {len(target_locales)} locales"
        )
        await self._publish(
            BATCH_CREATED,
            result.manifest,
            request_count=result.request_count,
            mode=BatchMode.DELTA.value,
        )
        return result

    async def create_retry_batch(
        self,
        sender_id: str,
        original_batch_id: str,
        error_artifact_name: str | None = None,
        model: str | None = None,
    ) -> CreateRetryBatchResult:
        """Draft batch re-sending the failed requests of another batch."""
        original = await self.manifests.load(sender_id, original_batch_id)
        adapter = self.adapter(original.provider)

        name = error_artifact_name or adapter.error_artifact_name(original)
        if not name:
            raise BatchValidationError(
                f"Batch {original_batch_id} has no error artifact; it was never submitted"
            )

        result = await retry.create_retry_batch(
            adapter, self.manifests, sender_id, original_batch_id, name, model
        )
        await self._publish(
            BATCH_CREATED,
            result.manifest,
            request_count=result.request_count,
            retry_of=original_batch_id,
        )
        return result

    # =========================================================================
    # Submit, status, cancel
    # =========================================================================

    async def submit_batch(
        self,
        sender_id: str,
        batch_id: str,
        metadata: dict[str, str] | None = None,
    ) -> SubmitBatchResult:
        adapter = await self._adapter_for_batch(sender_id, batch_id)
        result = await adapter.submit_batch(sender_id, batch_id, metadata)
        await self.event_bus.publish(
            batch_event(
                BATCH_SUBMITTED,
                sender_id,
                batch_id,
                provider=result.provider.value,
                provider_batch_id=result.provider_batch_id,
                provider_status=result.provider_status,
            )
        )
        return result

    async def check_batch_status(self, sender_id: str, batch_id: str) -> CheckBatchStatusResult:
        """
        Ask the provider where a batch stands and record the answer.

        Provider errors propagate to the caller; the manifest is left as it
        was so the next check starts from the same state.
        """
        before = await self.manifests.load(sender_id, batch_id)
        result = await self.adapter(before.provider).check_status(sender_id, batch_id)
        await self._after_transition(before, result)
        return result

    async def cancel_batch(self, sender_id: str, batch_id: str) -> CheckBatchStatusResult:
        before = await self.manifests.load(sender_id, batch_id)
        adapter = self.adapter(before.provider)
        if not adapter.supports_cancel:
            raise UnsupportedOperationError(
                f"{before.provider.value} batches cannot be cancelled"
            )
        result = await adapter.cancel_batch(sender_id, batch_id)
        await self._after_transition(before, result)
        return result

    async def _after_transition(self, before: BatchManifest, result: CheckBatchStatusResult) -> None:
        if result.status != before.remote_status or result.manifest_status != before.status:
            await self._publish(
                BATCH_STATUS_CHANGED,
                before,
                previous_status=before.remote_status,
                status=result.status,
                manifest_status=result.manifest_status.value,
            )

        if result.manifest_status.is_terminal and not before.status.is_terminal:
            manifest = await self.manifests.load(before.sender_id, before.batch_id)
            await self._run_session_hook(manifest)
            await self._publish(
                BATCH_TERMINAL,
                manifest,
                manifest_status=manifest.status.value,
            )

    async def _run_session_hook(self, manifest: BatchManifest) -> None:
        if self.session_hook is None:
            return
        try:
            await self.session_hook(manifest)
        except Exception as e:
            # The batch itself already finished
            logger.error(f"Session hook failed for batch {manifest.batch_id}: {e}")

    # =========================================================================
    # Output
    # =========================================================================

    async def process_completed_batch(
        self,
        sender_id: str,
        batch_id: str,
        save: bool = False,
    ) -> ProcessCompletedBatchResult:
        """
        Turn a finished batch's results into translations.

        Every manifest record ends up either as a row in ``translations`` or
        in ``missing_custom_ids``. With ``save`` set, successful rows are
        also written to the translations tree.
        """
        manifest = await self.manifests.load(sender_id, batch_id)
        translations = await self.adapter(manifest.provider).process_output(manifest)

        if manifest.mode == BatchMode.DELTA:
            translations = await self._merge_deltas(manifest, translations)

        seen = {t.custom_id for t in translations}
        missing = [r.custom_id for r in manifest.files if r.custom_id not in seen]
        if missing:
            logger.warning(f"Batch {batch_id} has no result for {len(missing)} requests")

        saved_paths: list[str] = []
        if save:
            summary = await self.writer.save_all(sender_id, translations)
            saved_paths = summary.saved_paths
            translations = [
                _as_error(t, f"Failed to write translation: {summary.failures[t.custom_id]}")
                if t.custom_id in summary.failures else t
                for t in translations
            ]

        success_count = sum(1 for t in translations if t.is_success)
        logger.info(
            f"Processed batch {batch_id}: {success_count} succeeded, "
            f"{len(translations) - success_count} failed, {len(missing)} missing"
        )
        return ProcessCompletedBatchResult(
            batch_id=batch_id,
            provider=manifest.provider,
            translations=translations,
            success_count=success_count,
            error_count=len(translations) - success_count,
            missing_custom_ids=missing,
            saved_paths=saved_paths,
        )

    async def _merge_deltas(
        self,
        manifest: BatchManifest,
        translations: list[ProcessedTranslation],
    ) -> list[ProcessedTranslation]:
        """Replace each translated fragment with the full merged document."""
        delta_text = await self.manifests.read_artifact(
            manifest.sender_id, manifest.batch_id, DELTA_ARTIFACT
        )
        delta_set = DeltaSet.model_validate_json(delta_text)

        merged: list[ProcessedTranslation] = []
        for translation in translations:
            if not translation.is_success or translation.type is None:
                merged.append(translation)
                continue

            delta = delta_set.deltas.get(unit_key(translation.type, translation.relative_path))
            if delta is None:
                merged.append(_as_error(translation, "No delta recorded for this file"))
                continue

            previous_path = translated_relative_path(
                translation.relative_path,
                translation.format,
                translation.source_locale,
                translation.target_locale,
            )
            try:
                previous = await self.storage.files.read(
                    manifest.sender_id,
                    translation.target_locale,
                    translation.type,
                    previous_path,
                    Categories.TRANSLATIONS,
                )
            except FileNotFoundError:
                merged.append(_as_error(translation, "Original file not found"))
                continue

            try:
                content = apply_translated_delta(previous, translation.translated_content, delta)
            except ValueError as e:
                merged.append(_as_error(translation, f"Failed to merge delta: {e}"))
                continue
            merged.append(translation.model_copy(update={"translated_content": content}))

        return merged

    # =========================================================================
    # Events
    # =========================================================================

    async def _publish(self, event_type: str, manifest: BatchManifest, **payload: Any) -> None:
        await self.event_bus.publish(
            batch_event(
                event_type,
                manifest.sender_id,
                manifest.batch_id,
                provider=manifest.provider.value,
                **payload,
            )
        )


def _as_error(translation: ProcessedTranslation, message: str) -> ProcessedTranslation:
    return translation.model_copy(
        update={
            "status": TranslationStatus.ERROR,
            "error_message": message,
            "translated_content": "",
        }
    )
