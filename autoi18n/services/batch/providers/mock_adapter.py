"""
Mock batch adapter.

Stands in for a real provider in development and tests. It speaks the
OpenAI JSONL wire format, "translates" by tagging text with the target
locale, and never calls out. Submission writes the result artifacts right
away; the first status check then reports the batch as completed, so the
poller and output processing run exactly as they do for a real provider.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from autoi18n.config import Settings
from autoi18n.core.errors import BatchStateError, UnsupportedOperationError
from autoi18n.core.models import (
    BatchManifest,
    BatchMode,
    BatchProvider,
    BatchRequestCounts,
    BatchStatus,
    CheckBatchStatusResult,
    CreateBatchOptions,
    CreateBatchResult,
    MockBatchMetadata,
    ProcessedTranslation,
    SubmitBatchResult,
    TranslationType,
)
from autoi18n.resources.prompt_template import PromptTemplate
from autoi18n.services.batch.builders import BuiltRequest, OpenAIRequestBuilder
from autoi18n.services.batch.manifest import ManifestStore
from autoi18n.services.batch.planner import new_batch_id, plan_batch, stage_batch
from autoi18n.services.batch.providers.base import (
    advance_unless_finished,
    as_dict,
    ensure_submittable,
    read_input_container,
    require_remote,
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
MOCK_MODEL = "mock-translator"

_JSON_PAYLOAD = re.compile(r"Input JSON:\n(.*?)\n\n", re.DOTALL)
_MARKDOWN_PREFIX = re.compile(r"^(\s*(?:#{1,6}\s+|[-*+]\s+|>\s*|\d+\.\s+)?)(.*)$")
_FRONT_MATTER_FIELD = re.compile(r"^(\s*[\w-]+:\s*)(.+)$")


def output_file_name(remote_batch_id: str) -> str:
    return f"{remote_batch_id}_output.jsonl"


def error_file_name(remote_batch_id: str) -> str:
    return f"{remote_batch_id}_error.jsonl"


# =============================================================================
# Deterministic "translation"
# =============================================================================


def mock_translate_text(text: str, target_locale: str) -> str:
    if not text.strip():
        return text
    return f"[{target_locale}] {text}"


def mock_translate_json(value: Any, target_locale: str) -> Any:
    if isinstance(value, str):
        return mock_translate_text(value, target_locale)
    if isinstance(value, dict):
        return {k: mock_translate_json(v, target_locale) for k, v in value.items()}
    if isinstance(value, list):
        return [mock_translate_json(v, target_locale) for v in value]
    return value


def mock_translate_markdown(document: str, target_locale: str) -> str:
    """Tag text lines, leaving front matter keys, fences and code untouched."""
    lines = document.split("\n")
    translated: list[str] = []
    in_code = False
    in_front_matter = bool(lines) and lines[0].strip() == "---"

    for index, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("```"):
            in_code = not in_code
            translated.append(line)
            continue
        if stripped == "---":
            if index > 0 and in_front_matter:
                in_front_matter = False
            translated.append(line)
            continue
        if in_code or not stripped:
            translated.append(line)
            continue
        if in_front_matter:
            field = _FRONT_MATTER_FIELD.match(line)
            translated.append(
                f"{field.group(1)}{mock_translate_text(field.group(2), target_locale)}"
                if field else line
            )
            continue
        match = _MARKDOWN_PREFIX.match(line)
        translated.append(f"{match.group(1)}{mock_translate_text(match.group(2), target_locale)}")

    return "\n".join(translated)


def _user_message(request: dict[str, Any]) -> str:
    for message in as_dict(request.get("body")).get("messages", []):
        if message.get("role") == "user":
            return message.get("content", "")
    return ""


def mock_completion(request: dict[str, Any], target_locale: str) -> str | None:
    """Answer one request the way a well behaved model would, or None if unreadable."""
    body = as_dict(request.get("body"))
    user = _user_message(request)

    if body.get("response_format", {}).get("type") == "json_object":
        match = _JSON_PAYLOAD.search(user)
        if not match:
            return None
        try:
            payload = json.loads(match.group(1))
        except json.JSONDecodeError:
            return None
        return json.dumps(
            {"translation": mock_translate_json(payload, target_locale)},
            ensure_ascii=False,
        )

    if "\n\n---\n" not in user or "\n---\n\n" not in user:
        return None
    document = user.split("\n\n---\n", 1)[1].rsplit("\n---\n\n", 1)[0]
    return mock_translate_markdown(document, target_locale)


# =============================================================================
# Adapter
# =============================================================================


class MockBatchAdapter:
    """Deterministic, offline batch adapter."""

    provider = BatchProvider.MOCK
    input_artifact = INPUT_ARTIFACT
    supports_cancel = False

    def __init__(
        self,
        settings: Settings,
        files: FileStorage,
        manifests: ManifestStore,
        prompts: PromptTemplate,
        fail_custom_ids: set[str] | None = None,
    ):
        self.settings = settings
        self.files = files
        self.manifests = manifests
        self.prompts = prompts
        # Requests listed here land in the error artifact instead of the output
        self.fail_custom_ids = set(fail_custom_ids or ())

    @property
    def model(self) -> str:
        return MOCK_MODEL

    def request_builder(self, model: str | None = None) -> OpenAIRequestBuilder:
        return OpenAIRequestBuilder(self.prompts, model or self.model)

    def encode_container(self, requests: list[dict[str, Any]]) -> str:
        return encode_jsonl(requests)

    def decode_container(self, text: str) -> list[dict[str, Any]]:
        return parse_jsonl(text, INPUT_ARTIFACT)

    def with_model(self, request: dict[str, Any], model: str) -> dict[str, Any]:
        return {**request, "body": {**request.get("body", {}), "model": model}}

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

    async def submit_batch(
        self,
        sender_id: str,
        batch_id: str,
        metadata: dict[str, str] | None = None,
    ) -> SubmitBatchResult:
        async with self.manifests.update(sender_id, batch_id) as manifest:
            ensure_submittable(manifest)
            requests = self.decode_container(await read_input_container(self.manifests, manifest))

            remote_id = f"mock_{manifest.batch_id}"
            output_rows, error_rows = self._results(manifest, requests)

            output_name = output_file_name(remote_id)
            await self.manifests.write_artifact(sender_id, batch_id, output_name, encode_jsonl(output_rows))
            error_name = None
            if error_rows:
                error_name = error_file_name(remote_id)
                await self.manifests.write_artifact(sender_id, batch_id, error_name, encode_jsonl(error_rows))

            manifest.remote = MockBatchMetadata(
                batch_id=remote_id,
                status="in_progress",
                output_artifact=output_name,
                error_artifact=error_name,
            )
            manifest.advance(BatchStatus.SUBMITTED)

        logger.info(
            f"Mock batch {batch_id} answered {len(output_rows)} requests, failed {len(error_rows)}"
        )
        return SubmitBatchResult(
            batch_id=batch_id,
            provider_batch_id=remote_id,
            provider_status="in_progress",
            provider=self.provider,
        )

    def _results(
        self,
        manifest: BatchManifest,
        requests: list[dict[str, Any]],
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        records = manifest.records_by_id()
        output_rows: list[dict[str, Any]] = []
        error_rows: list[dict[str, Any]] = []

        for index, request in enumerate(requests):
            custom_id = request.get("custom_id", "")
            record = records.get(custom_id)
            content = mock_completion(request, record.target_locale) if record else None
            row_id = f"mock_req_{index:05d}"

            if custom_id in self.fail_custom_ids or content is None:
                error_rows.append({
                    "id": row_id,
                    "custom_id": custom_id,
                    "response": {
                        "status_code": 500,
                        "body": {"error": {"message": "Mock provider failure", "type": "server_error"}},
                    },
                    "error": None,
                })
                continue

            output_rows.append({
                "id": row_id,
                "custom_id": custom_id,
                "response": {
                    "status_code": 200,
                    "body": {
                        "object": "chat.completion",
                        "model": as_dict(request.get("body")).get("model", MOCK_MODEL),
                        "choices": [{
                            "index": 0,
                            "message": {"role": "assistant", "content": content},
                            "finish_reason": "stop",
                        }],
                    },
                },
                "error": None,
            })

        return output_rows, error_rows

    async def check_status(self, sender_id: str, batch_id: str) -> CheckBatchStatusResult:
        async with self.manifests.update(sender_id, batch_id) as manifest:
            remote = require_remote(manifest, MockBatchMetadata)
            remote.status = "completed"
            advance_unless_finished(manifest, BatchStatus.COMPLETED)

        failed = 0
        if remote.error_artifact:
            text = await self.manifests.read_artifact(sender_id, batch_id, remote.error_artifact)
            failed = len(parse_jsonl(text, remote.error_artifact))

        return CheckBatchStatusResult(
            batch_id=batch_id,
            provider_batch_id=remote.batch_id,
            status=remote.status,
            manifest_status=manifest.status,
            provider=self.provider,
            request_counts=BatchRequestCounts(
                total=manifest.total_requests,
                completed=manifest.total_requests - failed,
                failed=failed,
            ),
            results_location=remote.output_artifact,
            error_location=remote.error_artifact,
        )

    async def cancel_batch(self, sender_id: str, batch_id: str) -> CheckBatchStatusResult:
        raise UnsupportedOperationError("Mock batches complete immediately and cannot be cancelled")

    def is_remote_terminal(self, remote_status: str | None) -> bool:
        return remote_status == "completed"

    def error_artifact_name(self, manifest: BatchManifest) -> str | None:
        if manifest.remote is None:
            return None
        return error_file_name(manifest.remote.batch_id)

    def failed_custom_ids(self, artifact_text: str) -> set[str]:
        return failed_custom_ids(artifact_text)

    async def process_output(self, manifest: BatchManifest) -> list[ProcessedTranslation]:
        remote = require_remote(manifest, MockBatchMetadata)
        artifacts: list[tuple[str, str]] = []
        for name in (remote.output_artifact, remote.error_artifact):
            if name and await self.manifests.artifact_exists(manifest.sender_id, manifest.batch_id, name):
                artifacts.append(
                    (name, await self.manifests.read_artifact(manifest.sender_id, manifest.batch_id, name))
                )
        if not artifacts:
            raise BatchStateError(f"Batch {manifest.batch_id} has no results yet")
        return process_openai_output(manifest, artifacts)
