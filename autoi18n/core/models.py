"""
Core data models for the batch translation engine.

A batch is planned as a set of ``BatchRequestRecord`` rows (one translation
unit times one target locale), persisted as a ``BatchManifest`` and, once the
provider has finished, turned into ``ProcessedTranslation`` rows.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, model_validator

from autoi18n.core.errors import BatchStateError
from autoi18n.core.utils import utc_now


# =============================================================================
# Enums
# =============================================================================


class BatchProvider(str, Enum):
    """Batch-capable translation providers."""

    OPENAI = "openai"  # JSONL container, file download results
    ANTHROPIC = "anthropic"  # JSON array container, streamed results
    MOCK = "mock"  # Deterministic local stand-in


class TranslationType(str, Enum):
    """Kind of uploaded source a unit comes from."""

    CONTENT = "content"  # Markdown documents
    GLOBAL = "global"  # Site-wide JSON strings
    PAGE = "page"  # Per-page JSON strings

    @property
    def request_format(self) -> RequestFormat:
        if self is TranslationType.CONTENT:
            return RequestFormat.MARKDOWN
        return RequestFormat.JSON


class RequestFormat(str, Enum):
    """Payload format of a translation request."""

    MARKDOWN = "markdown"
    JSON = "json"


class BatchStatus(str, Enum):
    """Lifecycle status of a batch manifest."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self not in (BatchStatus.DRAFT, BatchStatus.SUBMITTED)

    @property
    def rank(self) -> int:
        """Position in the forward-only lifecycle."""
        if self is BatchStatus.DRAFT:
            return 0
        if self is BatchStatus.SUBMITTED:
            return 1
        return 2


class BatchMode(str, Enum):
    """Whether a batch translates whole files or computed deltas."""

    FULL = "full"
    DELTA = "delta"


class TranslationStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


ALL_TYPES: list[TranslationType] = [
    TranslationType.CONTENT,
    TranslationType.GLOBAL,
    TranslationType.PAGE,
]


# =============================================================================
# Source files and request records
# =============================================================================


class BatchSourceFile(BaseModel):
    """A translatable file found in the uploads tree."""

    type: TranslationType
    format: RequestFormat
    relative_path: str
    file_name: str
    folder_path: str | None = None
    file_path: str = ""  # Storage location, for diagnostics only
    size: int = 0


class BatchRequestRecord(BaseModel):
    """One translation unit for one target locale."""

    custom_id: str
    type: TranslationType
    format: RequestFormat
    relative_path: str
    source_locale: str
    target_locale: str
    folder_path: str | None = None
    file_name: str
    size: int = 0

    @property
    def unit_key(self) -> str:
        """Locale-independent key of the underlying source unit."""
        return unit_key(self.type, self.relative_path)


def unit_key(file_type: TranslationType | str, relative_path: str) -> str:
    type_value = file_type.value if isinstance(file_type, TranslationType) else file_type
    return f"{type_value}:{relative_path}"


# =============================================================================
# Provider metadata blocks
# =============================================================================


class RemoteBatchMetadata(BaseModel):
    """What the provider told us about the remote batch."""

    batch_id: str
    status: str
    submission_timestamp: datetime = Field(default_factory=utc_now)


class OpenAIBatchMetadata(RemoteBatchMetadata):
    kind: Literal["openai"] = "openai"
    input_file_id: str
    endpoint: str = "/v1/chat/completions"
    output_file_id: str | None = None
    error_file_id: str | None = None

    @property
    def results_location(self) -> str | None:
        return self.output_file_id


class AnthropicBatchMetadata(RemoteBatchMetadata):
    kind: Literal["anthropic"] = "anthropic"
    processing_status: str | None = None
    results_url: str | None = None

    @property
    def results_location(self) -> str | None:
        return self.results_url


class MockBatchMetadata(RemoteBatchMetadata):
    kind: Literal["mock"] = "mock"
    output_artifact: str | None = None
    error_artifact: str | None = None

    @property
    def results_location(self) -> str | None:
        return self.output_artifact


RemoteMetadata = Annotated[
    Union[OpenAIBatchMetadata, AnthropicBatchMetadata, MockBatchMetadata],
    Field(discriminator="kind"),
]


# =============================================================================
# Manifest
# =============================================================================


class BatchManifest(BaseModel):
    """
    The plan and live state of one batch.

    The manifest is the single source of truth for a batch. It is rewritten
    wholesale on every lifecycle transition and its status only moves
    forward: draft -> submitted -> terminal.
    """

    batch_id: str
    sender_id: str
    provider: BatchProvider
    mode: BatchMode = BatchMode.FULL

    types: list[TranslationType] = Field(default_factory=list)
    source_locale: str
    target_locales: list[str] = Field(default_factory=list)
    model: str

    total_requests: int
    files: list[BatchRequestRecord] = Field(default_factory=list)
    input_artifact: str

    status: BatchStatus = BatchStatus.DRAFT
    retry_of: str | None = None  # Original batch id for retry batches

    remote: RemoteMetadata | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_plan(self) -> BatchManifest:
        if len(self.files) != self.total_requests:
            raise ValueError(
                f"Manifest {self.batch_id} lists {len(self.files)} files "
                f"but {self.total_requests} requests"
            )
        custom_ids = [record.custom_id for record in self.files]
        if len(set(custom_ids)) != len(custom_ids):
            raise ValueError(f"Manifest {self.batch_id} has duplicate custom ids")
        return self

    @property
    def remote_batch_id(self) -> str | None:
        return self.remote.batch_id if self.remote else None

    @property
    def remote_status(self) -> str | None:
        return self.remote.status if self.remote else None

    def record_for(self, custom_id: str) -> BatchRequestRecord | None:
        for record in self.files:
            if record.custom_id == custom_id:
                return record
        return None

    def records_by_id(self) -> dict[str, BatchRequestRecord]:
        return {record.custom_id: record for record in self.files}

    def touch(self) -> None:
        self.updated_at = utc_now()

    def advance(self, status: BatchStatus) -> bool:
        """
        Move the manifest forward to ``status``.

        Returns False when the manifest is already there. Raises
        ``BatchStateError`` for any backward or sideways move.
        """
        if status == self.status:
            return False
        if status.rank <= self.status.rank:
            raise BatchStateError(
                f"Batch {self.batch_id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        self.touch()
        return True


# =============================================================================
# Processed output
# =============================================================================


class ProcessedTranslation(BaseModel):
    """One result row after output processing."""

    custom_id: str
    target_locale: str
    type: TranslationType | None = None
    format: RequestFormat | None = None
    relative_path: str = ""
    folder_path: str | None = None
    file_name: str = ""
    source_locale: str | None = None
    translated_content: str = ""
    status: TranslationStatus
    error_message: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status == TranslationStatus.SUCCESS

    @classmethod
    def success(cls, record: BatchRequestRecord, content: str) -> ProcessedTranslation:
        return cls(
            **_record_fields(record),
            translated_content=content,
            status=TranslationStatus.SUCCESS,
        )

    @classmethod
    def failure(cls, record: BatchRequestRecord, message: str) -> ProcessedTranslation:
        return cls(
            **_record_fields(record),
            status=TranslationStatus.ERROR,
            error_message=message,
        )


def _record_fields(record: BatchRequestRecord) -> dict[str, Any]:
    return {
        "custom_id": record.custom_id,
        "target_locale": record.target_locale,
        "type": record.type,
        "format": record.format,
        "relative_path": record.relative_path,
        "folder_path": record.folder_path,
        "file_name": record.file_name,
        "source_locale": record.source_locale,
    }


# =============================================================================
# Operation options and results
# =============================================================================


class CreateBatchOptions(BaseModel):
    sender_id: str
    source_locale: str
    target_locales: list[str] | Literal["all"] | None = None
    include_files: list[str] | Literal["all"] | None = None
    types: list[TranslationType] | Literal["all"] | None = None
    provider: BatchProvider | None = None
    model: str | None = None


class ChangedFile(BaseModel):
    """Two versions of one source file, fed to the delta engine."""

    type: TranslationType
    relative_path: str
    previous: str
    current: str


class CreateDeltaBatchOptions(BaseModel):
    sender_id: str
    source_locale: str
    changes: list[ChangedFile]
    target_locales: list[str] | Literal["all"] | None = None
    provider: BatchProvider | None = None
    model: str | None = None


class CreateBatchResult(BaseModel):
    batch_id: str
    request_count: int
    manifest: BatchManifest
    input_artifact_path: str
    provider: BatchProvider


class SubmitBatchResult(BaseModel):
    batch_id: str
    provider_batch_id: str
    provider_status: str
    provider: BatchProvider


class BatchRequestCounts(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0
    processing: int | None = None
    cancelled: int | None = None
    expired: int | None = None


class CheckBatchStatusResult(BaseModel):
    batch_id: str
    provider_batch_id: str
    status: str  # Raw remote status
    manifest_status: BatchStatus
    provider: BatchProvider
    request_counts: BatchRequestCounts | None = None
    results_location: str | None = None
    error_location: str | None = None


class CreateRetryBatchResult(BaseModel):
    batch_id: str
    request_count: int
    failed_request_count: int
    manifest: BatchManifest
    input_artifact_path: str


class ProcessCompletedBatchResult(BaseModel):
    batch_id: str
    provider: BatchProvider
    translations: list[ProcessedTranslation] = Field(default_factory=list)
    success_count: int = 0
    error_count: int = 0
    missing_custom_ids: list[str] = Field(default_factory=list)
    saved_paths: list[str] = Field(default_factory=list)
