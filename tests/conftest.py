"""
Shared fixtures: a temporary data root, settings that ignore the local
environment, and fake async provider clients that never touch the network.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio
from pydantic import BaseModel

from autoi18n.config import Settings
from autoi18n.core.models import TranslationType
from autoi18n.resources.prompt_template import load_translation_prompts
from autoi18n.services.batch.manifest import ManifestStore
from autoi18n.storage import Categories, create_local_storage


SENDER = "sender-1"


# =============================================================================
# Settings and storage
# =============================================================================


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        data_dir=str(tmp_path / "data"),
        supported_locales="en,de,fr,ru",
        translation_provider="",
        mock_translations=False,
        openai_api_key="",
        anthropic_api_key="",
        batch_polling_enabled=False,
    )


@pytest.fixture
def mock_settings(settings):
    """Settings that route every batch to the offline mock adapter."""
    return settings.model_copy(update={"mock_translations": True})


@pytest.fixture
def storage(settings):
    return create_local_storage(settings.data_dir)


@pytest.fixture
def manifests(storage):
    return ManifestStore(storage.artifacts)


@pytest.fixture
def prompts():
    return load_translation_prompts()


async def upload(storage, file_type: TranslationType, relative_path: str, content: str,
                 locale: str = "en", sender_id: str = SENDER) -> None:
    await storage.files.write(
        sender_id, locale, file_type, relative_path, content, Categories.UPLOADS
    )


@pytest_asyncio.fixture
async def uploads(storage):
    """Two markdown documents and one global JSON file in English."""
    await upload(storage, TranslationType.CONTENT, "index.md", "# Welcome\n\nHello there.")
    await upload(
        storage,
        TranslationType.CONTENT,
        "docs/guide.md",
        "---\ntitle: Guide\n---\n\n## Start\n\nRead this first.",
    )
    await upload(
        storage,
        TranslationType.GLOBAL,
        "en.json",
        json.dumps({"nav": {"home": "Home"}, "footer": "All rights reserved"}),
    )
    return storage


# =============================================================================
# Fake OpenAI client
# =============================================================================


class FakeRequestCounts(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0


class FakeOpenAIFile(BaseModel):
    id: str
    object: str = "file"
    purpose: str = "batch"
    filename: str = "input.jsonl"


class FakeOpenAIBatch(BaseModel):
    id: str
    object: str = "batch"
    status: str
    input_file_id: str
    output_file_id: str | None = None
    error_file_id: str | None = None
    request_counts: FakeRequestCounts | None = None


class FakeOpenAIFiles:
    def __init__(self):
        self.uploaded: list[tuple[str, bytes]] = []
        self.contents: dict[str, str] = {}
        self.failing: set[str] = set()
        self.downloads: list[str] = []

    async def create(self, file, purpose):
        name, data = file
        self.uploaded.append((name, data))
        return FakeOpenAIFile(id=f"file-{len(self.uploaded)}", purpose=purpose, filename=name)

    async def content(self, file_id):
        self.downloads.append(file_id)
        if file_id in self.failing:
            raise OSError(f"download of {file_id} failed")
        return SimpleNamespace(text=self.contents[file_id])


class FakeOpenAIBatches:
    def __init__(self):
        self.batches: dict[str, FakeOpenAIBatch] = {}
        self.created: list[dict[str, Any]] = []
        self.retrieve_calls = 0

    async def create(self, input_file_id, endpoint, completion_window, metadata):
        self.created.append({
            "input_file_id": input_file_id,
            "endpoint": endpoint,
            "completion_window": completion_window,
            "metadata": metadata,
        })
        batch = FakeOpenAIBatch(
            id=f"batch_remote_{len(self.created)}",
            status="validating",
            input_file_id=input_file_id,
        )
        self.batches[batch.id] = batch
        return batch

    async def retrieve(self, batch_id):
        self.retrieve_calls += 1
        return self.batches[batch_id]

    async def cancel(self, batch_id):
        batch = self.batches[batch_id]
        batch.status = "cancelling"
        return batch


class FakeOpenAIClient:
    def __init__(self):
        self.files = FakeOpenAIFiles()
        self.batches = FakeOpenAIBatches()

    def finish(self, batch_id: str, output: str | None, error: str | None = None,
               status: str = "completed") -> None:
        """Make the remote batch terminal with the given result files."""
        batch = self.batches.batches[batch_id]
        batch.status = status
        if output is not None:
            batch.output_file_id = f"{batch_id}-output"
            self.files.contents[batch.output_file_id] = output
        if error is not None:
            batch.error_file_id = f"{batch_id}-error"
            self.files.contents[batch.error_file_id] = error
        completed = len((output or "").splitlines())
        failed = len((error or "").splitlines())
        batch.request_counts = FakeRequestCounts(
            total=completed + failed, completed=completed, failed=failed
        )


@pytest.fixture
def openai_client():
    return FakeOpenAIClient()


def openai_row(custom_id: str, content: str | None, status_code: int = 200,
               finish_reason: str = "stop") -> dict[str, Any]:
    if status_code != 200:
        return {
            "id": f"req_{custom_id}",
            "custom_id": custom_id,
            "response": {
                "status_code": status_code,
                "body": {"error": {"message": "Rate limit reached", "type": "rate_limit"}},
            },
            "error": None,
        }
    return {
        "id": f"req_{custom_id}",
        "custom_id": custom_id,
        "response": {
            "status_code": 200,
            "body": {
                "choices": [{
                    "index": 0,
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": finish_reason,
                }],
            },
        },
        "error": None,
    }


def jsonl(rows: list[dict[str, Any]]) -> str:
    return "".join(json.dumps(row) + "\n" for row in rows)


# =============================================================================
# Fake Anthropic client
# =============================================================================


class FakeMessageBatchCounts(BaseModel):
    processing: int = 0
    succeeded: int = 0
    errored: int = 0
    canceled: int = 0
    expired: int = 0


class FakeMessageBatch(BaseModel):
    id: str
    type: str = "message_batch"
    processing_status: str
    results_url: str | None = None
    request_counts: FakeMessageBatchCounts = FakeMessageBatchCounts()


class FakeBatchResult(BaseModel):
    custom_id: str
    result: dict[str, Any]


class FakeResultStream:
    def __init__(self, entries: list[FakeBatchResult]):
        self._entries = list(entries)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for entry in self._entries:
            yield entry


class FakeMessageBatches:
    def __init__(self):
        self.batches: dict[str, FakeMessageBatch] = {}
        self.results_by_batch: dict[str, list[FakeBatchResult]] = {}
        self.failing: set[str] = set()
        self.result_calls = 0
        self.submitted: list[list[dict[str, Any]]] = []

    async def create(self, requests):
        self.submitted.append(requests)
        batch = FakeMessageBatch(
            id=f"msgbatch_{len(self.submitted)}",
            processing_status="in_progress",
            request_counts=FakeMessageBatchCounts(processing=len(requests)),
        )
        self.batches[batch.id] = batch
        return batch

    async def retrieve(self, batch_id):
        return self.batches[batch_id]

    async def cancel(self, batch_id):
        batch = self.batches[batch_id]
        batch.processing_status = "canceling"
        return batch

    async def results(self, batch_id):
        self.result_calls += 1
        if batch_id in self.failing:
            raise OSError(f"results stream for {batch_id} failed")
        return FakeResultStream(self.results_by_batch.get(batch_id, []))


class FakeAnthropicClient:
    def __init__(self):
        self.messages = SimpleNamespace(batches=FakeMessageBatches())

    def finish(self, batch_id: str, entries: list[dict[str, Any]]) -> None:
        batches = self.messages.batches
        batch = batches.batches[batch_id]
        batch.processing_status = "ended"
        batch.results_url = f"https://api.example.test/v1/messages/batches/{batch_id}/results"
        batch.request_counts = FakeMessageBatchCounts(
            succeeded=sum(1 for e in entries if e["result"]["type"] == "succeeded"),
            errored=sum(1 for e in entries if e["result"]["type"] == "errored"),
        )
        batches.results_by_batch[batch_id] = [FakeBatchResult(**e) for e in entries]


@pytest.fixture
def anthropic_client():
    return FakeAnthropicClient()


def anthropic_entry(custom_id: str, text: str | None, result_type: str = "succeeded",
                    stop_reason: str = "end_turn") -> dict[str, Any]:
    if result_type == "succeeded":
        return {
            "custom_id": custom_id,
            "result": {
                "type": "succeeded",
                "message": {
                    "id": f"msg_{custom_id[-6:]}",
                    "role": "assistant",
                    "content": [{"type": "text", "text": text}] if text is not None else [],
                    "stop_reason": stop_reason,
                },
            },
        }
    if result_type == "errored":
        return {
            "custom_id": custom_id,
            "result": {
                "type": "errored",
                "error": {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
            },
        }
    return {"custom_id": custom_id, "result": {"type": result_type}}
