"""
Provider request builders.

Each builder turns one translation unit and one target locale into the
provider's native request object and records the matching
``BatchRequestRecord``. The prompt text is shared; only the envelope
differs:

- OpenAI: one chat-completions request per JSONL line
  ``{custom_id, method, url, body}``
- Anthropic: one message-batch entry ``{custom_id, params}``
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Protocol

from autoi18n.core.models import (
    BatchProvider,
    BatchRequestRecord,
    BatchSourceFile,
    RequestFormat,
)
from autoi18n.resources.prompt_template import PromptTemplate
from autoi18n.services.batch.correlation import build_custom_id

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_ENDPOINT = "/v1/chat/completions"


# =============================================================================
# Units and built requests
# =============================================================================


class UnitKind:
    """Instruction kinds; each has an entry in the prompt template."""

    MARKDOWN = "markdown"  # Whole markdown document
    JSON = "json"  # JSON tree, whole file or the changed keys of one
    MARKDOWN_DELTA = "markdown_delta"  # {line number: line} map of changed lines


@dataclass
class TranslationUnit:
    """One piece of source content to translate into every target locale."""

    source: BatchSourceFile
    kind: str
    payload: Any  # str for MARKDOWN, JSON-compatible object otherwise

    @property
    def expects_json(self) -> bool:
        return self.kind != UnitKind.MARKDOWN


@dataclass
class BuiltRequest:
    custom_id: str
    record: BatchRequestRecord
    request: dict[str, Any]  # Provider-native request object


class RequestBuilder(Protocol):
    provider: BatchProvider
    model: str

    def build(
        self,
        unit: TranslationUnit,
        *,
        sender_id: str,
        source_locale: str,
        target_locale: str,
    ) -> BuiltRequest: ...


# =============================================================================
# Shared pieces
# =============================================================================


def make_record(
    unit: TranslationUnit,
    *,
    sender_id: str,
    source_locale: str,
    target_locale: str,
) -> BatchRequestRecord:
    source = unit.source
    return BatchRequestRecord(
        custom_id=build_custom_id(
            sender_id, target_locale, source.type, source.relative_path, source.format
        ),
        type=source.type,
        format=source.format,
        relative_path=source.relative_path,
        source_locale=source_locale,
        target_locale=target_locale,
        folder_path=source.folder_path,
        file_name=source.file_name,
        size=source.size,
    )


def compose_user_message(
    prompts: PromptTemplate,
    unit: TranslationUnit,
    source_locale: str,
    target_locale: str,
) -> str:
    """Instruction, payload and response directives as one user message."""
    instruction = prompts.instruction(unit.kind, source_locale, target_locale)

    if unit.kind == UnitKind.MARKDOWN:
        return (
            f"{instruction}\n\n---\n{unit.payload}\n---\n\n"
            f"{prompts.directive('markdown_response')}"
        )

    data = json.dumps(unit.payload, ensure_ascii=False, indent=2)
    return (
        f"{instruction}\n\nInput JSON:\n{data}\n\n"
        f"{prompts.directive('json_wrapper')}\n{prompts.directive('json_response')}"
    )


# =============================================================================
# OpenAI
# =============================================================================


class OpenAIRequestBuilder:
    """Chat-completions requests for the OpenAI batch endpoint."""

    provider = BatchProvider.OPENAI

    def __init__(
        self,
        prompts: PromptTemplate,
        model: str,
        max_completion_tokens: int = 32768,
        temperature: float = 1.0,
    ):
        self.prompts = prompts
        self.model = model
        self.max_completion_tokens = max_completion_tokens
        self.temperature = temperature

    def build(
        self,
        unit: TranslationUnit,
        *,
        sender_id: str,
        source_locale: str,
        target_locale: str,
    ) -> BuiltRequest:
        record = make_record(
            unit, sender_id=sender_id, source_locale=source_locale, target_locale=target_locale
        )
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.prompts.system_prompt},
                {
                    "role": "user",
                    "content": compose_user_message(self.prompts, unit, source_locale, target_locale),
                },
            ],
            "temperature": self.temperature,
            "max_completion_tokens": self.max_completion_tokens,
        }
        if unit.expects_json:
            body["response_format"] = {"type": "json_object"}

        return BuiltRequest(
            custom_id=record.custom_id,
            record=record,
            request={
                "custom_id": record.custom_id,
                "method": "POST",
                "url": CHAT_COMPLETIONS_ENDPOINT,
                "body": body,
            },
        )


# =============================================================================
# Anthropic
# =============================================================================


class AnthropicRequestBuilder:
    """Message-create requests for the Anthropic message batches API."""

    provider = BatchProvider.ANTHROPIC

    def __init__(self, prompts: PromptTemplate, model: str, max_tokens: int = 8192):
        self.prompts = prompts
        self.model = model
        self.max_tokens = max_tokens

    def build(
        self,
        unit: TranslationUnit,
        *,
        sender_id: str,
        source_locale: str,
        target_locale: str,
    ) -> BuiltRequest:
        record = make_record(
            unit, sender_id=sender_id, source_locale=source_locale, target_locale=target_locale
        )
        return BuiltRequest(
            custom_id=record.custom_id,
            record=record,
            request={
                "custom_id": record.custom_id,
                "params": {
                    "model": self.model,
                    "system": self.prompts.system_prompt,
                    "messages": [
                        {
                            "role": "user",
                            "content": compose_user_message(
                                self.prompts, unit, source_locale, target_locale
                            ),
                        }
                    ],
                    "max_tokens": self.max_tokens,
                },
            },
        )


# =============================================================================
# Fan-out
# =============================================================================


def build_requests(
    builder: RequestBuilder,
    units: Iterable[TranslationUnit],
    *,
    sender_id: str,
    source_locale: str,
    target_locales: list[str],
) -> list[BuiltRequest]:
    """
    Build one request per unit and target locale.

    Markdown units come first, then JSON, matching how results are usually
    reviewed. A unit collected twice yields one request.
    """
    ordered = sorted(
        units, key=lambda u: 0 if u.source.format == RequestFormat.MARKDOWN else 1
    )
    requests: list[BuiltRequest] = []
    seen: set[str] = set()
    for unit in ordered:
        for target_locale in target_locales:
            built = builder.build(
                unit,
                sender_id=sender_id,
                source_locale=source_locale,
                target_locale=target_locale,
            )
            if built.custom_id in seen:
                logger.warning(f"Skipping duplicate request {built.custom_id}")
                continue
            seen.add(built.custom_id)
            requests.append(built)
    return requests
