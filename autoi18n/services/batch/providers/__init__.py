"""
Provider adapters.

- OpenAIBatchAdapter → JSONL upload, output and error files
- AnthropicBatchAdapter → JSON array, streamed results
- MockBatchAdapter → deterministic, offline
"""

from autoi18n.services.batch.providers.anthropic_adapter import AnthropicBatchAdapter
from autoi18n.services.batch.providers.base import BatchAdapter
from autoi18n.services.batch.providers.mock_adapter import MockBatchAdapter
from autoi18n.services.batch.providers.openai_adapter import OpenAIBatchAdapter

__all__ = [
    "BatchAdapter",
    "AnthropicBatchAdapter",
    "MockBatchAdapter",
    "OpenAIBatchAdapter",
]
