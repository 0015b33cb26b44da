"""
Core models, errors and helpers shared by the batch engine.
"""

from autoi18n.core.errors import (
    BatchError,
    BatchNotFoundError,
    BatchStateError,
    BatchValidationError,
    ConfigurationError,
    DataIntegrityError,
    UnsupportedOperationError,
)
from autoi18n.core.events import Event, EventBus
from autoi18n.core.models import (
    BatchManifest,
    BatchMode,
    BatchProvider,
    BatchRequestRecord,
    BatchSourceFile,
    BatchStatus,
    ProcessedTranslation,
    RequestFormat,
    TranslationStatus,
    TranslationType,
)

__all__ = [
    "BatchError",
    "BatchNotFoundError",
    "BatchStateError",
    "BatchValidationError",
    "ConfigurationError",
    "DataIntegrityError",
    "UnsupportedOperationError",
    "Event",
    "EventBus",
    "BatchManifest",
    "BatchMode",
    "BatchProvider",
    "BatchRequestRecord",
    "BatchSourceFile",
    "BatchStatus",
    "ProcessedTranslation",
    "RequestFormat",
    "TranslationStatus",
    "TranslationType",
]
