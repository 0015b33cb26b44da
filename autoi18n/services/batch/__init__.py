"""
Batch translation engine.

Plans translation requests, hands them to a provider's batch API, tracks
the batch to a terminal status and turns the results back into files.
"""

from autoi18n.services.batch.correlation import build_custom_id, parse_custom_id
from autoi18n.services.batch.manifest import ManifestStore
from autoi18n.services.batch.service import BatchService, ProviderAvailability

__all__ = [
    "build_custom_id",
    "parse_custom_id",
    "ManifestStore",
    "BatchService",
    "ProviderAvailability",
]
