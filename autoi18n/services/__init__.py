"""Services - the batch engine and the poller that keeps it moving."""

from autoi18n.services.batch.service import BatchService, ProviderAvailability
from autoi18n.services.polling import BatchPoller, PollSummary

__all__ = [
    "BatchService",
    "ProviderAvailability",
    "BatchPoller",
    "PollSummary",
]
