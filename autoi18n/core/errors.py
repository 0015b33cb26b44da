"""
Error taxonomy for the batch translation engine.

Provider SDK exceptions are never wrapped: they propagate to the caller of
the operation that talked to the provider.
"""

from __future__ import annotations


class BatchError(Exception):
    """Base class for batch engine errors."""


class BatchValidationError(BatchError, ValueError):
    """The caller asked for something that cannot be built or run."""


class BatchNotFoundError(BatchError, LookupError):
    """A manifest or batch artifact does not exist."""


class ConfigurationError(BatchError):
    """No usable provider, or a provider is missing credentials."""


class BatchStateError(BatchError):
    """The batch is not in a state that allows the requested operation."""


class DataIntegrityError(BatchError):
    """Stored batch data is inconsistent and the operation cannot proceed."""


class UnsupportedOperationError(BatchError):
    """The selected provider adapter does not implement this capability."""
