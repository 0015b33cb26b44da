"""
Storage abstractions.

- FileStorage → uploaded sources and written translations
- ArtifactStorage → per-batch request, manifest and result blobs
"""

from autoi18n.storage.base import (
    ArtifactStorage,
    Categories,
    FileStorage,
    StorageProvider,
    StoredFile,
)
from autoi18n.storage.local import (
    LocalArtifactStorage,
    LocalFileStorage,
    create_local_storage,
)

__all__ = [
    "ArtifactStorage",
    "Categories",
    "FileStorage",
    "StorageProvider",
    "StoredFile",
    "LocalArtifactStorage",
    "LocalFileStorage",
    "create_local_storage",
]
