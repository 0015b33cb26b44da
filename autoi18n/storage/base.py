"""
Storage abstraction layer.

All persistence goes through these interfaces so the batch engine never
depends on a particular backing technology. Two stores are involved:

- FileStorage: uploaded sources and written translations, addressed by
  (sender, category, locale, type, relative path)
- ArtifactStorage: per-batch blobs (request container, manifest, provider
  echoes and result files), addressed by (sender, batch, name)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel


# =============================================================================
# Categories
# =============================================================================


class Categories:
    """Standard file storage categories."""
    
    UPLOADS = "uploads"
    TRANSLATIONS = "translations"


def segment(value: str | Enum) -> str:
    """Plain string form of a path component that may be an Enum member."""
    return value.value if isinstance(value, Enum) else str(value)


@dataclass
class StoredFile:
    """A file found under a (sender, category, locale, type) root."""
    
    relative_path: str  # POSIX style, relative to the type root
    size: int
    location: str


# =============================================================================
# Storage Interfaces
# =============================================================================


class FileStorage(ABC):
    """
    Source and translation files.
    
    Local Implementation: Filesystem
    """
    
    @abstractmethod
    async def list_files(
        self,
        sender_id: str,
        locale: str,
        file_type: str | Enum,
        category: str = Categories.UPLOADS,
    ) -> list[StoredFile]:
        """Recursively list files under a root, sorted by relative path."""
        pass
    
    @abstractmethod
    async def read(
        self,
        sender_id: str,
        locale: str,
        file_type: str | Enum,
        relative_path: str,
        category: str = Categories.UPLOADS,
    ) -> str:
        """Read a file as text. Raises FileNotFoundError when absent."""
        pass
    
    @abstractmethod
    async def write(
        self,
        sender_id: str,
        locale: str,
        file_type: str | Enum,
        relative_path: str,
        content: str,
        category: str = Categories.TRANSLATIONS,
    ) -> str:
        """Write a file, return its location."""
        pass
    
    @abstractmethod
    async def exists(
        self,
        sender_id: str,
        locale: str,
        file_type: str | Enum,
        relative_path: str,
        category: str = Categories.UPLOADS,
    ) -> bool:
        pass


class ArtifactStorage(ABC):
    """
    Namespaced blob set for batch artifacts.
    
    Local Implementation: Filesystem
    """
    
    @abstractmethod
    async def write(self, sender_id: str, batch_id: str, name: str, content: str) -> str:
        """Store an artifact atomically, return its location."""
        pass
    
    @abstractmethod
    async def read(self, sender_id: str, batch_id: str, name: str) -> str:
        """Read an artifact. Raises FileNotFoundError when absent."""
        pass
    
    @abstractmethod
    async def exists(self, sender_id: str, batch_id: str, name: str) -> bool:
        pass
    
    @abstractmethod
    def location(self, sender_id: str, batch_id: str, name: str) -> str:
        """Where an artifact lives (or would live)."""
        pass
    
    @abstractmethod
    async def list_senders(self) -> list[str]:
        """Senders that have at least one batch."""
        pass
    
    @abstractmethod
    async def list_batches(self, sender_id: str) -> list[str]:
        """Batch ids stored for a sender."""
        pass


# =============================================================================
# Storage Provider (dependency injection container)
# =============================================================================


class StorageProvider(BaseModel):
    """
    Container for all storage backends.
    
    Initialize once at startup with appropriate implementations.
    Services receive this and use the interfaces without knowing
    the underlying implementation.
    """
    
    model_config = {"arbitrary_types_allowed": True}
    
    files: FileStorage
    artifacts: ArtifactStorage
