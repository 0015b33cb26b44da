"""
Local filesystem storage implementations.

Layout under the data root:

    {root}/{sender}/uploads/{locale}/{type}/{relative path}
    {root}/{sender}/translations/{locale}/{type}/{relative path}
    {root}/{sender}/batches/{batch id}/{artifact name}
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path, PurePosixPath

from autoi18n.core.utils import sanitize_segment
from autoi18n.storage.base import (
    ArtifactStorage,
    Categories,
    FileStorage,
    StorageProvider,
    StoredFile,
    segment,
)

BATCHES_DIR = "batches"
_PARTIAL_SUFFIX = ".partial"


def _safe_relative(relative_path: str) -> PurePosixPath:
    """Normalize a caller supplied relative path, refusing traversal."""
    path = PurePosixPath(relative_path.replace("\\", "/").lstrip("/"))
    if not path.parts or any(part in ("", ".", "..") for part in path.parts):
        raise ValueError(f"Invalid relative path: {relative_path!r}")
    return path


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + _PARTIAL_SUFFIX)
    tmp_path.write_text(content, encoding="utf-8")
    os.replace(tmp_path, path)


# =============================================================================
# Local Filesystem File Storage
# =============================================================================


class LocalFileStorage(FileStorage):
    """Sources and translations on the local filesystem."""
    
    def __init__(self, base_path: str = "./tmp"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
    
    def root(self, sender_id: str, locale: str, file_type: str | Enum, category: str) -> Path:
        return (
            self.base_path
            / sanitize_segment(sender_id)
            / category
            / sanitize_segment(locale)
            / sanitize_segment(segment(file_type))
        )
    
    def _path(
        self,
        sender_id: str,
        locale: str,
        file_type: str | Enum,
        relative_path: str,
        category: str,
    ) -> Path:
        return self.root(sender_id, locale, file_type, category).joinpath(
            *_safe_relative(relative_path).parts
        )
    
    async def list_files(
        self,
        sender_id: str,
        locale: str,
        file_type: str | Enum,
        category: str = Categories.UPLOADS,
    ) -> list[StoredFile]:
        root = self.root(sender_id, locale, file_type, category)
        if not root.is_dir():
            return []
        
        files = []
        for path in root.rglob("*"):
            if not path.is_file() or path.name.endswith(_PARTIAL_SUFFIX):
                continue
            files.append(
                StoredFile(
                    relative_path=path.relative_to(root).as_posix(),
                    size=path.stat().st_size,
                    location=str(path),
                )
            )
        return sorted(files, key=lambda f: f.relative_path)
    
    async def read(
        self,
        sender_id: str,
        locale: str,
        file_type: str | Enum,
        relative_path: str,
        category: str = Categories.UPLOADS,
    ) -> str:
        path = self._path(sender_id, locale, file_type, relative_path, category)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        return path.read_text(encoding="utf-8")
    
    async def write(
        self,
        sender_id: str,
        locale: str,
        file_type: str | Enum,
        relative_path: str,
        content: str,
        category: str = Categories.TRANSLATIONS,
    ) -> str:
        path = self._path(sender_id, locale, file_type, relative_path, category)
        _atomic_write(path, content)
        return str(path)
    
    async def exists(
        self,
        sender_id: str,
        locale: str,
        file_type: str | Enum,
        relative_path: str,
        category: str = Categories.UPLOADS,
    ) -> bool:
        return self._path(sender_id, locale, file_type, relative_path, category).is_file()


# =============================================================================
# Local Filesystem Artifact Storage
# =============================================================================


class LocalArtifactStorage(ArtifactStorage):
    """Batch artifacts on the local filesystem."""
    
    def __init__(self, base_path: str = "./tmp"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
    
    def batch_dir(self, sender_id: str, batch_id: str) -> Path:
        return (
            self.base_path
            / sanitize_segment(sender_id)
            / BATCHES_DIR
            / sanitize_segment(batch_id)
        )
    
    def _path(self, sender_id: str, batch_id: str, name: str) -> Path:
        return self.batch_dir(sender_id, batch_id) / sanitize_segment(name)
    
    async def write(self, sender_id: str, batch_id: str, name: str, content: str) -> str:
        path = self._path(sender_id, batch_id, name)
        _atomic_write(path, content)
        return str(path)
    
    async def read(self, sender_id: str, batch_id: str, name: str) -> str:
        path = self._path(sender_id, batch_id, name)
        if not path.is_file():
            raise FileNotFoundError(f"Artifact not found: {path}")
        return path.read_text(encoding="utf-8")
    
    async def exists(self, sender_id: str, batch_id: str, name: str) -> bool:
        return self._path(sender_id, batch_id, name).is_file()
    
    def location(self, sender_id: str, batch_id: str, name: str) -> str:
        return str(self._path(sender_id, batch_id, name))
    
    async def list_senders(self) -> list[str]:
        if not self.base_path.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.base_path.iterdir()
            if (entry / BATCHES_DIR).is_dir()
        )
    
    async def list_batches(self, sender_id: str) -> list[str]:
        batches_root = self.base_path / sanitize_segment(sender_id) / BATCHES_DIR
        if not batches_root.is_dir():
            return []
        return sorted(entry.name for entry in batches_root.iterdir() if entry.is_dir())


# =============================================================================
# Factory
# =============================================================================


def create_local_storage(base_path: str = "./tmp") -> StorageProvider:
    """Create a storage provider backed by one local data root."""
    return StorageProvider(
        files=LocalFileStorage(base_path),
        artifacts=LocalArtifactStorage(base_path),
    )
