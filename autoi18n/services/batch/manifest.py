"""
Manifest store.

Manifests live next to the other batch artifacts as ``manifest.json`` and
are always read and rewritten as a whole. Read-modify-write cycles go
through ``update()``, which holds the lock for that (sender, batch) so a
manual status check cannot interleave with a poll of the same batch. Locks
come from a fixed pool picked by key hash, so unrelated batches may share
one; ``update()`` blocks never nest.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from pydantic import ValidationError

from autoi18n.core.errors import BatchNotFoundError
from autoi18n.core.models import BatchManifest
from autoi18n.storage.base import ArtifactStorage

logger = logging.getLogger(__name__)

MANIFEST_ARTIFACT = "manifest.json"
LOCK_POOL_SIZE = 64


class ManifestStore:
    """Loads, saves and lists batch manifests."""

    def __init__(self, artifacts: ArtifactStorage, lock_pool_size: int = LOCK_POOL_SIZE):
        self.artifacts = artifacts
        self._lock_pool_size = max(1, lock_pool_size)
        self._locks: list[asyncio.Lock] = [asyncio.Lock() for _ in range(self._lock_pool_size)]

    # =========================================================================
    # Manifests
    # =========================================================================

    async def load(self, sender_id: str, batch_id: str) -> BatchManifest:
        try:
            text = await self.artifacts.read(sender_id, batch_id, MANIFEST_ARTIFACT)
        except FileNotFoundError:
            raise BatchNotFoundError(f"Batch {batch_id} not found for sender {sender_id}") from None
        return BatchManifest.model_validate_json(text)

    async def save(self, manifest: BatchManifest) -> str:
        manifest.touch()
        return await self.artifacts.write(
            manifest.sender_id,
            manifest.batch_id,
            MANIFEST_ARTIFACT,
            manifest.model_dump_json(indent=2),
        )

    async def exists(self, sender_id: str, batch_id: str) -> bool:
        return await self.artifacts.exists(sender_id, batch_id, MANIFEST_ARTIFACT)

    def lock(self, sender_id: str, batch_id: str) -> asyncio.Lock:
        return self._locks[hash((sender_id, batch_id)) % self._lock_pool_size]

    @asynccontextmanager
    async def update(self, sender_id: str, batch_id: str) -> AsyncIterator[BatchManifest]:
        """
        Load a manifest under its lock and save it when the block exits.
        
        Nothing is saved if the block raises.
        """
        async with self.lock(sender_id, batch_id):
            manifest = await self.load(sender_id, batch_id)
            yield manifest
            await self.save(manifest)

    async def list_all(self) -> list[BatchManifest]:
        """Every readable manifest across all senders."""
        manifests: list[BatchManifest] = []
        for sender_dir in await self.artifacts.list_senders():
            for batch_dir in await self.artifacts.list_batches(sender_dir):
                try:
                    text = await self.artifacts.read(sender_dir, batch_dir, MANIFEST_ARTIFACT)
                    manifests.append(BatchManifest.model_validate_json(text))
                except FileNotFoundError:
                    continue
                except ValidationError as e:
                    logger.warning(f"Skipping unreadable manifest {sender_dir}/{batch_dir}: {e}")
        return manifests

    # =========================================================================
    # Other artifacts
    # =========================================================================

    async def read_artifact(self, sender_id: str, batch_id: str, name: str) -> str:
        try:
            return await self.artifacts.read(sender_id, batch_id, name)
        except FileNotFoundError:
            raise BatchNotFoundError(
                f"Artifact {name} not found for batch {batch_id}"
            ) from None

    async def write_artifact(self, sender_id: str, batch_id: str, name: str, content: str) -> str:
        return await self.artifacts.write(sender_id, batch_id, name, content)

    async def artifact_exists(self, sender_id: str, batch_id: str, name: str) -> bool:
        return await self.artifacts.exists(sender_id, batch_id, name)
