"""
Batch status poller.

Scans every sender's manifests for submitted batches whose provider has not
reported a terminal status yet and checks them concurrently. It runs once
at start and then on a fixed interval. A tick that starts while the
previous one is still running is skipped, never queued.

Usage:
    poller = BatchPoller(service, interval=30)
    poller.start()
    ...
    poller.trigger()  # right after a submit
    ...
    await poller.stop()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from autoi18n.core.models import BatchManifest, BatchStatus, CheckBatchStatusResult
from autoi18n.services.batch.service import BatchService

logger = logging.getLogger(__name__)


@dataclass
class PollSummary:
    """Outcome of one poll tick."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    changed: list[str] = field(default_factory=list)  # batch ids whose remote status moved
    errors: dict[str, str] = field(default_factory=dict)  # batch id -> error


class BatchPoller:
    """
    Background reconciler for submitted batches.

    Args:
        service: Batch service used for status checks
        interval: Seconds between ticks
        concurrency: Most status checks in flight at once
    """

    def __init__(
        self,
        service: BatchService,
        interval: float = 30.0,
        concurrency: int = 8,
    ):
        self.service = service
        self.interval = interval
        self.concurrency = max(1, concurrency)
        self._polling = False
        self._task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[PollSummary | None]] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_polling(self) -> bool:
        return self._polling

    # =========================================================================
    # Ticks
    # =========================================================================

    def is_pending(self, manifest: BatchManifest) -> bool:
        if manifest.status != BatchStatus.SUBMITTED:
            return False
        adapter = self.service.adapter(manifest.provider)
        return not adapter.is_remote_terminal(manifest.remote_status)

    async def find_pending(self) -> list[BatchManifest]:
        manifests = await self.service.manifests.list_all()
        return [m for m in manifests if self.is_pending(m)]

    async def poll_once(self) -> PollSummary | None:
        """
        Run one tick.

        Returns None when another tick is still running.
        """
        if self._polling:
            logger.debug("Poll already in progress, skipping tick")
            return None

        self._polling = True
        try:
            return await self._poll()
        finally:
            self._polling = False

    async def _poll(self) -> PollSummary:
        pending = await self.find_pending()
        summary = PollSummary(total=len(pending))
        if not pending:
            return summary

        logger.info(f"Polling {len(pending)} submitted batches")
        semaphore = asyncio.Semaphore(self.concurrency)

        async def check(manifest: BatchManifest) -> CheckBatchStatusResult:
            async with semaphore:
                return await self.service.check_batch_status(manifest.sender_id, manifest.batch_id)

        results = await asyncio.gather(*(check(m) for m in pending), return_exceptions=True)

        for manifest, result in zip(pending, results):
            previous = manifest.remote_status
            if isinstance(result, BaseException):
                summary.failed += 1
                summary.errors[manifest.batch_id] = str(result)
                logger.error(
                    f"Failed to poll batch {manifest.batch_id} for {manifest.sender_id}: {result}"
                )
                continue

            summary.succeeded += 1
            if result.status != previous:
                summary.changed.append(manifest.batch_id)
                logger.info(
                    f"Batch status CHANGED: {manifest.batch_id} "
                    f"{previous} -> {result.status} (manifest {result.manifest_status.value})"
                )
            else:
                logger.debug(f"Batch {manifest.batch_id} checked: still {result.status}")

        logger.info(
            f"Poll finished: {summary.succeeded} checked, {summary.failed} failed, "
            f"{len(summary.changed)} changed"
        )
        return summary

    # =========================================================================
    # Loop
    # =========================================================================

    def start(self) -> None:
        """Start the loop; the first tick runs immediately."""
        if self.is_running:
            logger.warning("Batch poller already running")
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Batch poller started (every {self.interval}s)")

    async def stop(self) -> None:
        tasks = [t for t in [self._task, *self._background] if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._background.clear()
        logger.info("Batch poller stopped")

    def trigger(self) -> asyncio.Task[PollSummary | None]:
        """Poll now without waiting for the next tick."""
        task = asyncio.create_task(self.poll_once())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                # A broken scan must not end the loop
                logger.error(f"Batch poll tick failed: {e}")
            await asyncio.sleep(self.interval)
