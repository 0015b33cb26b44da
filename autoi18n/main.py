"""
autoi18n - batch poller entry point.

Runs the status poller on its own, for deployments where the API process
does not poll.

Usage:
    autoi18n-poller
    autoi18n-poller --once
    python -m autoi18n.main --interval 60
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from autoi18n.config import Settings
from autoi18n.services.batch.service import BatchService
from autoi18n.services.polling import BatchPoller
from autoi18n.storage import create_local_storage

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def build_service(settings: Settings) -> BatchService:
    """Composition root: one storage and one service per process."""
    return BatchService(settings, create_local_storage(settings.data_dir))


async def run_poller(
    settings: Settings,
    once: bool = False,
    interval: float | None = None,
) -> None:
    """
    Poll submitted batches until cancelled.

    Args:
        settings: Application settings
        once: Run a single tick and return
        interval: Override for the configured interval in seconds
    """
    service = build_service(settings)
    poller = BatchPoller(
        service,
        interval=interval or settings.batch_poll_interval_seconds,
        concurrency=settings.batch_poll_concurrency,
    )

    if once:
        summary = await poller.poll_once()
        if summary is not None:
            logger.info(
                f"Checked {summary.succeeded} of {summary.total} batches, "
                f"{len(summary.changed)} changed, {summary.failed} failed"
            )
        return

    poller.start()
    try:
        await asyncio.Event().wait()
    finally:
        await poller.stop()


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Poll submitted translation batches")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one poll tick and exit"
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between ticks (default: BATCH_POLL_INTERVAL_SECONDS)"
    )

    args = parser.parse_args()

    settings = Settings()
    configure_logging(settings.log_level)

    try:
        asyncio.run(run_poller(settings, once=args.once, interval=args.interval))
    except KeyboardInterrupt:
        logger.info("Poller interrupted")


if __name__ == "__main__":
    main()
