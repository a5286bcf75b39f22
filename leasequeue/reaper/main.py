"""
Stale lease reaper.

Messages whose owner stopped heartbeating for longer than the lease
lifetime are returned to the queue, whichever worker held them. Workers run
a reaper on their own timer; this module can also run it as a dedicated
process.
"""

import asyncio
import logging
import signal
from datetime import timedelta

from leasequeue.config import Settings, get_settings
from leasequeue.constants import SPAN_RECLAIM_LEASES
from leasequeue.db.store import MessageStore
from leasequeue.observability.logging import setup_logging
from leasequeue.observability.metrics import get_metrics, setup_metrics
from leasequeue.observability.tracing import get_tracer, setup_tracing

logger = logging.getLogger(__name__)


class Reaper:
    """
    Lease reaper that recovers stale leases.

    Each run resets every in-progress message whose last heartbeat is older
    than the lease lifetime: it is no longer in progress, has no owner and
    is no longer flagged as requeued.
    """

    def __init__(
        self,
        store: MessageStore,
        lease_lifetime_seconds: float | None = None,
        interval_seconds: float | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            store: The message store.
            lease_lifetime_seconds: Age after which a lease is stale.
            interval_seconds: Seconds between runs in start().
        """
        if lease_lifetime_seconds is None:
            lease_lifetime_seconds = get_settings().lease_lifetime_seconds
        if interval_seconds is None:
            interval_seconds = get_settings().reclaim_interval_seconds

        self.store = store
        self.lease_lifetime = timedelta(seconds=lease_lifetime_seconds)
        self.interval = interval_seconds
        self._running = False
        self._metrics = get_metrics()

    async def run_once(self) -> int:
        """
        Reclaim stale leases once.

        Returns:
            Number of messages reset.

        Raises:
            StoreError: If the update failed.
        """
        with get_tracer().start_as_current_span(SPAN_RECLAIM_LEASES):
            count = await self.store.bulk_conditional_update(
                {"in_progress": True},
                {"in_progress": False, "owner": None, "requeued": False},
                stale_after=self.lease_lifetime,
            )

        if count > 0:
            logger.info(f"Reclaimed {count} stale leases")
            self._metrics.record_reclaimed(count)

        return count

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            await asyncio.sleep(self.interval)

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False


async def run_async(settings: Settings | None = None) -> None:
    """Run a dedicated reaper process."""
    settings = settings or get_settings()
    setup_logging(settings)
    setup_metrics(settings.prometheus_port)
    if settings.otel_enabled:
        setup_tracing(settings)

    store = MessageStore.from_settings(settings)
    await store.ping()

    reaper = Reaper(
        store,
        lease_lifetime_seconds=settings.lease_lifetime_seconds,
        interval_seconds=settings.reclaim_interval_seconds,
    )

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await store.dispose()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
