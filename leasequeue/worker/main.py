"""
Worker process for consuming messages.

The worker claims one random eligible message per poll tick and hands it to
its listeners as a Delivery. Listeners keep the lease alive with heartbeats
and finish by removing or requeueing the message. A second timer reclaims
stale leases left behind by crashed workers.
"""

import asyncio
import contextlib
import logging
import secrets
import signal
from collections.abc import Mapping
from typing import Any

from leasequeue.config import Settings, get_settings
from leasequeue.constants import OWNER_TOKEN_BYTES, SPAN_CLAIM_MESSAGE, SPAN_PROCESS_MESSAGE, EventType
from leasequeue.db.store import MessageStore
from leasequeue.exceptions import StoreError
from leasequeue.observability.logging import bind_context, setup_logging
from leasequeue.observability.metrics import get_metrics, setup_metrics
from leasequeue.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing
from leasequeue.producer import Producer
from leasequeue.reaper.main import Reaper
from leasequeue.types.message import HandlerResult
from leasequeue.worker.delivery import Delivery
from leasequeue.worker.events import EventChannel, Listener
from leasequeue.worker.handlers import execute_message
from leasequeue.worker.timers import RepeatingTimer

logger = logging.getLogger(__name__)


class Worker:
    """
    Queue worker that claims messages and tracks their leases.

    Features:
    - Random claim among eligible messages, marked as owned atomically
    - Heartbeat, requeue and remove scoped to this worker's owner identity
    - Stale lease reclaim on an independent timer
    - Pause/resume of both timers without cancelling in-flight store calls
    - `data` and `error` events instead of exceptions for store failures
    """

    def __init__(
        self,
        settings: Settings | Mapping[str, Any] | None = None,
        store: MessageStore | None = None,
    ):
        """
        Initialize the worker.

        Args:
            settings: Settings, or a mapping validated into Settings.
                Defaults to the environment.
            store: Message store. Built from settings on connect() if omitted.

        Raises:
            pydantic.ValidationError: If the settings mapping is invalid.
        """
        if settings is None:
            settings = get_settings()
        elif not isinstance(settings, Settings):
            settings = Settings(**settings)

        self.settings = settings
        self.owner = secrets.token_hex(OWNER_TOKEN_BYTES)
        self.topics = list(settings.topics)
        self.store = store
        self.currently_polling = False
        self.events = EventChannel()

        self._poller = RepeatingTimer(
            self.check_now,
            settings.poll_interval_seconds,
            name="claim-scanner",
        )
        self._restorer = RepeatingTimer(
            self.reclaim_stale,
            settings.reclaim_interval_seconds,
            name="stale-lease-reclaimer",
        )
        self._metrics = get_metrics()
        self._reaper: Reaper | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, create_schema: bool = False) -> None:
        """
        Open the store and verify the database is reachable.

        Args:
            create_schema: Create the messages table if missing.

        Raises:
            StoreConnectionError: If the database cannot be reached.
        """
        if self.store is None:
            self.store = MessageStore.from_settings(self.settings)
            if self.settings.otel_enabled:
                instrument_sqlalchemy(self.store.engine)

        await self.store.ping()
        self._reaper = Reaper(
            self.store,
            lease_lifetime_seconds=self.settings.lease_lifetime_seconds,
            interval_seconds=self.settings.reclaim_interval_seconds,
        )

        if create_schema:
            await self.store.create_schema()

        logger.info(
            "Worker connected",
            extra={"owner": self.owner[:16], "topics": self.topics},
        )

    async def disconnect(self) -> None:
        """Stop polling, wait for in-flight ticks and close the store."""
        self.pause_polling()
        await self._poller.wait_idle()
        await self._restorer.wait_idle()
        await self.events.drain()

        if self.store is not None:
            await self.store.dispose()

    def _require_store(self) -> MessageStore:
        if self.store is None:
            raise RuntimeError("Worker not connected. Call connect() first.")
        return self.store

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: EventType | str, listener: Listener) -> None:
        """Subscribe to `data` or `error` events."""
        self.events.on(event, listener)

    def off(self, event: EventType | str, listener: Listener) -> None:
        """Unsubscribe from `data` or `error` events."""
        self.events.off(event, listener)

    def _report(self, operation: str, error: StoreError) -> None:
        logger.warning(
            f"Store call failed during {operation}: {error}",
            extra={"owner": self.owner[:16]},
        )
        self._metrics.record_store_error(operation)
        self.events.emit(EventType.ERROR, error)

    # ------------------------------------------------------------------
    # Polling lifecycle
    # ------------------------------------------------------------------

    def listen(self, callback: Listener | None = None) -> None:
        """
        Start the claim scanner and the stale lease reclaimer.

        Args:
            callback: Optional `data` listener to subscribe first.
        """
        if callback is not None:
            self.on(EventType.DATA, callback)

        self.currently_polling = True
        self._poller.start()
        self._restorer.start()

        logger.info(
            "Worker listening",
            extra={
                "poll_interval": self.settings.poll_interval_seconds,
                "reclaim_interval": self.settings.reclaim_interval_seconds,
            },
        )

    def pause_polling(self) -> None:
        """Stop both timers. Store calls already issued still complete."""
        self._poller.cancel()
        self._restorer.cancel()
        self.currently_polling = False

    def resume_polling(self) -> None:
        """Restart both timers."""
        self.currently_polling = True
        self._poller.start()
        self._restorer.start()

    # ------------------------------------------------------------------
    # Claim scanner
    # ------------------------------------------------------------------

    async def check_now(self) -> Delivery | None:
        """
        Claim one message and emit it as a `data` event.

        Returns:
            The delivery, or None if nothing was claimable or the store
            failed (the failure is emitted as an `error` event).
        """
        store = self._require_store()

        with get_tracer().start_as_current_span(SPAN_CLAIM_MESSAGE) as span:
            try:
                record = await store.select_candidate(self.topics, self.owner)
            except StoreError as e:
                self._report("claim", e)
                return None

            if record is None:
                return None

            span.set_attribute("message_hash", record.hash)

        delivery = Delivery.from_record(record, self)
        self._metrics.record_claimed(record.topics)

        logger.info(
            "Claimed message",
            extra={"message_hash": record.hash, "topics": record.topics},
        )

        self.events.emit(EventType.DATA, delivery)
        return delivery

    # ------------------------------------------------------------------
    # Lease operations
    # ------------------------------------------------------------------

    async def heartbeat(self, message_hash: str) -> bool | None:
        """
        Refresh the lease on a message this worker owns.

        Returns:
            True if the lease was renewed, False if the message is no longer
            in progress under this owner. None if the store failed; the
            failure is emitted as an `error` event and says nothing about
            the lease.
        """
        store = self._require_store()

        try:
            renewed = await store.conditional_update(
                message_hash,
                {"in_progress": True, "owner": self.owner},
                {"heartbeat_at": store.clock()},
            ) > 0
        except StoreError as e:
            self._report("heartbeat", e)
            return None

        self._metrics.record_heartbeat(renewed)

        if renewed:
            logger.debug("Renewed lease", extra={"message_hash": message_hash})
        else:
            logger.warning("Lease lost", extra={"message_hash": message_hash})

        return renewed

    async def requeue(self, message_hash: str) -> bool:
        """
        Release a message for redelivery, whoever owns it.

        Returns:
            True if the message exists. Store failures are emitted as
            `error` events and return False.
        """
        store = self._require_store()

        try:
            rows = await store.conditional_update(
                message_hash,
                {},
                {"owner": None, "in_progress": False, "requeued": True},
            )
        except StoreError as e:
            self._report("requeue", e)
            return False

        if rows:
            self._metrics.record_requeued()
            logger.info("Requeued message", extra={"message_hash": message_hash})

        return rows > 0

    async def remove(self, message_hash: str) -> bool:
        """
        Delete a processed message.

        Messages flagged as requeued are never deleted. If the delete fails
        or matches nothing, the message is requeued instead so it cannot be
        lost; a failing requeue is emitted as an `error` event.

        Returns:
            True if the message was deleted.
        """
        store = self._require_store()

        try:
            deleted = await store.delete(message_hash, {"requeued": False}) > 0
        except StoreError as e:
            logger.error(
                f"Error deleting message, attempting requeue: {e}",
                extra={"message_hash": message_hash},
            )
            deleted = False
        else:
            if not deleted:
                logger.info(
                    "Message was not deleted, attempting requeue",
                    extra={"message_hash": message_hash},
                )

        if deleted:
            self._metrics.record_completed()
            logger.info("Removed message", extra={"message_hash": message_hash})
            return True

        await self.requeue(message_hash)
        return False

    # ------------------------------------------------------------------
    # Stale lease reclaimer
    # ------------------------------------------------------------------

    async def reclaim_stale(self) -> int:
        """
        Reset messages whose lease expired without a heartbeat.

        Returns:
            Number of messages reset; 0 if the store failed (emitted as
            an `error` event).
        """
        if self._reaper is None:
            raise RuntimeError("Worker not connected. Call connect() first.")

        try:
            return await self._reaper.run_once()
        except StoreError as e:
            self._report("reclaim", e)
            return 0

    # ------------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------------

    async def send_message(self, payload: bytes | str, topics: str | None = None) -> str:
        """
        Send a message through this worker's store.

        Returns:
            The message hash.

        Raises:
            SendFailedError: If the send exhausted its cycles.
            StoreError: If the store failed (also emitted as an `error` event).
        """
        producer = Producer(
            self._require_store(),
            cycle_limit=self.settings.send_cycle_limit,
            events=self.events,
        )
        return await producer.send(payload, topics)


async def _keep_alive(delivery: Delivery, interval: float, lost: asyncio.Event) -> None:
    """Heartbeat until cancelled or until the lease is lost."""
    while True:
        await asyncio.sleep(interval)
        # None is a store failure, retried on the next beat
        if await delivery.heartbeat() is False:
            lost.set()
            return


async def process_delivery(delivery: Delivery, heartbeat_interval: float) -> HandlerResult:
    """
    Run the handler for a delivery while keeping its lease alive.

    Handles the full lifecycle:
    1. Start heartbeating every `heartbeat_interval` seconds
    2. Execute the handler registered for the message topic
    3. Remove the message on success, requeue it on failure

    If a heartbeat stops matching, the lease belongs to somebody else now
    and the message is left alone once the handler returns.

    Args:
        delivery: The claimed message.
        heartbeat_interval: Seconds between heartbeats.

    Returns:
        The handler result.
    """
    lost = asyncio.Event()
    keep_alive = asyncio.create_task(_keep_alive(delivery, heartbeat_interval, lost))

    try:
        with get_tracer().start_as_current_span(SPAN_PROCESS_MESSAGE) as span:
            span.set_attribute("message_hash", delivery.message_hash)
            result = await execute_message(delivery.context())
    finally:
        keep_alive.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await keep_alive

    if lost.is_set():
        logger.warning(
            "Lease lost while processing, leaving message to its new owner",
            extra={"message_hash": delivery.message_hash},
        )
    elif result.success:
        await delivery.remove()
    else:
        logger.warning(
            "Message failed, requeueing",
            extra={"message_hash": delivery.message_hash, "error": result.error},
        )
        await delivery.requeue()

    return result


async def run_async(settings: Settings | None = None) -> None:
    """Run the worker asynchronously."""
    settings = settings or get_settings()
    setup_logging(settings)
    setup_metrics(settings.prometheus_port)
    if settings.otel_enabled:
        setup_tracing(settings)

    worker = Worker(settings)
    await worker.connect()
    bind_context(owner=worker.owner[:16])

    async def on_data(delivery: Delivery) -> None:
        await process_delivery(delivery, settings.heartbeat_interval_seconds)

    def on_error(error: Exception) -> None:
        logger.error(f"Queue error: {error}")

    worker.on(EventType.DATA, on_data)
    worker.on(EventType.ERROR, on_error)

    # Handle shutdown signals
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    worker.listen()
    try:
        await stop.wait()
        logger.info("Worker stopping", extra={"owner": worker.owner[:16]})
    finally:
        await worker.disconnect()

    logger.info("Worker stopped")


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
