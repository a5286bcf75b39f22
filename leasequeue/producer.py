"""
Producer side of the queue.

Messages are keyed by the sha256 of their payload. Sending a payload that is
already queued does not create a second row: if the existing row is being
processed it is flagged for redelivery, if it just disappeared the insert is
retried, up to a fixed number of cycles.
"""

import argparse
import asyncio
import hashlib
import logging
import sys

from leasequeue.config import Settings, get_settings
from leasequeue.constants import EventType, SPAN_SEND_MESSAGE, SendOutcome
from leasequeue.db.store import MessageStore
from leasequeue.exceptions import DuplicateMessageError, SendFailedError, StoreError
from leasequeue.observability.logging import setup_logging
from leasequeue.observability.metrics import get_metrics
from leasequeue.observability.tracing import get_tracer
from leasequeue.worker.events import EventChannel

logger = logging.getLogger(__name__)


def encode_payload(payload: bytes | str) -> bytes:
    """Payloads are stored as bytes; text is UTF-8 encoded."""
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return bytes(payload)


def message_hash(payload: bytes | str) -> str:
    """Deterministic identifier of a payload."""
    return hashlib.sha256(encode_payload(payload)).hexdigest()


class Producer:
    """
    Sends messages into the queue.

    Each cycle is one insert and, on a hash collision, one update that flags
    an in-progress row as requeued. The limit counts cycles, not time.
    """

    def __init__(
        self,
        store: MessageStore,
        cycle_limit: int | None = None,
        events: EventChannel | None = None,
    ):
        """
        Initialize the producer.

        Args:
            store: The message store.
            cycle_limit: Maximum insert/update cycles per send.
            events: Channel that store errors are reported on, if any.
        """
        self.store = store
        self.cycle_limit = cycle_limit or get_settings().send_cycle_limit
        self.events = events
        self._metrics = get_metrics()

    async def send(self, payload: bytes | str, topics: str | None = None) -> str:
        """
        Send a message.

        Args:
            payload: Message body.
            topics: Routing tag, or None for any worker.

        Returns:
            The message hash.

        Raises:
            SendFailedError: If every cycle collided with a row that was
                not in progress.
            StoreError: If the store failed; also reported on the channel.
        """
        body = encode_payload(payload)
        digest = message_hash(body)

        with get_tracer().start_as_current_span(SPAN_SEND_MESSAGE) as span:
            span.set_attribute("message_hash", digest)

            for cycle in range(1, self.cycle_limit + 1):
                try:
                    await self.store.insert(digest, body, topics)
                except DuplicateMessageError:
                    logger.info(
                        "Message already exists, flagging existing message",
                        extra={"message_hash": digest, "cycle": cycle},
                    )
                except StoreError as e:
                    self._report(e)
                    raise
                else:
                    logger.info(
                        "Message was sent successfully",
                        extra={"message_hash": digest, "topics": topics},
                    )
                    self._metrics.record_sent(topics, SendOutcome.INSERTED)
                    return digest

                try:
                    flagged = await self.store.conditional_update(
                        digest,
                        {"in_progress": True},
                        {"requeued": True},
                    )
                except StoreError as e:
                    self._report(e)
                    raise

                if flagged:
                    logger.info(
                        "Flagged in-progress message for redelivery",
                        extra={"message_hash": digest},
                    )
                    self._metrics.record_sent(topics, SendOutcome.FLAGGED)
                    return digest

                logger.info(
                    "Existing message is not in progress, retrying insert",
                    extra={"message_hash": digest, "cycle": cycle},
                )

        self._metrics.record_send_exhausted()
        logger.warning(
            f"Could not send message after {self.cycle_limit} cycles",
            extra={"message_hash": digest},
        )
        raise SendFailedError(digest, self.cycle_limit)

    def _report(self, error: StoreError) -> None:
        self._metrics.record_store_error("send")
        if self.events is not None:
            self.events.emit(EventType.ERROR, error)


async def send_async(
    payload: bytes | str,
    topics: str | None = None,
    settings: Settings | None = None,
) -> str:
    """Connect, send one message and disconnect."""
    settings = settings or get_settings()
    store = MessageStore.from_settings(settings)
    await store.ping()
    try:
        return await Producer(store, settings.send_cycle_limit).send(payload, topics)
    finally:
        await store.dispose()


def main(argv: list[str] | None = None) -> int:
    """Command-line entry point for sending a message."""
    parser = argparse.ArgumentParser(
        description="Send a message to the lease queue",
        epilog="Database and limits are read from LEASEQUEUE_* environment variables.",
    )
    parser.add_argument(
        "payload",
        help="Message body, or '-' to read it from stdin",
    )
    parser.add_argument(
        "--topic",
        dest="topics",
        default=None,
        help="Routing tag (default: untagged)",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings)

    payload: bytes | str = sys.stdin.buffer.read() if args.payload == "-" else args.payload

    try:
        digest = asyncio.run(send_async(payload, args.topics, settings))
    except SendFailedError as e:
        logger.error(str(e), extra={"message_hash": e.message_hash})
        return 1

    print(digest)
    return 0


def run() -> None:
    """Run the send command."""
    sys.exit(main())


if __name__ == "__main__":
    run()
