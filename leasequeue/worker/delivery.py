"""
Delivered message handle.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from leasequeue.types.message import MessageContext, MessageRecord

if TYPE_CHECKING:
    from leasequeue.worker.main import Worker


@dataclass(frozen=True)
class Delivery:
    """
    A message claimed by a worker.

    Carries the message hash and the worker it was delivered to, so the
    lease operations never need the hash passed back in.
    """

    message_hash: str
    message: bytes
    topics: str | None
    owner: str
    requeued: bool
    worker: "Worker" = field(repr=False, compare=False)

    @classmethod
    def from_record(cls, record: MessageRecord, worker: "Worker") -> "Delivery":
        return cls(
            message_hash=record.hash,
            message=record.payload,
            topics=record.topics,
            owner=worker.owner,
            requeued=record.requeued,
            worker=worker,
        )

    async def heartbeat(self) -> bool | None:
        """Renew the lease. False once the lease is lost, None on store error."""
        return await self.worker.heartbeat(self.message_hash)

    async def requeue(self) -> bool:
        """Release the message for redelivery."""
        return await self.worker.requeue(self.message_hash)

    async def remove(self) -> bool:
        """Delete the message, requeueing it if the delete does not happen."""
        return await self.worker.remove(self.message_hash)

    def context(self) -> MessageContext:
        """Build the context handed to message handlers."""
        return MessageContext(
            message_hash=self.message_hash,
            payload=self.message,
            topics=self.topics,
            owner=self.owner,
        )
