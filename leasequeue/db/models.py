"""
SQLAlchemy database models.
Defines the messages table shared by every worker and producer.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    LargeBinary,
    String,
    false,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from leasequeue.constants import MESSAGES_TABLE
from leasequeue.types.message import MessageRecord


def utcnow() -> datetime:
    """Current time as naive UTC, the form stored in the table."""
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Message(Base):
    """
    A unit of work waiting in the queue.

    The table is the only shared state between workers. Every lease
    transition is a conditional update against one of these rows.

    Key constraints:
    - hash is the sha256 of the payload, so identical payloads collide
    - in_progress, owner and heartbeat_at together form the lease
    - requeued marks rows that must be redelivered rather than deleted
    """

    __tablename__ = MESSAGES_TABLE

    hash: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )

    payload: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
    )
    topics: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Lease management
    in_progress: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    owner: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
    )
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    requeued: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        # Index for claim polling
        Index("ix_messages_claim_poll", "in_progress", "topics"),
        # Index for stale lease reclaim
        Index("ix_messages_heartbeat", "in_progress", "heartbeat_at"),
    )

    def to_record(self) -> MessageRecord:
        """Detach the row into a plain record."""
        return MessageRecord(
            hash=self.hash,
            payload=self.payload,
            topics=self.topics,
            in_progress=self.in_progress,
            owner=self.owner,
            heartbeat_at=self.heartbeat_at,
            requeued=self.requeued,
        )

    def __repr__(self) -> str:
        return (
            f"Message(hash={self.hash[:12]}, topics={self.topics}, "
            f"in_progress={self.in_progress}, requeued={self.requeued})"
        )
