"""
Message store for database operations.
Implements the small set of conditional operations the lease protocol needs.
"""

import logging
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from sqlalchemy import DateTime, Interval, delete, func, insert, literal, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from leasequeue.config import Settings
from leasequeue.db.connection import (
    check_connection,
    close_engine,
    create_engine,
    create_schema,
    create_session_factory,
)
from leasequeue.db.models import Message, utcnow
from leasequeue.exceptions import DuplicateMessageError, StoreError
from leasequeue.types.message import MessageRecord

logger = logging.getLogger(__name__)

Match = Mapping[str, Any]


class MessageStore:
    """
    Store for the messages table.

    Every operation runs in its own session and transaction:
    - select_candidate claims one random eligible message
    - conditional_update / delete act on one hash when the match holds
    - insert detects hash collisions
    - bulk_conditional_update acts on every matching row

    Database failures are raised as StoreError, insert collisions as
    DuplicateMessageError.
    """

    def __init__(self, engine: AsyncEngine):
        """
        Initialize the store with an engine.

        Args:
            engine: The async engine bound to the queue database.
        """
        self._engine = engine
        self._session_factory = create_session_factory(engine)
        self._server_clock = engine.dialect.name == "postgresql"

    @classmethod
    def from_settings(cls, settings: Settings) -> "MessageStore":
        """Build a store with an engine created from settings."""
        return cls(create_engine(settings))

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    def clock(self) -> Any:
        """
        Current time for lease timestamps, as naive UTC.

        On PostgreSQL this is the database clock, so every worker and reaper
        stamps and judges leases against the same time source. SQLite has no
        shared server clock and uses this process's clock.
        """
        if self._server_clock:
            return func.timezone("utc", func.now(), type_=DateTime())
        return utcnow()

    def stale_cutoff(self, lifetime: timedelta) -> Any:
        """Heartbeats older than this are stale."""
        if self._server_clock:
            return self.clock() - literal(lifetime, Interval())
        return utcnow() - lifetime

    async def ping(self) -> None:
        """Verify the database is reachable (raises StoreConnectionError)."""
        await check_connection(self._engine)

    async def create_schema(self) -> None:
        await create_schema(self._engine)

    async def dispose(self) -> None:
        await close_engine(self._engine)

    @asynccontextmanager
    async def _session(
        self,
        conflict_hash: str | None = None,
    ) -> AsyncGenerator[AsyncSession]:
        """
        Session context committing on success.

        Args:
            conflict_hash: When set, integrity errors are reported as a
                collision on this hash.
        """
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if conflict_hash is not None:
                    raise DuplicateMessageError(conflict_hash) from e
                raise StoreError(str(e)) from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreError(str(e)) from e

    @staticmethod
    def _match(match: Match) -> list[ColumnElement[bool]]:
        """Translate {column: value} into equality filters (None is IS NULL)."""
        filters = []
        for name, value in match.items():
            column = Message.__table__.c[name]
            filters.append(column.is_(None) if value is None else column == value)
        return filters

    async def select_candidate(
        self,
        topics: Sequence[str],
        owner: str,
    ) -> MessageRecord | None:
        """
        Claim one random message that is not in progress.

        Eligible messages are untagged or tagged with one of the topics.
        The candidate is selected and marked as owned in the same
        transaction; the ownership update only applies while the row is
        still free, so two workers racing for it cannot both win.

        Args:
            topics: Topics the worker subscribes to.
            owner: The claiming worker's identity.

        Returns:
            The claimed message, or None if nothing was claimable.
        """
        topic_filter = Message.topics.is_(None)
        if topics:
            topic_filter = or_(Message.topics.in_(list(topics)), Message.topics.is_(None))

        async with self._session() as session:
            stmt = (
                select(Message)
                .where(Message.in_progress.is_(False), topic_filter)
                .order_by(func.random())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            result = await session.execute(stmt)
            candidate = result.scalar_one_or_none()

            if candidate is None:
                return None

            claim = (
                update(Message)
                .where(Message.hash == candidate.hash, Message.in_progress.is_(False))
                .values(in_progress=True, owner=owner, heartbeat_at=self.clock())
                .returning(Message.heartbeat_at)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(claim)
            heartbeat_at = result.scalar_one_or_none()

            if heartbeat_at is None:
                logger.debug(
                    "Lost claim race",
                    extra={"message_hash": candidate.hash},
                )
                return None

            return MessageRecord(
                hash=candidate.hash,
                payload=candidate.payload,
                topics=candidate.topics,
                in_progress=True,
                owner=owner,
                heartbeat_at=heartbeat_at,
                requeued=candidate.requeued,
            )

    async def conditional_update(
        self,
        message_hash: str,
        match: Match,
        values: Mapping[str, Any],
    ) -> int:
        """
        Update one message if it matches.

        Args:
            message_hash: The message hash.
            match: Column values the row must have.
            values: Column values to set.

        Returns:
            Number of rows affected (0 or 1).
        """
        stmt = (
            update(Message)
            .where(Message.hash == message_hash, *self._match(match))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.rowcount

    async def insert(
        self,
        message_hash: str,
        payload: bytes,
        topics: str | None,
    ) -> None:
        """
        Insert a new message.

        Raises:
            DuplicateMessageError: If a message with this hash exists.
            StoreError: On any other database failure.
        """
        stmt = insert(Message).values(
            hash=message_hash,
            payload=payload,
            topics=topics,
            in_progress=False,
            requeued=False,
            created_at=utcnow(),
        )
        async with self._session(conflict_hash=message_hash) as session:
            await session.execute(stmt)

    async def delete(self, message_hash: str, match: Match) -> int:
        """
        Delete one message if it matches.

        Returns:
            Number of rows deleted (0 or 1).
        """
        stmt = (
            delete(Message)
            .where(Message.hash == message_hash, *self._match(match))
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.rowcount

    async def bulk_conditional_update(
        self,
        match: Match,
        values: Mapping[str, Any],
        stale_after: timedelta | None = None,
    ) -> int:
        """
        Update every matching message.

        Args:
            match: Column values the rows must have.
            values: Column values to set.
            stale_after: Only rows whose last heartbeat is older than this,
                judged against the store clock.

        Returns:
            Number of rows affected.
        """
        filters = self._match(match)
        if stale_after is not None:
            filters.append(Message.heartbeat_at < self.stale_cutoff(stale_after))

        stmt = (
            update(Message)
            .where(*filters)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.rowcount

    async def get(self, message_hash: str) -> MessageRecord | None:
        """
        Get a message by hash.

        Returns:
            The message or None if not found.
        """
        async with self._session() as session:
            result = await session.execute(
                select(Message).where(Message.hash == message_hash)
            )
            message = result.scalar_one_or_none()
            return message.to_record() if message else None

    async def count(self, match: Match | None = None) -> int:
        """Count messages, optionally filtered by column values."""
        stmt = select(func.count()).select_from(Message)
        if match:
            stmt = stmt.where(*self._match(match))
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.scalar() or 0
