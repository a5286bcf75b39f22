"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from leasequeue.config import Settings
from leasequeue.db.models import utcnow
from leasequeue.db.store import MessageStore
from leasequeue.worker.main import Worker


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """SQLite file database, one per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Create test settings with short intervals."""
    return Settings(
        database_url=database_url,
        log_level="INFO",
        log_format="console",
        topics=["t1"],
        poll_interval_seconds=0.05,
        lease_lifetime_seconds=2.0,
        heartbeat_interval_seconds=0.1,
        reclaim_interval_seconds=0.05,
        send_cycle_limit=3,
    )


@pytest_asyncio.fixture
async def store(test_settings: Settings) -> AsyncGenerator[MessageStore]:
    """Create a store with a fresh messages table."""
    store = MessageStore.from_settings(test_settings)
    await store.create_schema()

    yield store

    await store.dispose()


@pytest_asyncio.fixture
async def worker(test_settings: Settings, store: MessageStore) -> AsyncGenerator[Worker]:
    """Create a connected worker that is not polling yet."""
    worker = Worker(test_settings, store=store)
    await worker.connect()

    yield worker

    await worker.disconnect()


@pytest_asyncio.fixture
async def other_worker(test_settings: Settings, store: MessageStore) -> AsyncGenerator[Worker]:
    """A second worker sharing the same table."""
    worker = Worker(test_settings, store=store)
    await worker.connect()

    yield worker

    worker.pause_polling()


@pytest.fixture
def expire_lease(store: MessageStore) -> Callable[[str], Awaitable[int]]:
    """Simulate a crashed owner by aging the last heartbeat of a message."""

    async def expire(message_hash: str) -> int:
        return await store.conditional_update(
            message_hash,
            {},
            {"heartbeat_at": utcnow() - timedelta(minutes=5)},
        )

    return expire
