"""
Database module.
Contains database connection, models, and the message store.
"""

from leasequeue.db.connection import (
    check_connection,
    close_engine,
    create_engine,
    create_schema,
    create_session_factory,
)
from leasequeue.db.models import Base, Message, utcnow
from leasequeue.db.store import MessageStore

__all__ = [
    "create_engine",
    "create_session_factory",
    "check_connection",
    "create_schema",
    "close_engine",
    "MessageStore",
    "Message",
    "Base",
    "utcnow",
]
