"""
Message-related type definitions for internal use.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel


@dataclass(frozen=True)
class MessageRecord:
    """
    Snapshot of a row in the messages table.
    Returned by the store so callers never hold a live session object.
    """

    hash: str
    payload: bytes
    topics: str | None
    in_progress: bool
    owner: str | None
    heartbeat_at: datetime | None
    requeued: bool


class HandlerResult(BaseModel):
    """
    Result of handling a delivered message.
    A successful result removes the message, anything else requeues it.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None


@dataclass
class MessageContext:
    """
    Context passed to message handlers during execution.
    """

    message_hash: str
    payload: bytes
    topics: str | None
    owner: str

    def text(self, encoding: str = "utf-8", errors: str = "strict") -> str:
        """Decode the payload."""
        return self.payload.decode(encoding, errors)
