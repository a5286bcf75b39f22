"""
Type definitions for the lease queue.
"""

from leasequeue.types.message import (
    HandlerResult,
    MessageContext,
    MessageRecord,
)

__all__ = [
    "MessageRecord",
    "MessageContext",
    "HandlerResult",
]
