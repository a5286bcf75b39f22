"""
Exceptions raised by the queue.
"""


class LeaseQueueError(Exception):
    """Base exception for queue operations."""

    pass


class StoreError(LeaseQueueError):
    """
    A store call failed.

    Transient: workers report it on their error channel and keep polling.
    """

    pass


class DuplicateMessageError(StoreError):
    """Raised when an insert collides with an existing message hash."""

    def __init__(self, message_hash: str):
        super().__init__(f"Message already exists: {message_hash}")
        self.message_hash = message_hash


class StoreConnectionError(LeaseQueueError):
    """Raised when the store cannot be reached at connect time."""

    pass


class SendFailedError(LeaseQueueError):
    """Raised when a send exhausts its insert/update cycles."""

    def __init__(self, message_hash: str, cycles: int):
        super().__init__("Could not send message.")
        self.message_hash = message_hash
        self.cycles = cycles
