"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class EventType(StrEnum):
    """
    Notification kinds emitted by a worker.

    - DATA: a message was claimed; the payload is a Delivery
    - ERROR: a store call failed; the payload is the exception
    """

    DATA = "data"
    ERROR = "error"


class SendOutcome(StrEnum):
    """How a successful send reached the store."""

    INSERTED = "inserted"
    FLAGGED = "flagged"


# Table
MESSAGES_TABLE = "messages"

# Owner identity: random bytes, hex encoded (twice as many characters)
OWNER_TOKEN_BYTES = 64

# Default values
DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_LEASE_LIFETIME_SECONDS = 30.0
DEFAULT_SEND_CYCLE_LIMIT = 5

# Metrics names
METRIC_MESSAGES_SENT = "leasequeue_messages_sent_total"
METRIC_SEND_EXHAUSTED = "leasequeue_send_exhausted_total"
METRIC_MESSAGES_CLAIMED = "leasequeue_messages_claimed_total"
METRIC_HEARTBEATS = "leasequeue_heartbeats_total"
METRIC_MESSAGES_REQUEUED = "leasequeue_messages_requeued_total"
METRIC_MESSAGES_COMPLETED = "leasequeue_messages_completed_total"
METRIC_LEASES_RECLAIMED = "leasequeue_leases_reclaimed_total"
METRIC_STORE_ERRORS = "leasequeue_store_errors_total"

# Trace span names
SPAN_SEND_MESSAGE = "send_message"
SPAN_CLAIM_MESSAGE = "claim_message"
SPAN_PROCESS_MESSAGE = "process_message"
SPAN_RECLAIM_LEASES = "reclaim_leases"
