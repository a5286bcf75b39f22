"""
Lease-based job queue

Workers share one table of pending messages. Each worker claims one message
at a time, keeps its lease alive with heartbeats, then deletes the message or
releases it for redelivery. A reaper returns messages whose owner stopped
heartbeating, and producers insert messages deduplicated by content hash.
"""

__version__ = "1.0.0"
