"""
Notification channel between a worker and the code consuming it.

Two event kinds exist: `data` carries a Delivery, `error` carries the
exception raised by a failed store call. Listeners may be plain functions
or coroutine functions; a listener that raises is logged and never breaks
the worker loop that emitted the event.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from leasequeue.constants import EventType

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Any]


class EventChannel:
    """Per-worker listener registry for `data` and `error` events."""

    def __init__(self):
        self._listeners: dict[EventType, list[Listener]] = {
            event: [] for event in EventType
        }
        self._pending: set[asyncio.Task] = set()

    def on(self, event: EventType | str, listener: Listener) -> None:
        """
        Subscribe a listener.

        Raises:
            ValueError: If the event kind is not `data` or `error`.
        """
        listeners = self._listeners[EventType(event)]
        if listener not in listeners:
            listeners.append(listener)

    def off(self, event: EventType | str, listener: Listener) -> None:
        """Unsubscribe a listener."""
        listeners = self._listeners[EventType(event)]
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: EventType | str) -> int:
        return len(self._listeners[EventType(event)])

    def emit(self, event: EventType, payload: Any) -> None:
        """
        Deliver an event to every listener.

        Sync listeners run immediately; coroutine listeners are scheduled
        as tasks. An error with no listener is logged instead of dropped.
        """
        listeners = list(self._listeners[event])

        if event is EventType.ERROR and not listeners:
            logger.error(f"Unhandled queue error: {payload!r}")
            return

        for listener in listeners:
            try:
                result = listener(payload)
            except Exception:
                logger.exception(
                    "Event listener failed",
                    extra={"event": event.value},
                )
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(self._guard(event, result))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for coroutine listeners that are still running."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _guard(self, event: EventType, awaitable: Any) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception(
                "Async event listener failed",
                extra={"event": event.value},
            )
