"""
Repeating timer used by the claim scanner and the stale lease reclaimer.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[object]]


class RepeatingTimer:
    """
    Run an async callback every `interval` seconds.

    The delay is measured from the end of the previous tick, so a slow
    store stretches the period instead of stacking ticks. Cancelling the
    timer stops future ticks only: a tick already running is shielded and
    finishes on its own, and a restarted timer waits for it.
    """

    def __init__(self, callback: TickCallback, interval: float, name: str):
        self._callback = callback
        self._interval = interval
        self._name = name
        self._task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        return self._name

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        """True while future ticks are scheduled."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking. No-op if already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self._name)

    def cancel(self) -> None:
        """Stop scheduling ticks. No-op if not running."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def wait_idle(self) -> None:
        """Wait for ticks that were in flight when the timer was cancelled."""
        if self._inflight:
            await asyncio.wait(set(self._inflight))

    async def _run(self) -> None:
        # A tick left over from before a cancel finishes first
        await self.wait_idle()

        while True:
            await asyncio.sleep(self._interval)

            tick = asyncio.create_task(self._tick())
            self._inflight.add(tick)
            tick.add_done_callback(self._inflight.discard)

            await asyncio.shield(tick)

    async def _tick(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("Timer tick failed", extra={"timer": self._name})
