"""
Unit tests for the worker event channel.
"""

import logging

import pytest

from leasequeue.constants import EventType
from leasequeue.worker.events import EventChannel


class TestEventChannel:
    """Tests for EventChannel."""

    def test_on_and_emit(self):
        channel = EventChannel()
        received = []
        channel.on("data", received.append)

        channel.emit(EventType.DATA, "payload")

        assert received == ["payload"]

    def test_on_same_listener_once(self):
        channel = EventChannel()
        received = []
        channel.on(EventType.DATA, received.append)
        channel.on(EventType.DATA, received.append)

        channel.emit(EventType.DATA, 1)

        assert received == [1]
        assert channel.listener_count(EventType.DATA) == 1

    def test_off(self):
        channel = EventChannel()
        received = []
        channel.on(EventType.ERROR, received.append)
        channel.off(EventType.ERROR, received.append)

        assert channel.listener_count("error") == 0

    def test_unknown_event_rejected(self):
        """Test only data and error events exist."""
        channel = EventChannel()

        with pytest.raises(ValueError):
            channel.on("message", print)

    def test_failing_listener_does_not_stop_others(self):
        channel = EventChannel()
        received = []

        def broken(payload):
            raise RuntimeError("listener bug")

        channel.on(EventType.DATA, broken)
        channel.on(EventType.DATA, received.append)

        channel.emit(EventType.DATA, "payload")

        assert received == ["payload"]

    async def test_async_listener(self):
        channel = EventChannel()
        received = []

        async def listener(payload):
            received.append(payload)

        channel.on(EventType.DATA, listener)
        channel.emit(EventType.DATA, "payload")
        await channel.drain()

        assert received == ["payload"]

    def test_unhandled_error_is_logged(self, caplog: pytest.LogCaptureFixture):
        channel = EventChannel()

        with caplog.at_level(logging.ERROR, logger="leasequeue.worker.events"):
            channel.emit(EventType.ERROR, RuntimeError("store down"))

        assert "store down" in caplog.text
