"""
Unit tests for message handlers.
"""

import pytest

from leasequeue.types.message import HandlerResult, MessageContext
from leasequeue.worker import handlers
from leasequeue.worker.handlers import (
    execute_message,
    get_handler,
    handle_echo,
    handle_fail,
    list_handlers,
    register_handler,
)


class TestMessageHandlers:
    """Tests for message handlers."""

    @pytest.fixture
    def message_context(self) -> MessageContext:
        """Create a test message context."""
        return MessageContext(
            message_hash="a" * 64,
            payload=b"hello",
            topics="echo",
            owner="test-worker",
        )

    @pytest.fixture
    def scratch_registry(self, monkeypatch: pytest.MonkeyPatch):
        """Isolate handlers registered by a test."""
        monkeypatch.setattr(handlers, "_handlers", dict(handlers._handlers))

    def test_list_handlers(self):
        """Test listing registered handlers."""
        registered = list_handlers()

        assert "echo" in registered
        assert "fail" in registered

    def test_get_handler_exists(self):
        handler = get_handler("echo")
        assert handler == handle_echo

    def test_get_handler_not_exists(self):
        assert get_handler("nonexistent") is None

    async def test_echo_handler(self, message_context: MessageContext):
        """Test the echo handler."""
        result = await handle_echo(message_context)

        assert result.success is True
        assert result.output == {"size": 5, "echo": "hello"}

    async def test_failing_handler(self, message_context: MessageContext):
        """Test the failing handler."""
        result = await handle_fail(message_context)

        assert result.success is False
        assert "Intentional failure" in result.error

    async def test_execute_message_with_registered_topic(self, message_context: MessageContext):
        result = await execute_message(message_context)

        assert result.success is True

    async def test_execute_message_without_handler(self, message_context: MessageContext):
        """Test a topic nobody handles fails the message."""
        message_context.topics = "nonexistent"

        result = await execute_message(message_context)

        assert result.success is False
        assert "No handler registered" in result.error

    @pytest.mark.usefixtures("scratch_registry")
    async def test_execute_message_handler_raises(self, message_context: MessageContext):
        """Test a raising handler is turned into a failed result."""

        @register_handler("explodes")
        async def explode(context: MessageContext) -> HandlerResult:
            raise RuntimeError("kaboom")

        message_context.topics = "explodes"
        result = await execute_message(message_context)

        assert result.success is False
        assert result.error == "Handler exception: kaboom"

    @pytest.mark.usefixtures("scratch_registry")
    async def test_untagged_handler(self, message_context: MessageContext):
        """Test untagged messages use the handler registered for None."""

        @register_handler(None)
        async def untagged(context: MessageContext) -> HandlerResult:
            return HandlerResult(success=True, output={"text": context.text()})

        message_context.topics = None
        result = await execute_message(message_context)

        assert result.output == {"text": "hello"}
