"""
Message handlers registry and implementations.

Handlers are keyed by topic. Handlers must be idempotent - delivery is
at-least-once, so the same message may be handled again after a crash,
a lost lease or a requeue.
"""

import logging
from collections.abc import Awaitable, Callable

from leasequeue.types.message import HandlerResult, MessageContext

logger = logging.getLogger(__name__)

# Type alias for message handler functions
MessageHandler = Callable[[MessageContext], Awaitable[HandlerResult]]

# Handler registry; the None key handles untagged messages
_handlers: dict[str | None, MessageHandler] = {}


def register_handler(topic: str | None) -> Callable[[MessageHandler], MessageHandler]:
    """
    Decorator to register a message handler.

    Args:
        topic: The topic this handler processes, None for untagged messages.

    Returns:
        Decorator function.

    Example:
        @register_handler("emails")
        async def handle_email(context: MessageContext) -> HandlerResult:
            ...
    """
    def decorator(handler: MessageHandler) -> MessageHandler:
        _handlers[topic] = handler
        logger.info(f"Registered handler for topic: {topic}")
        return handler
    return decorator


def get_handler(topic: str | None) -> MessageHandler | None:
    """
    Get the handler for a topic.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(topic)


def list_handlers() -> list[str | None]:
    """List all topics with a registered handler."""
    return list(_handlers.keys())


# ============================================================================
# Built-in message handlers
# ============================================================================


@register_handler("echo")
async def handle_echo(context: MessageContext) -> HandlerResult:
    """
    Echo handler for smoke testing.

    Returns the payload size and text as output.
    """
    logger.info(
        "Echo message executing",
        extra={"message_hash": context.message_hash}
    )

    return HandlerResult(
        success=True,
        output={"size": len(context.payload), "echo": context.text(errors="replace")},
    )


@register_handler("fail")
async def handle_fail(context: MessageContext) -> HandlerResult:
    """
    Handler that always fails - for testing requeue behavior.
    """
    logger.info(
        "Failing message executing (will fail)",
        extra={"message_hash": context.message_hash}
    )

    return HandlerResult(
        success=False,
        error="Intentional failure",
    )


async def execute_message(context: MessageContext) -> HandlerResult:
    """
    Handle a message using the handler registered for its topic.

    Args:
        context: The message context.

    Returns:
        HandlerResult from the handler. A missing handler or a raising
        handler yields a failed result.
    """
    handler = get_handler(context.topics)

    if handler is None:
        logger.error(
            f"No handler for topic: {context.topics}",
            extra={"message_hash": context.message_hash}
        )
        return HandlerResult(
            success=False,
            error=f"No handler registered for topic: {context.topics}",
        )

    try:
        return await handler(context)
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"message_hash": context.message_hash, "error": str(e)}
        )
        return HandlerResult(
            success=False,
            error=f"Handler exception: {str(e)}",
        )
