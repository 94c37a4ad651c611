"""Per-dispatch context for structured logging.

Every log line emitted while one message moves through the engine carries
the same correlation ID, message ID and channel. Context lives in
structlog's contextvars, which asyncio copies into each task, so the
sends gathered in one batch chunk never see each other's IDs.

Usage:
    from infrastructure.logging import bind_request_context

    with bind_request_context(message_id="msg_123", channel="email"):
        logger.info("rendering_template")

Dependencies:
    - structlog.contextvars
"""

import uuid
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

import structlog

CORRELATION_ID = "correlation_id"


@contextmanager
def bind_request_context(
    correlation_id: Optional[str] = None,
    user_id: Optional[str] = None,
    message_id: Optional[str] = None,
    channel: Optional[str] = None,
    **extra_context: Any,
) -> Generator[Dict[str, Any], None, None]:
    """Bind dispatch context to all logs emitted inside the block.

    Keys that were already bound (an outer block, a batch-level
    correlation ID) get their previous values back on exit; keys new to
    this block are removed. ``None`` values are not bound.

    Args:
        correlation_id: Tracing identifier; a UUID4 is generated when omitted.
        user_id: Target user, when the command names one.
        message_id: Message record identifier.
        channel: Delivery channel (email, sms, push).
        **extra_context: Any further fields to bind.

    Yields:
        The dict of bound values.

    Example:
        with bind_request_context(message_id=record.message_id, channel="sms"):
            await breaker.call(adapter.send, message)
    """
    context = {
        CORRELATION_ID: correlation_id or str(uuid.uuid4()),
        "user_id": user_id,
        "message_id": message_id,
        "channel": channel,
        **extra_context,
    }
    context = {key: value for key, value in context.items() if value is not None}

    with structlog.contextvars.bound_contextvars(**context):
        yield context


def get_correlation_id() -> Optional[str]:
    """Correlation ID bound in the current context, if any."""
    return structlog.contextvars.get_contextvars().get(CORRELATION_ID)


def set_correlation_id(correlation_id: str) -> None:
    """Bind a correlation ID outside of a bind_request_context block."""
    structlog.contextvars.bind_contextvars(**{CORRELATION_ID: correlation_id})


def clear_request_context() -> None:
    """Drop everything bound in the current context."""
    structlog.contextvars.clear_contextvars()
