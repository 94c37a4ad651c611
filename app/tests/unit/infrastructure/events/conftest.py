"""Fixtures for infrastructure event system tests."""

import pytest
from datetime import datetime, timezone
from uuid import uuid4
from unittest.mock import MagicMock

from infrastructure.events.models import MESSAGE_SENT, Event
from infrastructure.events.dispatcher import clear_handlers


@pytest.fixture
def event_factory():
    """Factory for creating test events."""

    def _factory(
        event_type: str = MESSAGE_SENT,
        timestamp: datetime = None,
        correlation_id=None,
        metadata: dict = None,
    ):
        return Event(
            event_type=event_type,
            timestamp=timestamp or datetime.now(timezone.utc),
            correlation_id=correlation_id or uuid4(),
            metadata=(
                metadata
                if metadata is not None
                else {
                    "channel": "email",
                    "recipient": "john@example.com",
                    "template": "welcome",
                    "message_id": "msg-1",
                }
            ),
        )

    return _factory


@pytest.fixture(autouse=True)
def clear_event_handlers():
    """Clear event handlers before and after test."""
    clear_handlers()
    yield
    clear_handlers()


@pytest.fixture
def mock_event_handler():
    """Mock event handler function."""
    return MagicMock()
