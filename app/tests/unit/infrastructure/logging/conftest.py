"""Fixtures for infrastructure.logging tests."""

import pytest


@pytest.fixture
def event_dict_factory():
    """Factory for structlog event dicts."""

    def _factory(event: str = "message_sent", **fields):
        return {"event": event, **fields}

    return _factory
