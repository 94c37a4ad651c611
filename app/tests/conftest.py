"""Shared pytest fixtures.

The application root (``app/``) is put on ``sys.path`` by the
``pythonpath`` pytest option in pyproject.toml, so tests import
``infrastructure.*`` directly.
"""

import pytest
import structlog

from infrastructure.resilience import clear_circuit_breakers


@pytest.fixture(autouse=True)
def reset_circuit_breaker_registry():
    """Each test starts with an empty circuit breaker registry."""
    clear_circuit_breakers()
    yield
    clear_circuit_breakers()


@pytest.fixture(autouse=True)
def clear_log_context():
    """Drop structlog context vars bound by a previous test."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
