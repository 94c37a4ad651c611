"""
Root-level conftest.py for integration tests.

Integration tests wire real components together and replace only the
system boundaries (delivery providers, the user directory) with
in-memory fakes.
"""

import pytest

from infrastructure.events import clear_handlers


@pytest.fixture(autouse=True)
def isolated_event_handlers():
    """Event handlers registered by one test never leak into another."""
    clear_handlers()
    yield
    clear_handlers()
