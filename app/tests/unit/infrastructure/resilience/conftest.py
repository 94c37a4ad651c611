"""Fixtures for infrastructure resilience tests.

Level: Component-level fixtures for resilience module
"""

import pytest

from infrastructure.resilience.circuit_breaker import DeliveryCircuitBreaker


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker_factory(clock):
    """Factory for DeliveryCircuitBreaker instances driven by the fake clock.

    Returns:
        Factory function accepting DeliveryCircuitBreaker keyword overrides
    """

    def _factory(name: str = "test-service", **kwargs) -> DeliveryCircuitBreaker:
        kwargs.setdefault("failure_threshold", 3)
        kwargs.setdefault("reset_timeout_seconds", 60.0)
        kwargs.setdefault("call_timeout_seconds", 1.0)
        kwargs.setdefault("monitoring_interval_seconds", 300.0)
        return DeliveryCircuitBreaker(name, clock=clock, **kwargs)

    return _factory


@pytest.fixture
def succeed():
    async def _succeed(value="ok"):
        return value

    return _succeed


@pytest.fixture
def fail():
    async def _fail(message="provider down"):
        raise RuntimeError(message)

    return _fail
