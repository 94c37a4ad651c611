"""Fixtures for integration.infrastructure.notifications tests."""

from datetime import datetime, timezone
from typing import List

import pytest

from infrastructure.configuration import (
    CircuitBreakerSettings,
    DispatchSettings,
    Settings,
)
from infrastructure.events import InProcessEventSink
from infrastructure.notifications import (
    ChannelAdapter,
    DispatchEngine,
    NotificationService,
    StaticUserDirectory,
)
from infrastructure.notifications.models import Channel, DeliveryReceipt
from infrastructure.resilience import get_or_create_circuit_breaker

NOON_UTC = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class InMemoryProvider(ChannelAdapter):
    """Provider double that records messages and can be switched off."""

    def __init__(self, channel: Channel):
        self._channel = channel
        self.sent: List = []
        self.outage = False

    @property
    def channel_name(self) -> str:
        return self._channel.value

    async def send(self, message) -> DeliveryReceipt:
        if self.outage:
            raise ConnectionError(f"{self._channel.value} provider unreachable")
        self.sent.append(message)
        return DeliveryReceipt(
            success=True, message_id=f"{self._channel.value}-{len(self.sent)}"
        )


@pytest.fixture
def providers():
    return {channel: InMemoryProvider(channel) for channel in Channel}


@pytest.fixture
def settings():
    return Settings(
        dispatch=DispatchSettings(batch_size=10, default_currency="EUR"),
        circuit_breaker=CircuitBreakerSettings(
            failure_threshold=3, reset_timeout_seconds=60, call_timeout_seconds=1
        ),
    )


@pytest.fixture
def directory():
    return StaticUserDirectory(
        {
            "user-1": {
                "deviceTokens": ["ios-token", "android-token"],
                "email": "jane@example.com",
                "phone": "+15559876543",
            }
        }
    )


@pytest.fixture
def service(settings, providers, directory):
    """Service as the application builds it, with in-memory providers."""
    service = NotificationService(
        settings, adapters=providers, user_directory=directory
    )
    service.engine.create_template(
        template_id="order-shipped",
        subject="Order {{order.id}} shipped",
        html=(
            "<p>Hi {{uppercase name}},</p>"
            "{{#each order.items}}<li>{{this.name}}</li>{{/each}}"
            "<p>Total: {{formatCurrency order.total}}</p>"
        ),
        text="Order {{order.id}}: {{formatCurrency order.total}}",
    )
    return service


@pytest.fixture
def noon_service(settings, providers, directory):
    """Service around an engine whose clock is fixed at noon UTC."""
    breaker_kwargs = {
        "failure_threshold": settings.circuit_breaker.failure_threshold,
        "reset_timeout_seconds": settings.circuit_breaker.reset_timeout_seconds,
        "call_timeout_seconds": settings.circuit_breaker.call_timeout_seconds,
    }
    engine = DispatchEngine(
        adapters=providers,
        event_sink=InProcessEventSink(),
        user_directory=directory,
        breakers={
            channel: get_or_create_circuit_breaker(f"{channel.value}-service", **breaker_kwargs)
            for channel in Channel
        },
        clock=lambda: NOON_UTC,
    )
    engine.create_template(template_id="digest", subject="Digest", html="<p>news</p>")
    return NotificationService(settings, engine=engine)
