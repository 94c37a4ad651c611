"""Test fixtures for notification infrastructure tests."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from infrastructure.events import MemoryEventSink
from infrastructure.notifications.channels.base import StaticUserDirectory
from infrastructure.notifications.engine import DispatchEngine
from infrastructure.notifications.models import (
    Channel,
    ChannelPreferences,
    DeliveryReceipt,
    NotificationPriority,
    QuietHours,
    SendEmailCommand,
    UserPreferences,
)
from infrastructure.notifications.store import TemplateRegistry
from infrastructure.resilience import DeliveryCircuitBreaker

# Monday 2024-01-15 12:00 UTC
NOON_UTC = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def adapter_factory():
    """Factory for mock channel adapters.

    Returns:
        Factory function producing a MagicMock adapter whose ``send`` is an
        AsyncMock returning a successful DeliveryReceipt by default

    Example:
        email = adapter_factory("email")
        failing = adapter_factory("sms", side_effect=ProviderError("gateway down"))
    """

    def _factory(
        channel: str = "email",
        receipt: Optional[DeliveryReceipt] = None,
        side_effect: Any = None,
    ) -> MagicMock:
        adapter = MagicMock()
        adapter.channel_name = channel
        adapter.send = AsyncMock(
            return_value=receipt or DeliveryReceipt(success=True, message_id=f"{channel}-provider-1"),
            side_effect=side_effect,
        )
        return adapter

    return _factory


@pytest.fixture
def email_adapter(adapter_factory):
    return adapter_factory("email")


@pytest.fixture
def sms_adapter(adapter_factory):
    return adapter_factory("sms")


@pytest.fixture
def push_adapter(adapter_factory):
    return adapter_factory("push")


@pytest.fixture
def event_sink():
    return MemoryEventSink()


@pytest.fixture
def user_directory():
    return StaticUserDirectory(
        {
            "user-1": {
                "deviceTokens": ["token-a", "token-b"],
                "email": "user1@example.com",
                "phone": "+15550001111",
            },
            "user-no-devices": {"deviceTokens": []},
        }
    )


@pytest.fixture
def breaker_factory():
    """Factory for isolated circuit breakers (not registered globally)."""

    def _factory(
        name: str = "test-service",
        failure_threshold: int = 5,
        reset_timeout_seconds: float = 60.0,
        call_timeout_seconds: float = 1.0,
        **kwargs: Any,
    ) -> DeliveryCircuitBreaker:
        return DeliveryCircuitBreaker(
            name,
            failure_threshold=failure_threshold,
            reset_timeout_seconds=reset_timeout_seconds,
            call_timeout_seconds=call_timeout_seconds,
            **kwargs,
        )

    return _factory


@pytest.fixture
def template_registry():
    """Registry preloaded with the welcome and receipt templates."""
    registry = TemplateRegistry()
    registry.create(
        template_id="welcome",
        name="Welcome",
        subject="Welcome {{name}}!",
        html="<h1>Hello {{name}}</h1>",
        text="Hello {{name}}",
        variables=["name"],
    )
    registry.create(
        template_id="receipt",
        name="Receipt",
        subject="Your order {{order.id}}",
        html="<p>Total: {{formatCurrency order.total}}</p>",
        variables=["order"],
    )
    return registry


@pytest.fixture
def engine_factory(
    email_adapter,
    sms_adapter,
    push_adapter,
    event_sink,
    user_directory,
    template_registry,
    breaker_factory,
):
    """Factory for DispatchEngine instances wired to mock collaborators.

    Example:
        engine = engine_factory()
        engine = engine_factory(clock=lambda: late_evening, batch_size=10)
    """

    def _factory(**overrides: Any) -> DispatchEngine:
        kwargs: Dict[str, Any] = {
            "adapters": {
                Channel.EMAIL: email_adapter,
                Channel.SMS: sms_adapter,
                Channel.PUSH: push_adapter,
            },
            "event_sink": event_sink,
            "user_directory": user_directory,
            "breakers": {
                channel: breaker_factory(f"{channel.value}-service")
                for channel in Channel
            },
            "directory_breaker": breaker_factory("user-directory"),
            "templates": template_registry,
            "clock": lambda: NOON_UTC,
        }
        kwargs.update(overrides)
        return DispatchEngine(**kwargs)

    return _factory


@pytest.fixture
def engine(engine_factory):
    return engine_factory()


@pytest.fixture
def preferences_factory():
    """Factory for UserPreferences.

    Example:
        prefs = preferences_factory(email_enabled=False)
        prefs = preferences_factory(quiet_hours=QuietHours(timezone="America/New_York"))
    """

    def _factory(
        user_id: str = "user-1",
        email_enabled: bool = True,
        sms_enabled: bool = True,
        push_enabled: bool = True,
        categories: Optional[Dict[str, bool]] = None,
        quiet_hours: Optional[QuietHours] = None,
    ) -> UserPreferences:
        return UserPreferences(
            user_id=user_id,
            email=ChannelPreferences(enabled=email_enabled, categories=dict(categories or {})),
            sms=ChannelPreferences(enabled=sms_enabled, categories=dict(categories or {})),
            push=ChannelPreferences(enabled=push_enabled, categories=dict(categories or {})),
            quiet_hours=quiet_hours,
        )

    return _factory


@pytest.fixture
def email_command_factory():
    """Factory for SendEmailCommand instances."""

    def _factory(
        to: str = "john@example.com",
        template: str = "welcome",
        data: Optional[Dict[str, Any]] = None,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        **kwargs: Any,
    ) -> SendEmailCommand:
        return SendEmailCommand(
            to=to,
            template=template,
            data={"name": "John"} if data is None else data,
            priority=priority,
            **kwargs,
        )

    return _factory


@pytest.fixture
def email_batch(email_command_factory):
    """Factory for a list of email commands with distinct recipients."""

    def _factory(count: int) -> List[SendEmailCommand]:
        return [
            email_command_factory(to=f"user{i}@example.com", data={"name": f"User {i}"})
            for i in range(count)
        ]

    return _factory
