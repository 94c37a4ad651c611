"""Dispatch engine infrastructure settings."""

from pydantic import Field

from infrastructure.configuration.base import InfrastructureSettings


class DispatchSettings(InfrastructureSettings):
    """Notification dispatch configuration.

    Environment Variables:
        NOTIFY_BATCH_SIZE: Max emails dispatched concurrently per batch chunk (default: 100)
        NOTIFY_DEFAULT_LOCALE: Locale used by template date helpers (default: en_US)
        NOTIFY_DEFAULT_CURRENCY: Currency used by formatCurrency when none is given (default: USD)
        NOTIFY_URGENT_BYPASSES_QUIET_HOURS: Let urgent sends skip quiet hours (default: True)

    Example:
        ```python
        from infrastructure.services.providers import get_settings

        settings = get_settings()
        chunk = settings.dispatch.batch_size
        ```
    """

    batch_size: int = Field(
        default=100,
        alias="NOTIFY_BATCH_SIZE",
        description="Provider-imposed ceiling on emails per batch chunk",
        gt=0,
    )
    default_locale: str = Field(
        default="en_US",
        alias="NOTIFY_DEFAULT_LOCALE",
        description="Locale for locale-aware template helpers",
    )
    default_currency: str = Field(
        default="USD",
        alias="NOTIFY_DEFAULT_CURRENCY",
        description="ISO 4217 currency code used by formatCurrency",
    )
    urgent_bypasses_quiet_hours: bool = Field(
        default=True,
        alias="NOTIFY_URGENT_BYPASSES_QUIET_HOURS",
        description="Urgent SMS and urgent-priority email skip the quiet-hours gate",
    )
