"""Process-wide singletons for settings and the notification service."""

from functools import lru_cache

from infrastructure.configuration import Settings
from infrastructure.notifications.service import NotificationService


@lru_cache
def get_settings() -> Settings:
    """Settings loaded once per process from the environment and ``.env``."""
    return Settings()


@lru_cache
def get_notification_service() -> NotificationService:
    """The shared NotificationService, built from get_settings().

    It starts with the in-process event sink and no channel adapters;
    provider integrations attach theirs at startup:

        service = get_notification_service()
        service.engine.register_adapter("email", SesEmailAdapter(...))
    """
    return NotificationService(get_settings())
