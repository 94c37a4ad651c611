"""
Service providers.

Provides cached provider functions for application-scoped infrastructure.
"""

from infrastructure.services.providers import get_notification_service, get_settings

__all__ = ["get_settings", "get_notification_service"]
