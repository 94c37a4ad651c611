"""Infrastructure modules for the notification dispatch service.

Centralized infrastructure components:
- configuration: Settings management (Settings, DispatchSettings, CircuitBreakerSettings)
- logging: Structured logging (configure_logging, get_module_logger)
- events: Lifecycle event model, handler registry and sinks
- resilience: Circuit breakers guarding delivery providers
- notifications: Dispatch engine, templates, preferences and quiet hours
- services: Cached providers (get_settings, get_notification_service)
"""

# Configuration
from infrastructure.configuration.settings import settings

# Observability
from infrastructure.logging import get_module_logger

# Services
from infrastructure.services import get_settings

__all__ = [
    "settings",
    "get_module_logger",
    "get_settings",
]
