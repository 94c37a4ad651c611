"""Infrastructure configuration module - public API.

This module provides centralized configuration management for the
notification dispatch service using Pydantic BaseSettings.

Exports:
    Settings: Main settings class (for testing/overrides)
    DispatchSettings: Dispatch engine settings class
    CircuitBreakerSettings: Circuit breaker settings class

Example:
    ```python
    from infrastructure.services.providers import get_settings

    settings = get_settings()

    batch_size = settings.dispatch.batch_size
    threshold = settings.circuit_breaker.failure_threshold

    if settings.is_production:
        # Production-specific logic...
    ```
"""

from infrastructure.configuration.settings import Settings
from infrastructure.configuration.infrastructure import (
    CircuitBreakerSettings,
    DispatchSettings,
)

__all__ = ["Settings", "DispatchSettings", "CircuitBreakerSettings"]
