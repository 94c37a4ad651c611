"""Infrastructure settings __init__ - exports all infrastructure settings."""

from infrastructure.configuration.infrastructure.dispatch import DispatchSettings
from infrastructure.configuration.infrastructure.resilience import (
    CircuitBreakerSettings,
)

__all__ = [
    "DispatchSettings",
    "CircuitBreakerSettings",
]
