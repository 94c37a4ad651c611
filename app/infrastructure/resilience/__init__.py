"""Resilience patterns and implementations.

This module contains the failure-isolation guard used around every
delivery provider call.
"""

from infrastructure.resilience.circuit_breaker import (
    CircuitBreakerOpenError,
    CircuitBreakerTimeoutError,
    CircuitState,
    DeliveryCircuitBreaker,
    clear_circuit_breakers,
    get_all_circuit_breaker_stats,
    get_circuit_breaker,
    get_open_circuit_breakers,
    get_or_create_circuit_breaker,
    register_circuit_breaker,
)

__all__ = [
    "DeliveryCircuitBreaker",
    "CircuitBreakerOpenError",
    "CircuitBreakerTimeoutError",
    "CircuitState",
    "register_circuit_breaker",
    "get_or_create_circuit_breaker",
    "get_circuit_breaker",
    "get_all_circuit_breaker_stats",
    "get_open_circuit_breakers",
    "clear_circuit_breakers",
]
