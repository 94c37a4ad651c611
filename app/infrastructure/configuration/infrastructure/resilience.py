"""Circuit breaker infrastructure settings."""

from pydantic import Field

from infrastructure.configuration.base import InfrastructureSettings


class CircuitBreakerSettings(InfrastructureSettings):
    """Circuit breaker configuration shared by every delivery channel.

    Environment Variables:
        CIRCUIT_BREAKER_FAILURE_THRESHOLD: Failures before the circuit opens (default: 5)
        CIRCUIT_BREAKER_CALL_TIMEOUT_SECONDS: Deadline for a single provider call (default: 10s)
        CIRCUIT_BREAKER_RESET_TIMEOUT_SECONDS: Time spent OPEN before probing (default: 60s)
        CIRCUIT_BREAKER_MONITORING_INTERVAL_SECONDS: Quiet period after which a
            stale failure count is cleared (default: 300s = 5min)

    State transitions:
        CLOSED -> OPEN after failure_threshold failures
        OPEN -> HALF_OPEN once reset_timeout_seconds have elapsed
        HALF_OPEN -> CLOSED on a successful trial, back to OPEN on failure
    """

    failure_threshold: int = Field(
        default=5,
        alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD",
        gt=0,
    )
    call_timeout_seconds: float = Field(
        default=10.0,
        alias="CIRCUIT_BREAKER_CALL_TIMEOUT_SECONDS",
        gt=0,
    )
    reset_timeout_seconds: float = Field(
        default=60.0,
        alias="CIRCUIT_BREAKER_RESET_TIMEOUT_SECONDS",
        ge=0,
    )
    monitoring_interval_seconds: float = Field(
        default=300.0,
        alias="CIRCUIT_BREAKER_MONITORING_INTERVAL_SECONDS",
        gt=0,
    )
