"""Top-level settings for the dispatch service."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from infrastructure.configuration.infrastructure import (
    CircuitBreakerSettings,
    DispatchSettings,
)

_SECTIONS = {
    "dispatch": DispatchSettings,
    "circuit_breaker": CircuitBreakerSettings,
}


class Settings(BaseSettings):
    """Application settings with one nested section per concern.

    Environment Variables:
        PREFIX: Deployment prefix; empty means production
        LOG_LEVEL: DEBUG, INFO, WARNING or ERROR
        GIT_SHA: Build revision, stamped on every log line

    Sections (``dispatch``, ``circuit_breaker``) read their own variables
    and can be overridden by passing an instance:

        Settings(circuit_breaker=CircuitBreakerSettings(failure_threshold=3))
    """

    PREFIX: str = ""
    LOG_LEVEL: str = "INFO"
    GIT_SHA: str = "Unknown"

    dispatch: DispatchSettings
    circuit_breaker: CircuitBreakerSettings

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    def __init__(self, **kwargs):
        for name, section in _SECTIONS.items():
            kwargs.setdefault(name, section())
        super().__init__(**kwargs)

    @property
    def is_production(self) -> bool:
        return not self.PREFIX


settings = Settings()
