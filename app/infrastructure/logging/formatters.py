"""Structlog processors for dispatch logs.

configure_logging() installs the redaction processors by default:
provider credentials are replaced outright, recipient addresses are
partially masked so support can still tell deliveries apart.

Usage:
    from infrastructure.logging.formatters import mask_contact_details

    configure_logging(extra_processors=[add_environment_info("staging")])
"""

from typing import Any, Callable, Dict

EventDict = Dict[str, Any]
Processor = Callable[[Any, str, EventDict], EventDict]

SENSITIVE_PATTERNS = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "authorization",
        "credential",
        "private_key",
        "cookie",
        "bearer",
    }
)

# Keys whose values identify a notification recipient
CONTACT_KEYS = frozenset({"recipient", "to", "phone_number", "email"})


def _static_fields(**fields: Any) -> Processor:
    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.update(fields)
        return event_dict

    return processor


def add_app_info(app_name: str, app_version: str = "unknown") -> Processor:
    """Stamp ``app_name`` and ``app_version`` on every entry."""
    return _static_fields(app_name=app_name, app_version=app_version)


def add_environment_info(environment: str) -> Processor:
    """Stamp ``environment`` on every entry."""
    return _static_fields(environment=environment)


def mask_sensitive_data(
    mask_value: str = "***REDACTED***",
    additional_patterns: frozenset[str] | None = None,
) -> Processor:
    """Replace values whose key names a credential.

    Matching is a case-insensitive substring test on the key, so
    ``device_tokens`` and ``SES_API_KEY`` are both caught. Nested dicts
    (a logged provider response, say) are walked too. ``None`` is left
    as is so "missing credential" stays visible.

    Args:
        mask_value: Replacement for sensitive values.
        additional_patterns: Extra key fragments to treat as sensitive.
    """
    patterns = SENSITIVE_PATTERNS | (additional_patterns or frozenset())

    def redact(mapping: Dict[str, Any]) -> Dict[str, Any]:
        redacted = {}
        for key, value in mapping.items():
            if value is not None and any(p in str(key).lower() for p in patterns):
                redacted[key] = mask_value
            elif isinstance(value, dict):
                redacted[key] = redact(value)
            else:
                redacted[key] = value
        return redacted

    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        return redact(event_dict)

    return processor


def _partial_mask(value: str) -> str:
    local, at, domain = value.partition("@")
    if at:
        return f"{local[:1]}***@{domain}"
    if len(value) <= 4:
        return "***"
    return "*" * (len(value) - 4) + value[-4:]


def mask_contact_details(keys: frozenset[str] = CONTACT_KEYS) -> Processor:
    """Partially mask recipient addresses.

    ``john@example.com`` becomes ``j***@example.com``; phone numbers keep
    their last four digits. Empty strings pass through.
    """

    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        for key in keys & event_dict.keys():
            value = event_dict[key]
            if isinstance(value, str) and value:
                event_dict[key] = _partial_mask(value)
        return event_dict

    return processor


def truncate_large_values(max_length: int = 500) -> Processor:
    """Cut string values longer than ``max_length``.

    Rendered HTML bodies end up in debug logs otherwise.
    """

    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in event_dict.items():
            if isinstance(value, str) and len(value) > max_length:
                event_dict[key] = (
                    f"{value[:max_length]}...[truncated, {len(value)} chars total]"
                )
        return event_dict

    return processor
