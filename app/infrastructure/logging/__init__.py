"""Structlog setup, per-dispatch context and redaction processors.

Modules take a logger with ``logger = get_module_logger()`` and emit
snake_case events with keyword fields. The engine wraps each send in
``bind_request_context`` so every line for one message shares its
correlation ID, message ID and channel.
"""

from infrastructure.logging.setup import (
    configure_logging,
    get_logger,
    get_module_logger,
)

from infrastructure.logging.context import (
    bind_request_context,
    get_correlation_id,
    set_correlation_id,
    clear_request_context,
)

from infrastructure.logging.formatters import (
    add_app_info,
    mask_sensitive_data,
    mask_contact_details,
    truncate_large_values,
    add_environment_info,
    SENSITIVE_PATTERNS,
    CONTACT_KEYS,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "get_module_logger",
    "bind_request_context",
    "get_correlation_id",
    "set_correlation_id",
    "clear_request_context",
    "add_app_info",
    "mask_sensitive_data",
    "mask_contact_details",
    "truncate_large_values",
    "add_environment_info",
    "SENSITIVE_PATTERNS",
    "CONTACT_KEYS",
]
