"""Structlog configuration and logger setup.

Dispatch logs are structured events (``message_sent``,
``circuit_breaker_opened``) with keyword fields. Recipient addresses and
device tokens flow through most of them, so the redaction processors
always run before rendering.

Usage:
    from infrastructure.logging import configure_logging, get_module_logger

    configure_logging()

    logger = get_module_logger()
    logger.info("message_sent", provider_message_id="ses-123")

Dependencies:
    - infrastructure.configuration.settings
"""

import inspect
import logging
import sys
from typing import Any, Callable, List, Optional

import structlog
from structlog.stdlib import BoundLogger

from infrastructure.configuration.settings import settings
from infrastructure.logging.formatters import (
    add_app_info,
    mask_contact_details,
    mask_sensitive_data,
    truncate_large_values,
)

APP_NAME = "notification-dispatch"

Processor = Callable[..., Any]


def _is_test_environment() -> bool:
    return "pytest" in sys.modules


def _build_processors(prod_mode: bool, extra: List[Processor]) -> List[Processor]:
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            ]
        ),
        add_app_info(APP_NAME, settings.GIT_SHA),
        mask_sensitive_data(),
        mask_contact_details(),
        truncate_large_values(),
        *extra,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if prod_mode:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def configure_logging(
    log_level: Optional[str] = None,
    is_production: Optional[bool] = None,
    extra_processors: Optional[List[Processor]] = None,
) -> BoundLogger:
    """Configure structlog over stdlib logging.

    Under pytest every record is dropped; otherwise the pipeline merges
    context vars, stamps time and callsite, redacts, then renders to the
    console in development or to JSON in production.

    Args:
        log_level: Overrides settings.LOG_LEVEL.
        is_production: Overrides settings.is_production (JSON vs console).
        extra_processors: Inserted after redaction, before rendering.

    Returns:
        The root structlog logger.
    """
    if _is_test_environment():
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        logging.basicConfig(
            format="%(message)s", level=logging.CRITICAL + 1, force=True
        )
        return structlog.stdlib.get_logger()

    prod_mode = settings.is_production if is_production is None else is_production
    level_name = (log_level or settings.LOG_LEVEL).upper()

    structlog.configure(
        processors=_build_processors(prod_mode, extra_processors or []),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s", level=getattr(logging, level_name, logging.INFO)
    )
    return structlog.stdlib.get_logger()


logger: BoundLogger = configure_logging()


def _caller_module_name(depth: int = 2) -> Optional[str]:
    frame = inspect.currentframe()
    for _ in range(depth):
        if frame is None:
            return None
        frame = frame.f_back
    module = inspect.getmodule(frame) if frame is not None else None
    return module.__name__ if module else None


def get_logger(name: Optional[str] = None) -> BoundLogger:
    """Logger bound to ``logger_name`` (the caller's module when omitted)."""
    name = name or _caller_module_name()
    return logger.bind(logger_name=name) if name else logger


def get_module_logger() -> BoundLogger:
    """Logger bound to the calling module.

    Binds ``component`` (last dotted segment) and ``module_path``, e.g.
    ``component="engine"``, ``module_path="infrastructure.notifications.engine"``.
    """
    module_name = _caller_module_name()
    if module_name is None:
        return logger.bind(component="unknown")
    return logger.bind(component=module_name.rsplit(".", 1)[-1], module_path=module_name)
