"""Handlebars-style templating for notification subjects and bodies."""

from infrastructure.notifications.templating.cache import TemplateCache
from infrastructure.notifications.templating.helpers import (
    build_helpers,
    format_currency,
    format_date,
)
from infrastructure.notifications.templating.parser import parse
from infrastructure.notifications.templating.renderer import CompiledTemplate

__all__ = [
    "TemplateCache",
    "CompiledTemplate",
    "parse",
    "build_helpers",
    "format_date",
    "format_currency",
]
