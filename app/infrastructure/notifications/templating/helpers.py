"""Built-in template helpers.

    {{formatDate createdAt}}             -> January 5, 2024
    {{formatCurrency total}}             -> $1,234.50
    {{formatCurrency total "EUR"}}       -> €1,234.50
    {{uppercase name}} / {{lowercase name}}

Helpers never raise on odd input: missing values render as "".
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict

import arrow

from infrastructure.logging import get_module_logger

logger = get_module_logger()

# ISO 4217 code -> (symbol, fraction digits)
CURRENCY_FORMATS = {
    "USD": ("$", 2),
    "EUR": ("€", 2),
    "GBP": ("£", 2),
    "JPY": ("¥", 0),
    "CAD": ("CA$", 2),
    "AUD": ("A$", 2),
    "NZD": ("NZ$", 2),
    "CNY": ("CN¥", 2),
    "INR": ("₹", 2),
    "KRW": ("₩", 0),
    "MXN": ("MX$", 2),
    "BRL": ("R$", 2),
}

LONG_DATE_FORMAT = "MMMM D, YYYY"


def format_date(value: Any, locale: str = "en_US") -> str:
    """Format a date-like value with the locale's long month name.

    Accepts datetime/date objects, ISO 8601 strings and epoch seconds.
    """
    if value is None or value == "":
        return ""
    try:
        if isinstance(value, (datetime, date, int, float)) and not isinstance(value, bool):
            moment = arrow.get(value)
        else:
            moment = arrow.get(str(value))
        return moment.format(LONG_DATE_FORMAT, locale=locale)
    except (ValueError, TypeError, OverflowError) as e:
        logger.warning("template_date_format_failed", value=str(value), error=str(e))
        return ""


def format_currency(amount: Any, currency: Any = "USD") -> str:
    """Format an amount with its currency symbol and thousands separators."""
    if amount is None or amount == "" or isinstance(amount, bool):
        return ""
    code = str(currency or "USD").upper()
    symbol, digits = CURRENCY_FORMATS.get(code, (f"{code} ", 2))
    try:
        quantum = Decimal(1).scaleb(-digits)
        value = Decimal(str(amount)).quantize(quantum, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        logger.warning("template_currency_format_failed", amount=str(amount))
        return ""
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.{digits}f}"


def uppercase(value: Any = None) -> str:
    return "" if value is None else str(value).upper()


def lowercase(value: Any = None) -> str:
    return "" if value is None else str(value).lower()


def build_helpers(
    locale: str = "en_US", default_currency: str = "USD"
) -> Dict[str, Callable[..., Any]]:
    """Helper table bound to a locale and default currency."""

    def _format_date(value: Any = None, *_: Any) -> str:
        return format_date(value, locale=locale)

    def _format_currency(amount: Any = None, currency: Any = None, *_: Any) -> str:
        return format_currency(amount, currency or default_currency)

    return {
        "formatDate": _format_date,
        "formatCurrency": _format_currency,
        "uppercase": uppercase,
        "lowercase": lowercase,
    }
