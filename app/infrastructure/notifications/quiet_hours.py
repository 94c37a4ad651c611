"""Quiet-hours window arithmetic.

All zoned-time handling for the dispatch engine lives here. The engine
passes UTC instants in and gets UTC-comparable, timezone-aware instants
back; it never needs to know the user's zone.

Usage:
    calculator = QuietHoursCalculator()

    if calculator.is_in_quiet_hours(preferences):
        retry_at = calculator.next_available_time(preferences)
"""

import re
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional, Tuple

import pytz

from infrastructure.logging import get_module_logger
from infrastructure.notifications.models import QuietHours, UserPreferences

logger = get_module_logger()

TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:MM`` string.

    Raises:
        ValueError: If the value is not a valid 24-hour time.
    """
    match = TIME_OF_DAY.match(value or "")
    if not match:
        raise ValueError(f"Invalid time of day: {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


class QuietHoursCalculator:
    """Resolves a user's do-not-disturb window around a given instant.

    A window whose end is at or before its start crosses midnight. The
    resolved window is half-open, ``[start, end)``: the end instant is the
    first moment sending is permitted again.

    Failures to interpret the window (unknown timezone, malformed time)
    are logged and treated as "not in quiet hours".

    Args:
        clock: Returns the current instant; defaults to UTC now
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def is_in_quiet_hours(
        self, preferences: Optional[UserPreferences], now: Optional[datetime] = None
    ) -> bool:
        return self._active_window(preferences, now) is not None

    def next_available_time(
        self, preferences: Optional[UserPreferences], now: Optional[datetime] = None
    ) -> Optional[datetime]:
        """When sending is next permitted, or None if permitted now."""
        now = self._normalize(now)
        window = self._active_window(preferences, now)
        if window is None:
            return None
        _, end = window
        if end <= now:
            end = self._shift_days(end, 1)
        return end

    def _active_window(
        self, preferences: Optional[UserPreferences], now: Optional[datetime]
    ) -> Optional[Tuple[datetime, datetime]]:
        quiet = preferences.quiet_hours if preferences else None
        if quiet is None or not quiet.enabled:
            return None

        now = self._normalize(now)
        try:
            start, end = self.resolve_window(quiet, now)
        except (pytz.UnknownTimeZoneError, ValueError) as e:
            logger.warning(
                "quiet_hours_check_failed",
                user_id=preferences.user_id,
                timezone=quiet.timezone,
                start=quiet.start,
                end=quiet.end,
                error=str(e),
            )
            return None

        if start <= now < end:
            return start, end
        return None

    def resolve_window(
        self, quiet: QuietHours, now: datetime
    ) -> Tuple[datetime, datetime]:
        """The concrete ``[start, end)`` window relevant to ``now``.

        Raises:
            pytz.UnknownTimeZoneError: If the timezone is not an IANA zone.
            ValueError: If start or end is not ``HH:MM``.
        """
        zone = pytz.timezone(quiet.timezone)
        start_time = parse_time_of_day(quiet.start)
        end_time = parse_time_of_day(quiet.end)

        local_now = self._normalize(now).astimezone(zone)
        today = local_now.date()
        start = zone.localize(datetime.combine(today, start_time))
        end = zone.localize(datetime.combine(today, end_time))

        if end_time <= start_time:
            if local_now >= start:
                end = zone.localize(datetime.combine(today + timedelta(days=1), end_time))
            else:
                start = zone.localize(
                    datetime.combine(today - timedelta(days=1), start_time)
                )

        return start, end

    def _normalize(self, now: Optional[datetime]) -> datetime:
        if now is None:
            now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now

    @staticmethod
    def _shift_days(moment: datetime, days: int) -> datetime:
        zone = moment.tzinfo
        naive = moment.replace(tzinfo=None) + timedelta(days=days)
        localize = getattr(zone, "localize", None)
        if localize is not None:
            return localize(naive)
        return naive.replace(tzinfo=zone)
