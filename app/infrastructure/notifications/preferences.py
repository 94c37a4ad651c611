"""User delivery preferences: gate, defaults, merge and validation."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pytz

from infrastructure.notifications.models import (
    Channel,
    ChannelPreferences,
    UserPreferences,
)
from infrastructure.notifications.quiet_hours import TIME_OF_DAY


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: Optional[str] = None


class PreferenceGate:
    """Answers whether a channel/category may be used for a user.

    The same decision table applies to every channel:

    - no preferences record: allow (absence of opt-out is not opt-out)
    - channel disabled: deny
    - explicit ``False`` override for the category on that channel: deny
    - otherwise: allow
    """

    def evaluate(
        self,
        channel: Channel,
        preferences: Optional[UserPreferences],
        category: Optional[str] = None,
    ) -> GateDecision:
        if preferences is None:
            return GateDecision(True)

        channel_prefs = preferences.for_channel(channel)
        if not channel_prefs.enabled:
            return GateDecision(
                False, f"User has disabled {channel.display_name} notifications"
            )

        if category and channel_prefs.categories.get(category) is False:
            return GateDecision(
                False,
                f"User has opted out of {category} {channel.display_name} notifications",
            )

        return GateDecision(True)

    def can_send(
        self,
        channel: Channel,
        preferences: Optional[UserPreferences],
        category: Optional[str] = None,
    ) -> bool:
        return self.evaluate(channel, preferences, category).allowed


def default_preferences(user_id: str) -> UserPreferences:
    """System defaults materialised on a user's first preference update."""
    return UserPreferences(
        user_id=user_id,
        email=ChannelPreferences(
            enabled=True,
            categories={
                "transactional": True,
                "marketing": True,
                "updates": True,
                "security": True,
            },
        ),
        sms=ChannelPreferences(
            enabled=True,
            categories={
                "transactional": True,
                "marketing": False,
                "updates": False,
                "security": True,
            },
        ),
        push=ChannelPreferences(
            enabled=True,
            categories={
                "transactional": True,
                "marketing": True,
                "updates": True,
                "security": True,
            },
        ),
    )


def merge_preferences(
    existing: UserPreferences, updates: Dict[str, Any]
) -> UserPreferences:
    """Deep-merge a partial update into existing preferences.

    Channel flags are overwritten when given; category maps are merged
    key by key so unspecified categories survive. Quiet hours are merged
    field by field when present in the update.
    """
    merged = existing.model_dump()

    for channel in Channel:
        update = updates.get(channel.value)
        if not update:
            continue
        target = merged[channel.value]
        if "enabled" in update:
            target["enabled"] = update["enabled"]
        target["categories"] = {
            **target.get("categories", {}),
            **(update.get("categories") or {}),
        }

    quiet_update = updates.get("quiet_hours", updates.get("quietHours"))
    if quiet_update:
        merged["quiet_hours"] = {**(merged.get("quiet_hours") or {}), **quiet_update}

    merged["user_id"] = existing.user_id
    return UserPreferences.model_validate(merged)


def validate_preferences(updates: Any) -> List[str]:
    """Check a partial preferences update.

    Returns:
        List of problems; empty when the update is acceptable.
    """
    if not isinstance(updates, dict):
        return ["Preferences must be an object"]

    problems = []
    for channel in Channel:
        update = updates.get(channel.value)
        if update is None:
            continue
        if not isinstance(update, dict):
            problems.append(f"{channel.value} preferences must be an object")
            continue
        if "enabled" in update and not isinstance(update["enabled"], bool):
            problems.append(f"{channel.value}.enabled must be a boolean")
        categories = update.get("categories") or {}
        if not isinstance(categories, dict) or not all(
            isinstance(v, bool) for v in categories.values()
        ):
            problems.append(f"{channel.value}.categories must map names to booleans")

    quiet = updates.get("quiet_hours", updates.get("quietHours"))
    if quiet is not None:
        if not isinstance(quiet, dict):
            problems.append("quiet_hours must be an object")
        else:
            for key in ("start", "end"):
                if key in quiet and not TIME_OF_DAY.match(str(quiet[key])):
                    problems.append(f"quiet_hours.{key} must be HH:MM")
            if "timezone" in quiet and quiet["timezone"] not in pytz.all_timezones_set:
                problems.append(f"Unknown timezone: {quiet['timezone']}")

    return problems
