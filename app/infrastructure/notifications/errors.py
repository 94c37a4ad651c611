"""Notification error taxonomy.

Every error carries a stable ``error_code``. Delivery-path errors are
converted into DispatchResult failures at the engine boundary; only
caller misuse (unknown message id, illegal status transition) is raised
to the caller.
"""

from datetime import datetime
from typing import List, Optional


class NotificationError(Exception):
    """Base class for notification errors."""

    error_code = "NOTIFICATION_ERROR"


class TemplateNotFoundError(NotificationError):
    error_code = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class TemplateCompileError(NotificationError):
    """Malformed template source.

    ``snippet`` holds the first 100 characters of the offending source.
    """

    error_code = "TEMPLATE_COMPILE_ERROR"

    def __init__(self, reason: str, source: str):
        self.reason = reason
        self.snippet = source[:100]
        super().__init__(f"Template compilation failed: {reason} in {self.snippet!r}")


class PreferenceDeniedError(NotificationError):
    error_code = "PREFERENCE_DENIED"


class QuietHoursError(NotificationError):
    error_code = "QUIET_HOURS"

    def __init__(self, next_available_at: Optional[datetime]):
        self.next_available_at = next_available_at
        super().__init__("User is in quiet hours")


class NoDeviceTokensError(NotificationError):
    error_code = "NO_DEVICE_TOKENS"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("No device tokens found for user")


class ProviderError(NotificationError):
    """A delivery provider rejected or failed the send."""

    error_code = "PROVIDER_FAILURE"


class MessageNotFoundError(NotificationError):
    error_code = "MESSAGE_NOT_FOUND"

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Message not found: {message_id}")


class DuplicateMessageError(NotificationError):
    error_code = "DUPLICATE_MESSAGE"

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Message already exists: {message_id}")


class InvalidStatusTransitionError(NotificationError):
    error_code = "INVALID_STATUS_TRANSITION"


class InvalidPreferencesError(NotificationError):
    error_code = "INVALID_PREFERENCES"

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("Invalid preferences: " + "; ".join(problems))


class MissingContactError(NotificationError):
    """The user directory has no address for the requested channel."""

    error_code = "MISSING_CONTACT"

    def __init__(self, channel_name: str):
        self.channel_name = channel_name
        super().__init__(f"No {channel_name} contact on file for user")
