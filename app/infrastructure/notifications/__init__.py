"""Notification dispatch.

Delivers notifications by email, SMS and push while honoring per-user
preferences and quiet hours, isolating provider failures behind circuit
breakers.

Usage:
    from infrastructure.notifications import (
        DispatchEngine,
        SendEmailCommand,
        Channel,
    )

    engine = DispatchEngine(adapters={Channel.EMAIL: email_adapter})
    engine.create_template(
        template_id="welcome", subject="Welcome {{name}}!", html="<p>Hi {{name}}</p>"
    )

    result = await engine.send_email(
        SendEmailCommand(to="john@example.com", template="welcome", data={"name": "John"})
    )
    logger.info("welcome_sent", success=result.success, message_id=result.message_id)
"""

# Models
from infrastructure.notifications.models import (
    BatchResult,
    Channel,
    ChannelPreferences,
    DeliveryReceipt,
    DispatchResult,
    EmailMessage,
    MessageFilter,
    MessagePage,
    MessageRecord,
    MessageStatus,
    MessageStatusView,
    MultiChannelResult,
    NotificationPriority,
    PushMessage,
    QuietHours,
    RenderedTemplate,
    SendEmailCommand,
    SendMultiChannelCommand,
    SendPushCommand,
    SendSmsCommand,
    SmsMessage,
    Template,
    UserPreferences,
)

# Errors
from infrastructure.notifications.errors import (
    DuplicateMessageError,
    InvalidPreferencesError,
    InvalidStatusTransitionError,
    MessageNotFoundError,
    MissingContactError,
    NoDeviceTokensError,
    NotificationError,
    PreferenceDeniedError,
    ProviderError,
    QuietHoursError,
    TemplateCompileError,
    TemplateNotFoundError,
)

# Collaborator contracts
from infrastructure.notifications.channels.base import (
    ChannelAdapter,
    StaticUserDirectory,
    UserDirectory,
)

# Core components
from infrastructure.notifications.templating import TemplateCache
from infrastructure.notifications.preferences import PreferenceGate
from infrastructure.notifications.quiet_hours import QuietHoursCalculator
from infrastructure.notifications.store import (
    MessageStore,
    PreferenceStore,
    TemplateRegistry,
)
from infrastructure.notifications.engine import DispatchEngine
from infrastructure.notifications.service import NotificationService

__all__ = [
    # Models
    "BatchResult",
    "Channel",
    "ChannelPreferences",
    "DeliveryReceipt",
    "DispatchResult",
    "EmailMessage",
    "MessageFilter",
    "MessagePage",
    "MessageRecord",
    "MessageStatus",
    "MessageStatusView",
    "MultiChannelResult",
    "NotificationPriority",
    "PushMessage",
    "QuietHours",
    "RenderedTemplate",
    "SendEmailCommand",
    "SendMultiChannelCommand",
    "SendPushCommand",
    "SendSmsCommand",
    "SmsMessage",
    "Template",
    "UserPreferences",
    # Errors
    "NotificationError",
    "TemplateNotFoundError",
    "TemplateCompileError",
    "PreferenceDeniedError",
    "QuietHoursError",
    "NoDeviceTokensError",
    "MissingContactError",
    "ProviderError",
    "MessageNotFoundError",
    "DuplicateMessageError",
    "InvalidStatusTransitionError",
    "InvalidPreferencesError",
    # Contracts
    "ChannelAdapter",
    "UserDirectory",
    "StaticUserDirectory",
    # Components
    "TemplateCache",
    "PreferenceGate",
    "QuietHoursCalculator",
    "TemplateRegistry",
    "PreferenceStore",
    "MessageStore",
    "DispatchEngine",
    "NotificationService",
]
