"""Notification dispatch core models.

Commands arrive at the dispatch engine as pydantic models, outbound
messages are handed to channel adapters as pydantic models, and every
delivery-path outcome comes back as a DispatchResult rather than an
exception.

Uses Pydantic BaseModel for:
- Runtime validation of inbound command payloads
- Immutable (frozen) records that are replaced, never mutated in place
- JSON-ready serialization for the command facade
"""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

# Loose local@domain.tld shape; providers do the authoritative validation
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes on the wire are taken to be UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def describe_validation_error(error: ValidationError) -> str:
    """One line per problem, ``field.path: message``."""
    return "; ".join(
        f"{'.'.join(str(p) for p in e['loc']) or 'payload'}: {e['msg']}"
        for e in error.errors()
    )


# Wire payloads use camelCase (userId, messageId); Python code uses field names
WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Channel(str, Enum):
    """Notification delivery medium."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"

    @property
    def display_name(self) -> str:
        return "SMS" if self is Channel.SMS else self.value


class NotificationPriority(str, Enum):
    """Notification priority levels.

    URGENT priority lets an email skip the quiet-hours gate when
    NOTIFY_URGENT_BYPASSES_QUIET_HOURS is enabled.
    """

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class MessageStatus(str, Enum):
    """Message lifecycle status.

    queued -> sent -> delivered -> read, or queued -> failed.
    """

    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class Template(BaseModel):
    """Message template owned by the template registry.

    Attributes:
        template_id: Stable identifier used by SEND_EMAIL commands
        name: Human-readable name
        subject: Subject line source
        html: HTML body source
        text: Optional plain-text body source
        variables: Declared variable names (informational)
        channel: Optional channel the template targets
        created_at / updated_at: Registry timestamps
    """

    model_config = ConfigDict(frozen=True)

    template_id: str
    name: str = ""
    subject: str
    html: str
    text: Optional[str] = None
    variables: List[str] = Field(default_factory=list)
    channel: Channel = Channel.EMAIL
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RenderedTemplate(BaseModel):
    """Subject and bodies rendered from a Template."""

    subject: str
    html: str
    text: Optional[str] = None


class ChannelPreferences(BaseModel):
    """Per-channel opt-in flag and sparse category overrides.

    A category missing from ``categories`` uses the channel default.
    """

    enabled: bool = True
    categories: Dict[str, bool] = Field(default_factory=dict)


class QuietHours(BaseModel):
    """Daily do-not-disturb window.

    ``start`` and ``end`` are HH:MM times of day in ``timezone``; an ``end``
    at or before ``start`` denotes a window crossing midnight. Values are
    not validated here: a malformed window is treated as "not quiet".
    """

    start: str = "22:00"
    end: str = "08:00"
    timezone: str = "UTC"
    enabled: bool = True


class UserPreferences(BaseModel):
    """Stored delivery preferences for one user."""

    model_config = WIRE_CONFIG

    user_id: str
    email: ChannelPreferences = Field(default_factory=ChannelPreferences)
    sms: ChannelPreferences = Field(default_factory=ChannelPreferences)
    push: ChannelPreferences = Field(default_factory=ChannelPreferences)
    quiet_hours: Optional[QuietHours] = None

    def for_channel(self, channel: Channel) -> ChannelPreferences:
        return getattr(self, channel.value)


class MessageRecord(BaseModel):
    """Lifecycle record of one dispatched notification.

    Records are frozen; the message store replaces them atomically per
    message_id.
    """

    model_config = ConfigDict(frozen=True, **WIRE_CONFIG)

    message_id: str
    channel: Channel
    recipient: str
    status: MessageStatus = MessageStatus.QUEUED
    priority: NotificationPriority = NotificationPriority.NORMAL
    template_id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    error: Optional[str] = None
    provider_message_id: Optional[str] = None


class MessageStatusView(BaseModel):
    """GET_MESSAGE_STATUS answer."""

    model_config = WIRE_CONFIG

    message_id: str
    status: MessageStatus
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: MessageRecord) -> "MessageStatusView":
        return cls(
            message_id=record.message_id,
            status=record.status,
            sent_at=record.sent_at,
            delivered_at=record.delivered_at,
        )


# Commands


class SendEmailCommand(BaseModel):
    """SEND_EMAIL payload."""

    model_config = WIRE_CONFIG

    to: str
    template: str
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.NORMAL
    category: Optional[str] = None
    user_id: Optional[str] = None
    message_id: Optional[str] = None

    @field_validator("to")
    @classmethod
    def validate_to(cls, v: str) -> str:
        """Ensure the recipient looks like an email address."""
        v = v.strip()
        if not EMAIL_PATTERN.match(v):
            raise ValueError(f"Invalid email address: {v}")
        return v

    @field_validator("template")
    @classmethod
    def validate_template(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Template id cannot be empty")
        return v


class SendSmsCommand(BaseModel):
    """SEND_SMS payload."""

    model_config = WIRE_CONFIG

    to: str
    message: str
    urgent: bool = False
    category: Optional[str] = None
    user_id: Optional[str] = None
    message_id: Optional[str] = None

    @field_validator("to", "message")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Field cannot be empty")
        return v


class SendPushCommand(BaseModel):
    """SEND_PUSH payload."""

    model_config = WIRE_CONFIG

    user_id: str
    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)
    category: Optional[str] = None
    message_id: Optional[str] = None

    @field_validator("user_id", "title", "body")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Field cannot be empty")
        return v


class SendMultiChannelCommand(BaseModel):
    """SEND_MULTI_CHANNEL payload.

    The user's email address and phone number come from the user
    directory. SMS text is ``data["message"]`` (else the template id);
    push uses ``data["title"]`` and ``data["body"]`` or ``data["message"]``.
    """

    model_config = WIRE_CONFIG

    user_id: str
    channels: List[Channel] = Field(min_length=1)
    template: str
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.NORMAL
    category: Optional[str] = None


class BatchSendEmailCommand(BaseModel):
    """BATCH_SEND_EMAIL payload; items are validated one by one."""

    emails: List[Dict[str, Any]]


class MessageRef(BaseModel):
    """Payload naming one message (GET_MESSAGE_STATUS)."""

    model_config = WIRE_CONFIG

    message_id: str


class MarkDeliveredCommand(MessageRef):
    delivered_at: Optional[datetime] = None

    @field_validator("delivered_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class MarkReadCommand(MessageRef):
    read_at: Optional[datetime] = None

    @field_validator("read_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class MessageFilter(BaseModel):
    """History filter; dates bound ``created_at`` inclusively."""

    model_config = WIRE_CONFIG

    channel: Optional[Channel] = None
    status: Optional[MessageStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class UserMessagesQuery(BaseModel):
    """GET_USER_NOTIFICATIONS payload."""

    model_config = WIRE_CONFIG

    user_id: str
    limit: int = Field(default=20, ge=1)
    offset: int = Field(default=0, ge=0)
    filter: MessageFilter = Field(default_factory=MessageFilter)


class UnreadCountQuery(BaseModel):
    """GET_UNREAD_COUNT payload."""

    model_config = WIRE_CONFIG

    user_id: str


# Outbound messages handed to channel adapters


class EmailMessage(BaseModel):
    """Rendered email ready for a provider."""

    message_id: str
    to: str
    subject: str
    html: str
    text: Optional[str] = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    template_id: Optional[str] = None


class SmsMessage(BaseModel):
    """SMS ready for a provider."""

    message_id: str
    to: str
    body: str
    urgent: bool = False


class PushMessage(BaseModel):
    """Push notification fanned out to a user's devices."""

    message_id: str
    user_id: str
    device_tokens: List[str]
    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)


class DeliveryReceipt(BaseModel):
    """What a channel adapter returns for a send."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


# Results


class DispatchResult(BaseModel):
    """Outcome of one dispatch attempt.

    Attributes:
        success: Whether the provider accepted the message
        message_id: Message record id (present whenever a record exists)
        error: Human-readable failure reason
        error_code: Stable failure code (PREFERENCE_DENIED, CIRCUIT_OPEN, ...)
        channel: Channel the message was routed to
        next_available_at: For quiet-hours denials, when sending is permitted
        rendered: For email, the rendered subject/bodies
    """

    model_config = WIRE_CONFIG

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    channel: Optional[Channel] = None
    next_available_at: Optional[datetime] = None
    rendered: Optional[RenderedTemplate] = None

    @classmethod
    def sent(
        cls,
        channel: Channel,
        message_id: str,
        rendered: Optional[RenderedTemplate] = None,
    ) -> "DispatchResult":
        return cls(
            success=True, channel=channel, message_id=message_id, rendered=rendered
        )

    @classmethod
    def failed(
        cls,
        channel: Optional[Channel],
        error: str,
        error_code: str,
        message_id: Optional[str] = None,
        next_available_at: Optional[datetime] = None,
    ) -> "DispatchResult":
        return cls(
            success=False,
            channel=channel,
            error=error,
            error_code=error_code,
            message_id=message_id,
            next_available_at=next_available_at,
        )


class BatchResult(BaseModel):
    """Outcome of a batch send, results in input order."""

    model_config = WIRE_CONFIG

    successful: int
    failed: int
    results: List[DispatchResult]

    @classmethod
    def from_results(cls, results: List[DispatchResult]) -> "BatchResult":
        successful = sum(1 for r in results if r.success)
        return cls(
            successful=successful, failed=len(results) - successful, results=results
        )


class MultiChannelResult(BaseModel):
    """Outcome of SEND_MULTI_CHANNEL, one result per channel in request order."""

    model_config = WIRE_CONFIG

    success: bool
    results: List[DispatchResult]

    @classmethod
    def from_results(cls, results: List[DispatchResult]) -> "MultiChannelResult":
        return cls(success=all(r.success for r in results), results=results)


class MessagePage(BaseModel):
    """One page of a recipient's history; ``total`` counts every match."""

    model_config = WIRE_CONFIG

    messages: List[MessageRecord]
    total: int
    limit: int
    offset: int
