"""Notification dispatch engine.

Orchestrates a single outbound message through its stages:

    received -> gated -> rendered -> delivering -> {sent, failed}

1. received: the command is validated and its template resolved (email)
2. gated: PreferenceGate and QuietHoursCalculator decide if it may go now
3. rendered: TemplateCache renders subject/html/text (email)
4. delivering: the channel adapter is called through the channel's breaker
5. sent/failed: the MessageRecord is updated and MESSAGE_SENT is published

Every delivery-path failure comes back as a DispatchResult with
``success=False``; nothing raised by one message can abort another.
Only caller misuse on queries (unknown message id, illegal status
transition) is raised.

Usage:
    engine = DispatchEngine(
        adapters={Channel.EMAIL: email_adapter, Channel.SMS: sms_adapter},
        event_sink=InProcessEventSink(),
        user_directory=directory,
    )

    result = await engine.send_email(
        SendEmailCommand(to="john@example.com", template="welcome", data={"name": "John"})
    )
    if not result.success:
        logger.warning("welcome_email_failed", error=result.error)
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from infrastructure.events import MESSAGE_SENT, Event, EventSink
from infrastructure.logging import bind_request_context, get_module_logger
from infrastructure.notifications.channels.base import ChannelAdapter, UserDirectory
from infrastructure.notifications.errors import (
    InvalidStatusTransitionError,
    MissingContactError,
    NoDeviceTokensError,
    NotificationError,
    PreferenceDeniedError,
    ProviderError,
    QuietHoursError,
)
from infrastructure.notifications.models import (
    BatchResult,
    Channel,
    DeliveryReceipt,
    DispatchResult,
    EmailMessage,
    MessageFilter,
    MessagePage,
    MessageRecord,
    MessageStatus,
    MultiChannelResult,
    NotificationPriority,
    PushMessage,
    RenderedTemplate,
    SendEmailCommand,
    SendMultiChannelCommand,
    SendPushCommand,
    SendSmsCommand,
    SmsMessage,
    Template,
    UserPreferences,
    describe_validation_error,
    new_id,
    utcnow,
)
from infrastructure.notifications.preferences import PreferenceGate
from infrastructure.notifications.quiet_hours import QuietHoursCalculator
from infrastructure.notifications.store import (
    MessageStore,
    PreferenceStore,
    TemplateRegistry,
)
from infrastructure.notifications.templating import TemplateCache
from infrastructure.resilience import (
    CircuitBreakerOpenError,
    CircuitBreakerTimeoutError,
    DeliveryCircuitBreaker,
)

logger = get_module_logger()

DEFAULT_BATCH_SIZE = 100
USER_DIRECTORY_BREAKER = "user-directory"

# Errors that are expected outcomes of a dispatch attempt
DELIVERY_ERRORS = (NotificationError, CircuitBreakerOpenError, CircuitBreakerTimeoutError)


def breaker_name(channel: Channel) -> str:
    return f"{channel.value}-service"


class DispatchEngine:
    """Decides, renders, delivers and records outbound notifications.

    Args:
        adapters: Channel adapter per channel
        event_sink: Receives MESSAGE_SENT events; None disables publishing
        user_directory: Resolves user profiles (push tokens, multi-channel contacts)
        breakers: Circuit breaker per channel; missing ones are created
        directory_breaker: Circuit breaker around the user directory
        templates: Template registry
        preferences: User preference store
        messages: Message record store
        template_cache: Compiled template cache (resolves ids via templates)
        gate: Preference gate
        quiet_hours: Quiet-hours calculator
        batch_size: Items dispatched concurrently per batch chunk
        urgent_bypasses_quiet_hours: Urgent email/SMS skip the quiet-hours gate
        clock: Returns the current UTC instant
    """

    def __init__(
        self,
        adapters: Mapping[Union[Channel, str], ChannelAdapter],
        event_sink: Optional[EventSink] = None,
        user_directory: Optional[UserDirectory] = None,
        breakers: Optional[Mapping[Union[Channel, str], DeliveryCircuitBreaker]] = None,
        directory_breaker: Optional[DeliveryCircuitBreaker] = None,
        templates: Optional[TemplateRegistry] = None,
        preferences: Optional[PreferenceStore] = None,
        messages: Optional[MessageStore] = None,
        template_cache: Optional[TemplateCache] = None,
        gate: Optional[PreferenceGate] = None,
        quiet_hours: Optional[QuietHoursCalculator] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        urgent_bypasses_quiet_hours: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self.adapters: Dict[Channel, ChannelAdapter] = {
            Channel(key): adapter for key, adapter in adapters.items()
        }
        self.event_sink = event_sink
        self.user_directory = user_directory

        given = {Channel(key): cb for key, cb in (breakers or {}).items()}
        self.breakers: Dict[Channel, DeliveryCircuitBreaker] = {
            channel: given.get(channel) or DeliveryCircuitBreaker(breaker_name(channel))
            for channel in Channel
        }
        self.directory_breaker = directory_breaker or DeliveryCircuitBreaker(
            USER_DIRECTORY_BREAKER
        )

        self.templates = templates if templates is not None else TemplateRegistry()
        self.preferences = preferences if preferences is not None else PreferenceStore()
        self.messages = messages if messages is not None else MessageStore()
        if template_cache is None:
            template_cache = TemplateCache(registry=self.templates)
        elif template_cache.registry is None:
            template_cache.registry = self.templates
        self.template_cache = template_cache
        self.gate = gate if gate is not None else PreferenceGate()
        self.quiet_hours = quiet_hours if quiet_hours is not None else QuietHoursCalculator()
        self.batch_size = batch_size
        self.urgent_bypasses_quiet_hours = urgent_bypasses_quiet_hours
        self._clock = clock

        logger.info(
            "dispatch_engine_initialized",
            channels=sorted(c.value for c in self.adapters),
            batch_size=batch_size,
            events_enabled=event_sink is not None,
        )

    def register_adapter(
        self, channel: Union[Channel, str], adapter: ChannelAdapter
    ) -> None:
        """Attach (or replace) the provider adapter for a channel."""
        channel = Channel(channel)
        self.adapters[channel] = adapter
        logger.info("channel_adapter_registered", channel=channel.value)

    # Sending

    async def send_email(self, command: SendEmailCommand) -> DispatchResult:
        """Render a registered template and send it by email."""
        channel = Channel.EMAIL
        message_id = command.message_id or new_id("msg")

        with bind_request_context(
            message_id=message_id, channel=channel.value, user_id=command.user_id
        ):
            try:
                template = self.templates.get(command.template)
                self._authorize(
                    channel,
                    command.user_id or command.to,
                    command.category,
                    urgent=command.priority == NotificationPriority.URGENT,
                )
                rendered = self.template_cache.render_template(template, command.data)
                message = EmailMessage(
                    message_id=message_id,
                    to=command.to,
                    subject=rendered.subject,
                    html=rendered.html,
                    text=rendered.text,
                    priority=command.priority,
                    template_id=template.template_id,
                )
                record = MessageRecord(
                    message_id=message_id,
                    channel=channel,
                    recipient=command.to,
                    priority=command.priority,
                    template_id=template.template_id,
                    user_id=command.user_id,
                    created_at=self._clock(),
                )
                return await self._deliver(record, message, rendered)
            except Exception as e:
                return self._failure(channel, e)

    async def send_sms(self, command: SendSmsCommand) -> DispatchResult:
        """Send literal text by SMS."""
        channel = Channel.SMS
        message_id = command.message_id or new_id("msg")

        with bind_request_context(
            message_id=message_id, channel=channel.value, user_id=command.user_id
        ):
            try:
                self._authorize(
                    channel,
                    command.user_id or command.to,
                    command.category,
                    urgent=command.urgent,
                )
                message = SmsMessage(
                    message_id=message_id,
                    to=command.to,
                    body=command.message,
                    urgent=command.urgent,
                )
                record = MessageRecord(
                    message_id=message_id,
                    channel=channel,
                    recipient=command.to,
                    priority=(
                        NotificationPriority.URGENT
                        if command.urgent
                        else NotificationPriority.NORMAL
                    ),
                    user_id=command.user_id,
                    created_at=self._clock(),
                )
                return await self._deliver(record, message)
            except Exception as e:
                return self._failure(channel, e)

    async def send_push(self, command: SendPushCommand) -> DispatchResult:
        """Send a push notification to every device registered for a user."""
        return await self._send_push(command)

    async def _send_push(
        self, command: SendPushCommand, profile: Optional[Mapping[str, Any]] = None
    ) -> DispatchResult:
        channel = Channel.PUSH
        message_id = command.message_id or new_id("msg")

        with bind_request_context(
            message_id=message_id, channel=channel.value, user_id=command.user_id
        ):
            try:
                self._authorize(channel, command.user_id, command.category, urgent=False)
                if profile is None:
                    profile = await self._user_profile(command.user_id)
                tokens = [t for t in profile.get("deviceTokens") or [] if t]
                if not tokens:
                    raise NoDeviceTokensError(command.user_id)
                message = PushMessage(
                    message_id=message_id,
                    user_id=command.user_id,
                    device_tokens=tokens,
                    title=command.title,
                    body=command.body,
                    data=command.data,
                )
                record = MessageRecord(
                    message_id=message_id,
                    channel=channel,
                    recipient=command.user_id,
                    user_id=command.user_id,
                    created_at=self._clock(),
                )
                return await self._deliver(record, message)
            except Exception as e:
                return self._failure(channel, e)

    async def send_email_batch(
        self, commands: Sequence[SendEmailCommand]
    ) -> BatchResult:
        """Send emails in chunks of batch_size.

        Items within a chunk run concurrently; the next chunk starts once
        the whole chunk has finished. Results keep input order.
        """
        results: List[DispatchResult] = []
        chunk_count = (len(commands) + self.batch_size - 1) // self.batch_size

        for index, start in enumerate(range(0, len(commands), self.batch_size)):
            chunk = commands[start : start + self.batch_size]
            logger.debug(
                "batch_chunk_started",
                chunk=index + 1,
                chunks=chunk_count,
                size=len(chunk),
            )
            results.extend(await asyncio.gather(*(self.send_email(c) for c in chunk)))

        summary = BatchResult.from_results(results)
        logger.info(
            "batch_send_completed",
            total=len(results),
            successful=summary.successful,
            failed=summary.failed,
            chunks=chunk_count,
        )
        return summary

    async def send_multi_channel(
        self, command: SendMultiChannelCommand
    ) -> MultiChannelResult:
        """Send one notification to a user over several channels.

        The user's email address, phone number and device tokens come from
        a single directory lookup. Channels are dispatched concurrently and
        each gets its own result, in request order; one channel failing
        never stops another.
        """
        channels = list(dict.fromkeys(command.channels))
        try:
            profile = await self._user_profile(command.user_id)
        except Exception as e:
            results = [self._failure(channel, e) for channel in channels]
        else:
            results = list(
                await asyncio.gather(
                    *(self._send_on(channel, command, profile) for channel in channels)
                )
            )

        summary = MultiChannelResult.from_results(results)
        logger.info(
            "multi_channel_send_completed",
            user_id=command.user_id,
            channels=[c.value for c in channels],
            successful=sum(1 for r in results if r.success),
        )
        return summary

    async def _send_on(
        self,
        channel: Channel,
        command: SendMultiChannelCommand,
        profile: Mapping[str, Any],
    ) -> DispatchResult:
        data = command.data
        try:
            if channel is Channel.EMAIL:
                if not profile.get("email"):
                    raise MissingContactError(channel.display_name)
                return await self.send_email(
                    SendEmailCommand(
                        to=profile["email"],
                        template=command.template,
                        data=data,
                        priority=command.priority,
                        category=command.category,
                        user_id=command.user_id,
                    )
                )
            if channel is Channel.SMS:
                if not profile.get("phone"):
                    raise MissingContactError(channel.display_name)
                return await self.send_sms(
                    SendSmsCommand(
                        to=profile["phone"],
                        message=str(data.get("message") or command.template),
                        urgent=command.priority == NotificationPriority.URGENT,
                        category=command.category,
                        user_id=command.user_id,
                    )
                )
            return await self._send_push(
                SendPushCommand(
                    user_id=command.user_id,
                    title=str(data.get("title") or command.template),
                    body=str(data.get("body") or data.get("message") or ""),
                    data=data,
                    category=command.category,
                ),
                profile,
            )
        except ValidationError as e:
            return DispatchResult.failed(
                channel, describe_validation_error(e), "INVALID_COMMAND"
            )
        except NotificationError as e:
            return self._failure(channel, e)

    # Delivery internals

    def _authorize(
        self,
        channel: Channel,
        preference_key: Optional[str],
        category: Optional[str],
        urgent: bool,
    ) -> None:
        """Raise if preferences or quiet hours forbid sending now."""
        preferences = self.preferences.get(preference_key) if preference_key else None

        decision = self.gate.evaluate(channel, preferences, category)
        if not decision.allowed:
            raise PreferenceDeniedError(decision.reason)

        if urgent and self.urgent_bypasses_quiet_hours:
            return

        now = self._clock()
        if self.quiet_hours.is_in_quiet_hours(preferences, now):
            raise QuietHoursError(self.quiet_hours.next_available_time(preferences, now))

    async def _user_profile(self, user_id: str) -> Mapping[str, Any]:
        """Directory profile (``email``, ``phone``, ``deviceTokens``)."""
        if self.user_directory is None:
            raise ProviderError("No user directory configured")
        try:
            profile = await self.directory_breaker.call(
                self.user_directory.get_user, user_id
            )
        except DELIVERY_ERRORS:
            raise
        except Exception as e:
            raise ProviderError(f"User directory lookup failed: {e}") from e
        return profile or {}

    async def _deliver(
        self,
        record: MessageRecord,
        message: Any,
        rendered: Optional[RenderedTemplate] = None,
    ) -> DispatchResult:
        """Create the record, call the adapter through its breaker, record the outcome."""
        channel = record.channel
        adapter = self.adapters.get(channel)
        if adapter is None:
            raise ProviderError(f"No adapter configured for {channel.display_name}")

        self.messages.create(record)

        try:
            receipt = await self.breakers[channel].call(self._send_checked, adapter, message)
        except Exception as e:
            error = e
            if not isinstance(e, DELIVERY_ERRORS):
                logger.warning("provider_raised", error_type=type(e).__name__, exc_info=e)
                error = ProviderError(str(e) or type(e).__name__)
            await self.messages.update(
                record.message_id,
                lambda r: r.model_copy(
                    update={"status": MessageStatus.FAILED, "error": str(error)}
                ),
            )
            return self._failure(channel, error, message_id=record.message_id)

        sent = await self.messages.update(
            record.message_id,
            lambda r: r.model_copy(
                update={
                    "status": MessageStatus.SENT,
                    "sent_at": self._clock(),
                    "provider_message_id": receipt.message_id,
                }
            ),
        )
        logger.info(
            "message_sent",
            recipient=sent.recipient,
            template_id=sent.template_id,
            provider_message_id=receipt.message_id,
        )
        await self._publish_sent(sent)
        return DispatchResult.sent(channel, sent.message_id, rendered)

    @staticmethod
    async def _send_checked(adapter: ChannelAdapter, message: Any) -> DeliveryReceipt:
        receipt = await adapter.send(message)
        if not receipt.success:
            raise ProviderError(receipt.error or "Provider rejected the message")
        return receipt

    async def _publish_sent(self, record: MessageRecord) -> None:
        if self.event_sink is None:
            return
        event = Event(
            event_type=MESSAGE_SENT,
            metadata={
                "channel": record.channel.value,
                "recipient": record.recipient,
                "template": record.template_id,
                "message_id": record.message_id,
            },
        )
        try:
            await self.event_sink.publish(event)
        except Exception as e:
            logger.error(
                "event_publish_failed",
                event_type=MESSAGE_SENT,
                error=str(e),
                exc_info=True,
            )

    def _failure(
        self,
        channel: Channel,
        error: Exception,
        message_id: Optional[str] = None,
    ) -> DispatchResult:
        if not isinstance(error, DELIVERY_ERRORS):
            logger.error(
                "dispatch_unexpected_error",
                error=str(error),
                error_type=type(error).__name__,
                exc_info=error,
            )
            return DispatchResult.failed(
                channel, str(error) or type(error).__name__, "INTERNAL_ERROR", message_id
            )

        next_available_at = (
            error.next_available_at if isinstance(error, QuietHoursError) else None
        )
        logger.warning(
            "dispatch_failed",
            error=str(error),
            error_code=error.error_code,
            next_available_at=next_available_at.isoformat() if next_available_at else None,
        )
        return DispatchResult.failed(
            channel,
            str(error),
            error.error_code,
            message_id=message_id,
            next_available_at=next_available_at,
        )

    # Message lifecycle

    def get_status(self, message_id: str) -> MessageRecord:
        """
        Raises:
            MessageNotFoundError: If the id is unknown.
        """
        return self.messages.get(message_id)

    async def mark_delivered(
        self, message_id: str, delivered_at: Optional[datetime] = None
    ) -> MessageRecord:
        """Confirm provider delivery of a sent message.

        Raises:
            MessageNotFoundError: If the id is unknown.
            InvalidStatusTransitionError: If the message is not in ``sent``.
        """

        def deliver(record: MessageRecord) -> MessageRecord:
            if record.status != MessageStatus.SENT:
                raise InvalidStatusTransitionError(
                    f"Cannot mark {record.status.value} message {record.message_id} as delivered"
                )
            return record.model_copy(
                update={
                    "status": MessageStatus.DELIVERED,
                    "delivered_at": delivered_at or self._clock(),
                }
            )

        updated = await self.messages.update(message_id, deliver)
        logger.info("message_delivered", message_id=message_id)
        return updated

    async def mark_read(
        self, message_id: str, read_at: Optional[datetime] = None
    ) -> MessageRecord:
        """
        Raises:
            MessageNotFoundError: If the id is unknown.
            InvalidStatusTransitionError: If the message is not sent or delivered.
        """

        def read(record: MessageRecord) -> MessageRecord:
            if record.status not in (MessageStatus.SENT, MessageStatus.DELIVERED):
                raise InvalidStatusTransitionError(
                    f"Cannot mark {record.status.value} message {record.message_id} as read"
                )
            return record.model_copy(
                update={
                    "status": MessageStatus.READ,
                    "read_at": read_at or self._clock(),
                }
            )

        return await self.messages.update(message_id, read)

    async def mark_all_read(self, recipient: str) -> int:
        """Mark every sent or delivered message of a recipient as read.

        Returns:
            Number of records changed.
        """
        count = 0
        for record in self.messages.list_by_recipient(
            recipient, limit=len(self.messages)
        ):
            if record.status not in (MessageStatus.SENT, MessageStatus.DELIVERED):
                continue
            try:
                await self.mark_read(record.message_id)
            except InvalidStatusTransitionError:
                # Changed concurrently
                continue
            count += 1
        logger.info("messages_marked_read", recipient=recipient, count=count)
        return count

    def list_messages(
        self, recipient: str, limit: int = 20, offset: int = 0
    ) -> List[MessageRecord]:
        return self.messages.list_by_recipient(recipient, limit=limit, offset=offset)

    def message_history(
        self,
        recipient: str,
        limit: int = 20,
        offset: int = 0,
        criteria: Optional[MessageFilter] = None,
    ) -> MessagePage:
        """A page of a recipient's records, newest first, with the match total."""
        matches = self.messages.find(recipient, criteria)
        return MessagePage(
            messages=matches[offset : offset + limit],
            total=len(matches),
            limit=limit,
            offset=offset,
        )

    def unread_count(self, recipient: str) -> int:
        return self.messages.count_unread(recipient)

    def delivery_rate(self, channel: Optional[Channel] = None) -> float:
        return self.messages.delivery_rate(channel)

    # Preferences

    def update_preferences(self, user_id: str, updates: Dict[str, Any]) -> UserPreferences:
        """
        Raises:
            InvalidPreferencesError: If the update is rejected.
        """
        return self.preferences.update(user_id, updates)

    def get_preferences(self, user_id: str) -> Optional[UserPreferences]:
        return self.preferences.get(user_id)

    def next_available_time(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[datetime]:
        """When a user may next be messaged, or None if now."""
        return self.quiet_hours.next_available_time(
            self.preferences.get(user_id), now or self._clock()
        )

    # Templates

    def create_template(self, **fields: Any) -> Template:
        return self.templates.create(**fields)

    def update_template(self, template_id: str, **changes: Any) -> Template:
        return self.templates.update(template_id, **changes)

    def get_template(self, template_id: str) -> Template:
        return self.templates.get(template_id)

    def delete_template(self, template_id: str) -> bool:
        return self.templates.delete(template_id)

    def list_templates(self, channel: Optional[Channel] = None) -> List[Template]:
        return self.templates.list(channel)
