"""Notification service: command facade over the dispatch engine.

Accepts transport-agnostic commands (``{"type": ..., "payload": ...}``)
from whatever routes them here and returns JSON-ready dicts.

Usage:
    from infrastructure.services import get_settings
    from infrastructure.notifications import NotificationService

    service = NotificationService(
        get_settings(),
        adapters={"email": email_adapter, "sms": sms_adapter, "push": push_adapter},
        user_directory=directory,
    )

    response = await service.handle(
        {"type": "SEND_EMAIL", "payload": {"to": "john@example.com", "template": "welcome"}}
    )
"""

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from infrastructure.events import EventSink, InProcessEventSink
from infrastructure.logging import get_module_logger
from infrastructure.notifications.channels.base import ChannelAdapter, UserDirectory
from infrastructure.notifications.engine import (
    USER_DIRECTORY_BREAKER,
    DispatchEngine,
    breaker_name,
)
from infrastructure.notifications.errors import InvalidPreferencesError
from infrastructure.notifications.models import (
    BatchResult,
    BatchSendEmailCommand,
    Channel,
    DispatchResult,
    MarkDeliveredCommand,
    MarkReadCommand,
    MessageRef,
    MessageStatusView,
    SendEmailCommand,
    SendMultiChannelCommand,
    SendPushCommand,
    SendSmsCommand,
    UnreadCountQuery,
    UserMessagesQuery,
    describe_validation_error,
)
from infrastructure.notifications.templating import TemplateCache
from infrastructure.resilience import get_or_create_circuit_breaker

if TYPE_CHECKING:
    from infrastructure.configuration import Settings

logger = get_module_logger()

CommandHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def _invalid_command(command_type: str, error: ValidationError) -> Dict[str, Any]:
    description = describe_validation_error(error)
    logger.warning("invalid_command", command_type=command_type, error=description)
    return {
        "success": False,
        "error": description,
        "errorCode": "INVALID_COMMAND",
    }


class NotificationService:
    """Class-based notification service.

    Builds a DispatchEngine from settings (breakers from the shared
    registry, batch size, locale, urgent bypass) unless one is supplied,
    and routes commands to it.

    Args:
        settings: Settings instance (required, passed from provider)
        adapters: Channel adapters by channel name
        event_sink: Receives MESSAGE_SENT events; defaults to the in-process handler registry
        user_directory: Resolves push device tokens
        engine: Pre-built engine; when given, the other collaborators are ignored
    """

    def __init__(
        self,
        settings: "Settings",
        adapters: Optional[Mapping[Union[Channel, str], ChannelAdapter]] = None,
        event_sink: Optional[EventSink] = None,
        user_directory: Optional[UserDirectory] = None,
        engine: Optional[DispatchEngine] = None,
    ):
        self._settings = settings

        if engine is None:
            breaker_settings = settings.circuit_breaker
            breaker_kwargs = {
                "failure_threshold": breaker_settings.failure_threshold,
                "reset_timeout_seconds": breaker_settings.reset_timeout_seconds,
                "call_timeout_seconds": breaker_settings.call_timeout_seconds,
                "monitoring_interval_seconds": breaker_settings.monitoring_interval_seconds,
            }
            dispatch = settings.dispatch
            engine = DispatchEngine(
                adapters=adapters or {},
                event_sink=event_sink if event_sink is not None else InProcessEventSink(),
                user_directory=user_directory,
                breakers={
                    channel: get_or_create_circuit_breaker(
                        breaker_name(channel), **breaker_kwargs
                    )
                    for channel in Channel
                },
                directory_breaker=get_or_create_circuit_breaker(
                    USER_DIRECTORY_BREAKER, **breaker_kwargs
                ),
                template_cache=TemplateCache(
                    locale=dispatch.default_locale,
                    default_currency=dispatch.default_currency,
                ),
                batch_size=dispatch.batch_size,
                urgent_bypasses_quiet_hours=dispatch.urgent_bypasses_quiet_hours,
            )

        self._engine = engine
        self._handlers: Dict[str, CommandHandler] = {
            "SEND_EMAIL": self._send_email,
            "SEND_SMS": self._send_sms,
            "SEND_PUSH": self._send_push,
            "SEND_MULTI_CHANNEL": self._send_multi_channel,
            "BATCH_SEND_EMAIL": self._batch_send_email,
            "UPDATE_PREFERENCES": self._update_preferences,
            "MARK_DELIVERED": self._mark_delivered,
            "MARK_AS_READ": self._mark_as_read,
            "GET_MESSAGE_STATUS": self._get_message_status,
            "GET_USER_NOTIFICATIONS": self._get_user_notifications,
            "GET_UNREAD_COUNT": self._get_unread_count,
        }

    @property
    def engine(self) -> DispatchEngine:
        """Access the underlying DispatchEngine."""
        return self._engine

    def list_commands(self):
        return sorted(self._handlers)

    async def handle(self, command: Mapping[str, Any]) -> Dict[str, Any]:
        """Route a command to its handler.

        Args:
            command: ``{"type": <COMMAND>, "payload": {...}}``

        Returns:
            JSON-ready response dict

        Raises:
            ValueError: If the command type is unknown.
            MessageNotFoundError: GET_MESSAGE_STATUS, MARK_DELIVERED or
                MARK_AS_READ for an unknown id.
            InvalidStatusTransitionError: MARK_DELIVERED or MARK_AS_READ from
                a status that does not allow it.
        """
        command_type = command.get("type")
        handler = self._handlers.get(command_type)
        if handler is None:
            raise ValueError(f"Unknown command type: {command_type}")

        payload = command.get("payload") or {}
        logger.debug("handling_command", command_type=command_type)
        try:
            return await handler(payload)
        except ValidationError as e:
            return _invalid_command(command_type, e)

    async def _send_email(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._engine.send_email(SendEmailCommand.model_validate(payload))
        return _dump(result)

    async def _send_sms(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._engine.send_sms(SendSmsCommand.model_validate(payload))
        return _dump(result)

    async def _send_push(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._engine.send_push(SendPushCommand.model_validate(payload))
        return _dump(result)

    async def _send_multi_channel(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        command = SendMultiChannelCommand.model_validate(payload)
        return _dump(await self._engine.send_multi_channel(command))

    async def _batch_send_email(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Validate items one by one; an invalid item fails only its own slot."""
        items = BatchSendEmailCommand.model_validate(payload).emails
        slots: List[Optional[DispatchResult]] = []
        commands: List[SendEmailCommand] = []
        for index, item in enumerate(items):
            try:
                commands.append(SendEmailCommand.model_validate(item))
                slots.append(None)
            except ValidationError as e:
                error = describe_validation_error(e)
                logger.warning("invalid_batch_item", index=index, error=error)
                slots.append(DispatchResult.failed(Channel.EMAIL, error, "INVALID_COMMAND"))

        sent = iter((await self._engine.send_email_batch(commands)).results)
        results = [slot if slot is not None else next(sent) for slot in slots]
        return _dump(BatchResult.from_results(results))

    async def _update_preferences(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        user_id = payload.get("userId") or payload.get("user_id")
        if not user_id:
            return {
                "success": False,
                "error": "userId is required",
                "errorCode": "INVALID_COMMAND",
            }
        try:
            preferences = self._engine.update_preferences(
                user_id, payload.get("preferences") or {}
            )
        except InvalidPreferencesError as e:
            return {"success": False, "error": str(e), "errorCode": e.error_code}
        return {"success": True, "preferences": _dump(preferences)}

    async def _get_message_status(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ref = MessageRef.model_validate(payload)
        record = self._engine.get_status(ref.message_id)
        return _dump(MessageStatusView.from_record(record))

    async def _mark_delivered(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        command = MarkDeliveredCommand.model_validate(payload)
        record = await self._engine.mark_delivered(command.message_id, command.delivered_at)
        return {"success": True, **_dump(MessageStatusView.from_record(record))}

    async def _mark_as_read(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        command = MarkReadCommand.model_validate(payload)
        record = await self._engine.mark_read(command.message_id, command.read_at)
        return {"success": True, "messageId": record.message_id, "status": record.status.value}

    async def _get_user_notifications(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        query = UserMessagesQuery.model_validate(payload)
        page = self._engine.message_history(
            query.user_id, limit=query.limit, offset=query.offset, criteria=query.filter
        )
        return {"success": True, **_dump(page)}

    async def _get_unread_count(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        query = UnreadCountQuery.model_validate(payload)
        return {"success": True, "count": self._engine.unread_count(query.user_id)}
