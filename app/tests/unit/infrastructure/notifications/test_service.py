"""Unit tests for the NotificationService command facade."""

from datetime import datetime, timezone

import pytest

from infrastructure.configuration import (
    CircuitBreakerSettings,
    DispatchSettings,
    Settings,
)
from infrastructure.notifications.errors import (
    InvalidStatusTransitionError,
    MessageNotFoundError,
)
from infrastructure.notifications.models import Channel
from infrastructure.notifications.service import NotificationService
from infrastructure.resilience import get_circuit_breaker


@pytest.fixture
def settings():
    return Settings(
        dispatch=DispatchSettings(batch_size=2, default_currency="EUR"),
        circuit_breaker=CircuitBreakerSettings(failure_threshold=2, call_timeout_seconds=1),
    )


@pytest.fixture
def service(settings, email_adapter, sms_adapter, push_adapter, event_sink, user_directory):
    service = NotificationService(
        settings,
        adapters={"email": email_adapter, "sms": sms_adapter, "push": push_adapter},
        event_sink=event_sink,
        user_directory=user_directory,
    )
    service.engine.create_template(
        template_id="welcome", subject="Welcome {{name}}!", html="<p>{{name}}</p>"
    )
    return service


@pytest.fixture
def engine_service(settings, engine):
    """Service wrapping the deterministic-clock engine fixture."""
    return NotificationService(settings, engine=engine)


def email(to="john@example.com", **extra):
    return {"to": to, "template": "welcome", "data": {"name": "John"}, **extra}


@pytest.mark.unit
class TestServiceWiring:
    def test_breakers_come_from_shared_registry(self, service):
        for channel in Channel:
            breaker = get_circuit_breaker(f"{channel.value}-service")
            assert service.engine.breakers[channel] is breaker
            assert breaker.failure_threshold == 2
            assert breaker.call_timeout_seconds == 1
        assert service.engine.directory_breaker is get_circuit_breaker("user-directory")

    def test_dispatch_settings_applied(self, service):
        assert service.engine.batch_size == 2
        assert service.engine.urgent_bypasses_quiet_hours is True
        assert service.engine.template_cache.render("{{formatCurrency 5}}") == "€5.00"
        assert service.engine.template_cache.registry is service.engine.templates

    def test_supplied_engine_is_used(self, engine_service, engine):
        assert engine_service.engine is engine

    def test_list_commands(self, service):
        assert service.list_commands() == [
            "BATCH_SEND_EMAIL",
            "GET_MESSAGE_STATUS",
            "GET_UNREAD_COUNT",
            "GET_USER_NOTIFICATIONS",
            "MARK_AS_READ",
            "MARK_DELIVERED",
            "SEND_EMAIL",
            "SEND_MULTI_CHANNEL",
            "SEND_PUSH",
            "SEND_SMS",
            "UPDATE_PREFERENCES",
        ]

    @pytest.mark.asyncio
    async def test_unknown_command_type_raises(self, service):
        with pytest.raises(ValueError, match="Unknown command type: DELETE_EVERYTHING"):
            await service.handle({"type": "DELETE_EVERYTHING", "payload": {}})


@pytest.mark.unit
class TestSendCommands:
    @pytest.mark.asyncio
    async def test_send_email(self, service, event_sink):
        response = await service.handle({"type": "SEND_EMAIL", "payload": email()})

        assert response["success"] is True
        assert response["messageId"].startswith("msg_")
        assert response["channel"] == "email"
        assert response["rendered"]["subject"] == "Welcome John!"
        assert "error" not in response
        assert len(event_sink.events) == 1

    @pytest.mark.asyncio
    async def test_send_email_soft_failure(self, service):
        service.engine.update_preferences("john@example.com", {"email": {"enabled": False}})

        response = await service.handle({"type": "SEND_EMAIL", "payload": email()})

        assert response == {
            "success": False,
            "error": "User has disabled email notifications",
            "errorCode": "PREFERENCE_DENIED",
            "channel": "email",
        }

    @pytest.mark.asyncio
    async def test_invalid_email_address(self, service, email_adapter):
        response = await service.handle(
            {"type": "SEND_EMAIL", "payload": email(to="not-an-address")}
        )

        assert response["success"] is False
        assert response["errorCode"] == "INVALID_COMMAND"
        assert "to" in response["error"]
        email_adapter.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_template_field(self, service):
        response = await service.handle(
            {"type": "SEND_EMAIL", "payload": {"to": "john@example.com"}}
        )

        assert response["errorCode"] == "INVALID_COMMAND"
        assert "template" in response["error"]

    @pytest.mark.asyncio
    async def test_send_sms(self, service, sms_adapter):
        response = await service.handle(
            {"type": "SEND_SMS", "payload": {"to": "+15551234567", "message": "hi", "urgent": True}}
        )

        assert response["success"] is True
        assert sms_adapter.send.await_args.args[0].urgent is True

    @pytest.mark.asyncio
    async def test_send_push_with_camel_case_user_id(self, service, push_adapter):
        response = await service.handle(
            {"type": "SEND_PUSH", "payload": {"userId": "user-1", "title": "Hi", "body": "x"}}
        )

        assert response["success"] is True
        assert push_adapter.send.await_args.args[0].device_tokens == ["token-a", "token-b"]

    @pytest.mark.asyncio
    async def test_send_push_without_devices(self, service):
        response = await service.handle(
            {"type": "SEND_PUSH", "payload": {"userId": "user-no-devices", "title": "Hi", "body": "x"}}
        )

        assert response["success"] is False
        assert response["error"] == "No device tokens found for user"

    @pytest.mark.asyncio
    async def test_batch_send_email(self, service):
        response = await service.handle(
            {
                "type": "BATCH_SEND_EMAIL",
                "payload": {
                    "emails": [
                        email("a@example.com"),
                        {**email("b@example.com"), "template": "missing"},
                        email("c@example.com"),
                    ]
                },
            }
        )

        assert response["successful"] == 2
        assert response["failed"] == 1
        assert [r["success"] for r in response["results"]] == [True, False, True]
        assert response["results"][1]["errorCode"] == "TEMPLATE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_batch_invalid_item_fails_only_its_slot(self, service, email_adapter):
        response = await service.handle(
            {
                "type": "BATCH_SEND_EMAIL",
                "payload": {
                    "emails": [
                        email("a@example.com"),
                        email(to="not-an-address"),
                        email("c@example.com"),
                    ]
                },
            }
        )

        assert response["successful"] == 2
        assert response["failed"] == 1
        assert [r["success"] for r in response["results"]] == [True, False, True]
        assert response["results"][1]["errorCode"] == "INVALID_COMMAND"
        assert response["results"][1]["channel"] == "email"
        assert response["results"][1]["error"].startswith("to:")
        assert email_adapter.send.await_count == 2
        sent_to = [call.args[0].to for call in email_adapter.send.await_args_list]
        assert sent_to == ["a@example.com", "c@example.com"]

    @pytest.mark.asyncio
    async def test_batch_without_emails_list(self, service, email_adapter):
        response = await service.handle({"type": "BATCH_SEND_EMAIL", "payload": {}})

        assert response["errorCode"] == "INVALID_COMMAND"
        assert "emails" in response["error"]
        email_adapter.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_multi_channel(self, service, email_adapter, sms_adapter, push_adapter):
        response = await service.handle(
            {
                "type": "SEND_MULTI_CHANNEL",
                "payload": {
                    "userId": "user-1",
                    "channels": ["email", "sms", "push"],
                    "template": "welcome",
                    "data": {"name": "John", "message": "Welcome aboard"},
                },
            }
        )

        assert response["success"] is True
        assert [r["channel"] for r in response["results"]] == ["email", "sms", "push"]
        assert all(r["messageId"].startswith("msg_") for r in response["results"])
        email_adapter.send.assert_awaited_once()
        sms_adapter.send.assert_awaited_once()
        push_adapter.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_send_multi_channel_partial_failure(self, service, push_adapter):
        response = await service.handle(
            {
                "type": "SEND_MULTI_CHANNEL",
                "payload": {
                    "userId": "user-no-devices",
                    "channels": ["email", "push"],
                    "template": "welcome",
                    "data": {"message": "hi"},
                },
            }
        )

        assert response["success"] is False
        assert response["results"] == [
            {
                "success": False,
                "error": "No email contact on file for user",
                "errorCode": "MISSING_CONTACT",
                "channel": "email",
            },
            {
                "success": False,
                "error": "No device tokens found for user",
                "errorCode": "NO_DEVICE_TOKENS",
                "channel": "push",
            },
        ]
        push_adapter.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_multi_channel_requires_channels(self, service):
        response = await service.handle(
            {
                "type": "SEND_MULTI_CHANNEL",
                "payload": {"userId": "user-1", "channels": [], "template": "welcome"},
            }
        )

        assert response["errorCode"] == "INVALID_COMMAND"
        assert "channels" in response["error"]


@pytest.mark.unit
class TestPreferenceCommands:
    @pytest.mark.asyncio
    async def test_update_preferences(self, service):
        response = await service.handle(
            {
                "type": "UPDATE_PREFERENCES",
                "payload": {
                    "userId": "user-1",
                    "preferences": {"email": {"categories": {"marketing": False}}},
                },
            }
        )

        assert response["success"] is True
        assert response["preferences"]["userId"] == "user-1"
        assert response["preferences"]["email"]["categories"]["marketing"] is False
        assert response["preferences"]["sms"]["categories"]["updates"] is False

    @pytest.mark.asyncio
    async def test_preferences_response_uses_camel_case(self, service):
        response = await service.handle(
            {
                "type": "UPDATE_PREFERENCES",
                "payload": {
                    "userId": "user-1",
                    "preferences": {"quietHours": {"start": "21:00", "timezone": "Europe/Paris"}},
                },
            }
        )

        preferences = response["preferences"]
        assert "user_id" not in preferences
        assert "quiet_hours" not in preferences
        assert preferences["quietHours"] == {
            "start": "21:00",
            "end": "08:00",
            "timezone": "Europe/Paris",
            "enabled": True,
        }

    @pytest.mark.asyncio
    async def test_invalid_preferences_rejected(self, service):
        response = await service.handle(
            {
                "type": "UPDATE_PREFERENCES",
                "payload": {"userId": "user-1", "preferences": {"quietHours": {"timezone": "Nowhere"}}},
            }
        )

        assert response["success"] is False
        assert response["errorCode"] == "INVALID_PREFERENCES"
        assert "Unknown timezone: Nowhere" in response["error"]
        assert service.engine.get_preferences("user-1") is None

    @pytest.mark.asyncio
    async def test_missing_user_id(self, service):
        response = await service.handle(
            {"type": "UPDATE_PREFERENCES", "payload": {"preferences": {}}}
        )

        assert response["errorCode"] == "INVALID_COMMAND"


@pytest.mark.unit
class TestStatusCommands:
    @pytest.mark.asyncio
    async def test_delivered_status_round_trip(self, engine_service):
        sent = await engine_service.handle({"type": "SEND_EMAIL", "payload": email()})

        delivered = await engine_service.handle(
            {
                "type": "MARK_DELIVERED",
                "payload": {
                    "messageId": sent["messageId"],
                    "deliveredAt": "2024-01-15T12:05:00+00:00",
                },
            }
        )
        status = await engine_service.handle(
            {"type": "GET_MESSAGE_STATUS", "payload": {"messageId": sent["messageId"]}}
        )

        assert delivered["success"] is True
        assert status["messageId"] == sent["messageId"]
        assert status["status"] == "delivered"
        assert status["sentAt"].startswith("2024-01-15T12:00:00")
        assert status["deliveredAt"].startswith("2024-01-15T12:05:00")

    @pytest.mark.asyncio
    async def test_sent_status_has_no_delivered_at(self, engine_service):
        sent = await engine_service.handle({"type": "SEND_EMAIL", "payload": email()})

        status = await engine_service.handle(
            {"type": "GET_MESSAGE_STATUS", "payload": {"messageId": sent["messageId"]}}
        )

        assert status["status"] == "sent"
        assert "deliveredAt" not in status

    @pytest.mark.asyncio
    async def test_unknown_message_raises(self, service):
        with pytest.raises(MessageNotFoundError):
            await service.handle({"type": "GET_MESSAGE_STATUS", "payload": {"messageId": "nope"}})

    @pytest.mark.asyncio
    async def test_mark_delivered_twice_raises(self, engine_service):
        sent = await engine_service.handle({"type": "SEND_EMAIL", "payload": email()})
        command = {"type": "MARK_DELIVERED", "payload": {"messageId": sent["messageId"]}}
        await engine_service.handle(command)

        with pytest.raises(InvalidStatusTransitionError):
            await engine_service.handle(command)

    @pytest.mark.asyncio
    async def test_malformed_delivered_at_is_invalid_command(self, engine_service):
        sent = await engine_service.handle({"type": "SEND_EMAIL", "payload": email()})

        response = await engine_service.handle(
            {
                "type": "MARK_DELIVERED",
                "payload": {"messageId": sent["messageId"], "deliveredAt": "yesterday-ish"},
            }
        )

        assert response["success"] is False
        assert response["errorCode"] == "INVALID_COMMAND"
        assert response["error"].startswith("deliveredAt:")
        assert engine_service.engine.get_status(sent["messageId"]).status.value == "sent"

    @pytest.mark.asyncio
    async def test_naive_delivered_at_is_stored_as_utc(self, engine_service):
        sent = await engine_service.handle({"type": "SEND_EMAIL", "payload": email()})

        await engine_service.handle(
            {
                "type": "MARK_DELIVERED",
                "payload": {"messageId": sent["messageId"], "deliveredAt": "2024-01-15T12:05:00"},
            }
        )

        record = engine_service.engine.get_status(sent["messageId"])
        assert record.delivered_at == datetime(2024, 1, 15, 12, 5, tzinfo=timezone.utc)
        assert record.delivered_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_missing_message_id_is_invalid_command(self, service):
        response = await service.handle({"type": "GET_MESSAGE_STATUS", "payload": {}})

        assert response["errorCode"] == "INVALID_COMMAND"
        assert "messageId" in response["error"]


@pytest.mark.unit
class TestInboxCommands:
    @pytest.mark.asyncio
    async def test_mark_as_read(self, engine_service):
        sent = await engine_service.handle({"type": "SEND_EMAIL", "payload": email()})
        command = {"type": "MARK_AS_READ", "payload": {"messageId": sent["messageId"]}}

        response = await engine_service.handle(command)

        assert response == {"success": True, "messageId": sent["messageId"], "status": "read"}
        with pytest.raises(InvalidStatusTransitionError):
            await engine_service.handle(command)

    @pytest.mark.asyncio
    async def test_mark_as_read_unknown_message_raises(self, service):
        with pytest.raises(MessageNotFoundError):
            await service.handle({"type": "MARK_AS_READ", "payload": {"messageId": "nope"}})

    @pytest.mark.asyncio
    async def test_get_user_notifications(self, engine_service):
        await engine_service.handle({"type": "SEND_EMAIL", "payload": email(userId="user-1")})
        await engine_service.handle({"type": "SEND_EMAIL", "payload": email(userId="user-1")})
        await engine_service.handle(
            {
                "type": "SEND_SMS",
                "payload": {"to": "+15551234567", "message": "hi", "userId": "user-1"},
            }
        )

        response = await engine_service.handle(
            {
                "type": "GET_USER_NOTIFICATIONS",
                "payload": {"userId": "user-1", "limit": 1, "filter": {"channel": "email"}},
            }
        )

        assert response["success"] is True
        assert response["total"] == 2
        assert response["limit"] == 1
        assert response["offset"] == 0
        [message] = response["messages"]
        assert message["channel"] == "email"
        assert message["userId"] == "user-1"
        assert message["createdAt"].startswith("2024-01-15T12:00:00")

    @pytest.mark.asyncio
    async def test_get_user_notifications_date_and_status_filters(self, engine_service):
        await engine_service.handle({"type": "SEND_EMAIL", "payload": email(userId="user-1")})

        later = await engine_service.handle(
            {
                "type": "GET_USER_NOTIFICATIONS",
                "payload": {"userId": "user-1", "filter": {"startDate": "2024-01-16T00:00:00Z"}},
            }
        )
        sent = await engine_service.handle(
            {
                "type": "GET_USER_NOTIFICATIONS",
                "payload": {
                    "userId": "user-1",
                    "filter": {
                        "status": "sent",
                        "startDate": "2024-01-15T00:00:00",
                        "endDate": "2024-01-15T23:59:59",
                    },
                },
            }
        )

        assert later["total"] == 0
        assert later["messages"] == []
        assert sent["total"] == 1

    @pytest.mark.asyncio
    async def test_get_user_notifications_rejects_bad_paging(self, service):
        response = await service.handle(
            {"type": "GET_USER_NOTIFICATIONS", "payload": {"userId": "user-1", "limit": 0}}
        )

        assert response["errorCode"] == "INVALID_COMMAND"
        assert response["error"].startswith("limit:")

    @pytest.mark.asyncio
    async def test_get_unread_count(self, engine_service):
        first = await engine_service.handle({"type": "SEND_EMAIL", "payload": email()})
        await engine_service.handle({"type": "SEND_EMAIL", "payload": email()})
        await engine_service.handle(
            {"type": "MARK_AS_READ", "payload": {"messageId": first["messageId"]}}
        )

        response = await engine_service.handle(
            {"type": "GET_UNREAD_COUNT", "payload": {"userId": "john@example.com"}}
        )

        assert response == {"success": True, "count": 1}
