"""Integration tests for notification dispatch.

Tests end-to-end flows through NotificationService with real breakers,
stores, template cache and in-process event handlers; only the
delivery providers and user directory are in-memory doubles.

Tests cover:
- Email flow from template to MESSAGE_SENT listener and status lifecycle
- Provider outage isolation by per-channel circuit breakers
- Preferences and quiet hours gating across commands
- Batch dispatch with mixed outcomes
- Multi-channel sends feeding the user inbox and unread count
"""

import pytest

from infrastructure.events import MESSAGE_SENT, register_event_handler
from infrastructure.notifications.models import Channel, MessageStatus
from infrastructure.resilience import CircuitState, get_circuit_breaker

pytestmark = pytest.mark.integration


def order_email(to="jane@example.com", **extra):
    return {
        "type": "SEND_EMAIL",
        "payload": {
            "to": to,
            "template": "order-shipped",
            "data": {
                "name": "Jane",
                "order": {
                    "id": "A-100",
                    "total": 1234.5,
                    "items": [{"name": "Lamp"}, {"name": "Desk"}],
                },
            },
            **extra,
        },
    }


class TestEmailFlow:
    @pytest.mark.asyncio
    async def test_template_to_listener_to_lifecycle(self, service, providers):
        received = []
        register_event_handler(MESSAGE_SENT)(received.append)

        response = await service.handle(order_email())

        assert response["success"] is True
        assert response["rendered"]["subject"] == "Order A-100 shipped"
        assert "<p>Hi JANE,</p>" in response["rendered"]["html"]
        assert "<li>Lamp</li><li>Desk</li>" in response["rendered"]["html"]
        assert response["rendered"]["text"] == "Order A-100: €1,234.50"

        delivered = providers[Channel.EMAIL].sent
        assert [m.to for m in delivered] == ["jane@example.com"]
        assert delivered[0].template_id == "order-shipped"

        assert len(received) == 1
        assert received[0].metadata == {
            "channel": "email",
            "recipient": "jane@example.com",
            "template": "order-shipped",
            "message_id": response["messageId"],
        }

        await service.handle(
            {"type": "MARK_DELIVERED", "payload": {"messageId": response["messageId"]}}
        )
        read = await service.engine.mark_read(response["messageId"])

        assert read.status == MessageStatus.READ
        assert read.read_at is not None
        assert service.engine.delivery_rate(Channel.EMAIL) == 1.0

    @pytest.mark.asyncio
    async def test_compiled_templates_are_reused(self, service):
        await service.handle(order_email("a@example.com"))
        await service.handle(order_email("b@example.com"))

        stats = service.engine.template_cache.get_stats()
        assert stats["size"] == 3
        assert stats["hits"] >= 3

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_fail_send(self, service):
        def broken_listener(event):
            raise RuntimeError("analytics down")

        register_event_handler(MESSAGE_SENT)(broken_listener)

        response = await service.handle(order_email())

        assert response["success"] is True
        assert service.engine.get_status(response["messageId"]).status == MessageStatus.SENT


class TestProviderOutage:
    @pytest.mark.asyncio
    async def test_breaker_opens_and_isolates_channel(self, service, providers):
        providers[Channel.EMAIL].outage = True

        failures = [await service.handle(order_email()) for _ in range(3)]
        rejected = await service.handle(order_email())
        sms = await service.handle(
            {"type": "SEND_SMS", "payload": {"to": "+15551234567", "message": "Still here"}}
        )

        assert [f["errorCode"] for f in failures] == ["PROVIDER_FAILURE"] * 3
        assert failures[0]["error"] == "email provider unreachable"
        assert rejected["errorCode"] == "CIRCUIT_OPEN"
        assert rejected["error"].startswith("Circuit breaker 'email-service' is OPEN")
        assert get_circuit_breaker("email-service").state == CircuitState.OPEN
        assert sms["success"] is True

        failed = service.engine.get_status(failures[0]["messageId"])
        assert failed.status == MessageStatus.FAILED
        assert failed.error == "email provider unreachable"

    @pytest.mark.asyncio
    async def test_recovers_after_reset(self, service, providers):
        providers[Channel.EMAIL].outage = True
        for _ in range(3):
            await service.handle(order_email())

        providers[Channel.EMAIL].outage = False
        get_circuit_breaker("email-service").reset()

        assert (await service.handle(order_email()))["success"] is True


class TestGating:
    @pytest.mark.asyncio
    async def test_category_opt_out_applies_per_channel(self, service, providers):
        await service.handle(
            {
                "type": "UPDATE_PREFERENCES",
                "payload": {
                    "userId": "jane@example.com",
                    "preferences": {"email": {"categories": {"shipping": False}}},
                },
            }
        )

        denied = await service.handle(order_email(category="shipping"))
        allowed = await service.handle(order_email(category="security"))

        assert denied["errorCode"] == "PREFERENCE_DENIED"
        assert denied["error"] == "User has opted out of shipping email notifications"
        assert allowed["success"] is True
        assert len(providers[Channel.EMAIL].sent) == 1

    @pytest.mark.asyncio
    async def test_quiet_hours_defer_until_window_end(self, noon_service, providers):
        await noon_service.handle(
            {
                "type": "UPDATE_PREFERENCES",
                "payload": {
                    "userId": "user-1",
                    "preferences": {
                        "quietHours": {"start": "11:00", "end": "13:30", "timezone": "UTC"}
                    },
                },
            }
        )

        push = await noon_service.handle(
            {"type": "SEND_PUSH", "payload": {"userId": "user-1", "title": "Hi", "body": "x"}}
        )
        urgent_sms = await noon_service.handle(
            {
                "type": "SEND_SMS",
                "payload": {
                    "to": "+15551234567",
                    "userId": "user-1",
                    "message": "Your code is 1234",
                    "urgent": True,
                },
            }
        )

        assert push["errorCode"] == "QUIET_HOURS"
        assert push["nextAvailableAt"].startswith("2024-01-15T13:30:00")
        assert providers[Channel.PUSH].sent == []
        assert urgent_sms["success"] is True

    @pytest.mark.asyncio
    async def test_push_fans_out_to_every_device(self, noon_service, providers):
        response = await noon_service.handle(
            {"type": "SEND_PUSH", "payload": {"userId": "user-1", "title": "Hi", "body": "x"}}
        )

        assert response["success"] is True
        assert providers[Channel.PUSH].sent[0].device_tokens == [
            "ios-token",
            "android-token",
        ]


class TestBatch:
    @pytest.mark.asyncio
    async def test_mixed_batch(self, service, providers):
        emails = [order_email(f"user{i}@example.com")["payload"] for i in range(25)]
        emails[7] = {**emails[7], "template": "does-not-exist"}

        response = await service.handle(
            {"type": "BATCH_SEND_EMAIL", "payload": {"emails": emails}}
        )

        assert response["successful"] == 24
        assert response["failed"] == 1
        assert response["results"][7]["errorCode"] == "TEMPLATE_NOT_FOUND"
        assert len(providers[Channel.EMAIL].sent) == 24
        assert len(service.engine.list_messages("user3@example.com")) == 1
        assert response["results"][7]["channel"] == "email"

    @pytest.mark.asyncio
    async def test_invalid_item_does_not_block_batch(self, service, providers):
        emails = [order_email(f"user{i}@example.com")["payload"] for i in range(3)]
        emails[1] = {**emails[1], "to": "user1-at-example"}

        response = await service.handle(
            {"type": "BATCH_SEND_EMAIL", "payload": {"emails": emails}}
        )

        assert [r["success"] for r in response["results"]] == [True, False, True]
        assert response["results"][1]["errorCode"] == "INVALID_COMMAND"
        assert [m.to for m in providers[Channel.EMAIL].sent] == [
            "user0@example.com",
            "user2@example.com",
        ]


class TestInbox:
    @pytest.mark.asyncio
    async def test_multi_channel_send_to_read(self, service, providers):
        providers[Channel.SMS].outage = True
        payload = order_email()["payload"]

        sent = await service.handle(
            {
                "type": "SEND_MULTI_CHANNEL",
                "payload": {
                    "userId": "user-1",
                    "channels": ["email", "sms", "push"],
                    "template": "order-shipped",
                    "data": {**payload["data"], "message": "Order A-100 shipped"},
                },
            }
        )

        assert sent["success"] is False
        assert [r["success"] for r in sent["results"]] == [True, False, True]
        assert providers[Channel.EMAIL].sent[0].subject == "Order A-100 shipped"
        assert providers[Channel.PUSH].sent[0].body == "Order A-100 shipped"

        unread = await service.handle(
            {"type": "GET_UNREAD_COUNT", "payload": {"userId": "user-1"}}
        )
        assert unread["count"] == 2

        inbox = await service.handle(
            {
                "type": "GET_USER_NOTIFICATIONS",
                "payload": {"userId": "user-1", "filter": {"status": "sent"}},
            }
        )
        assert inbox["total"] == 2
        for message in inbox["messages"]:
            await service.handle(
                {"type": "MARK_AS_READ", "payload": {"messageId": message["messageId"]}}
            )

        unread = await service.handle(
            {"type": "GET_UNREAD_COUNT", "payload": {"userId": "user-1"}}
        )
        failed = await service.handle(
            {
                "type": "GET_USER_NOTIFICATIONS",
                "payload": {"userId": "user-1", "filter": {"channel": "sms"}},
            }
        )
        assert unread["count"] == 0
        assert [m["status"] for m in failed["messages"]] == ["failed"]
