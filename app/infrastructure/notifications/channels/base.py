"""Delivery collaborator contracts.

Channel adapters wrap a concrete provider (SMTP relay, SMS gateway, push
service). The dispatch engine only knows this interface and always calls
it through the channel's circuit breaker.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

from infrastructure.notifications.models import DeliveryReceipt


class ChannelAdapter(ABC):
    """Abstract base class for channel adapters.

    Example Implementation:
        class SmtpEmailAdapter(ChannelAdapter):

            @property
            def channel_name(self) -> str:
                return "email"

            async def send(self, message: EmailMessage) -> DeliveryReceipt:
                provider_id = await self._client.send(message.to, message.subject, message.html)
                return DeliveryReceipt(success=True, message_id=provider_id)
    """

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Channel identifier (email, sms, push)."""

    @abstractmethod
    async def send(self, message: Any) -> DeliveryReceipt:
        """Hand a rendered message to the provider.

        Args:
            message: EmailMessage, SmsMessage or PushMessage for this channel

        Returns:
            DeliveryReceipt carrying the provider message id

        Raises:
            ProviderError: If the provider rejects or fails the send.
        """


class UserDirectory(ABC):
    """Looks up user profiles for push and multi-channel delivery."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Mapping[str, Any]:
        """Return the user's profile.

        The profile carries ``deviceTokens`` (an empty list is a valid
        answer) and, when known, ``email`` and ``phone``.
        """


class StaticUserDirectory(UserDirectory):
    """User directory backed by a fixed mapping of user id to profile."""

    def __init__(self, users: Optional[Dict[str, Mapping[str, Any]]] = None):
        self.users: Dict[str, Mapping[str, Any]] = dict(users or {})

    async def get_user(self, user_id: str) -> Mapping[str, Any]:
        return self.users.get(user_id, {"deviceTokens": []})
