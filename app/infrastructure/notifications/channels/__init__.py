"""Delivery collaborator contracts."""

from infrastructure.notifications.channels.base import (
    ChannelAdapter,
    StaticUserDirectory,
    UserDirectory,
)

__all__ = ["ChannelAdapter", "UserDirectory", "StaticUserDirectory"]
