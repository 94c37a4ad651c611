"""Event sinks: where the dispatch engine publishes lifecycle events.

The engine never reaches for an ambient bus; it is handed an EventSink.
"""

from abc import ABC, abstractmethod
from typing import List

from infrastructure.events.dispatcher import dispatch_event
from infrastructure.events.models import Event


class EventSink(ABC):
    """Destination for lifecycle events such as MESSAGE_SENT."""

    @abstractmethod
    async def publish(self, event: Event) -> None:
        """Publish an event to downstream listeners."""


class InProcessEventSink(EventSink):
    """Publishes through the in-process handler registry."""

    async def publish(self, event: Event) -> None:
        dispatch_event(event)


class MemoryEventSink(EventSink):
    """Keeps published events in memory, in publish order."""

    def __init__(self) -> None:
        self.events: List[Event] = []

    async def publish(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.event_type == event_type]
