"""Infrastructure event system - lifecycle event publication.

Usage:

    from infrastructure.events import Event, MESSAGE_SENT, register_event_handler

    @register_event_handler(MESSAGE_SENT)
    def record_delivery_metric(event: Event) -> None:
        channel = event.metadata["channel"]
        ...

The dispatch engine publishes through an EventSink; InProcessEventSink
routes events to the handlers registered above.
"""

from infrastructure.events.dispatcher import (
    clear_handlers,
    dispatch_event,
    get_handlers_for_event,
    get_registered_events,
    register_event_handler,
)
from infrastructure.events.models import MESSAGE_SENT, Event
from infrastructure.events.sink import EventSink, InProcessEventSink, MemoryEventSink

__all__ = [
    "Event",
    "MESSAGE_SENT",
    "EventSink",
    "InProcessEventSink",
    "MemoryEventSink",
    "dispatch_event",
    "register_event_handler",
    "get_registered_events",
    "get_handlers_for_event",
    "clear_handlers",
]
