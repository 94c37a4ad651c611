"""In-process listener registry for notification lifecycle events.

Listeners (analytics, audit, campaign counters) subscribe per event type
and run synchronously in subscription order when the engine publishes.
A listener that raises is logged and skipped: delivery has already
happened by the time MESSAGE_SENT is published, so nothing downstream
may turn it into a failure.
"""

from typing import Any, Callable, Dict, List

from infrastructure.logging import get_module_logger
from infrastructure.events.models import Event

logger = get_module_logger()

Listener = Callable[[Event], Any]

EVENT_HANDLERS: Dict[str, List[Listener]] = {}


def _name(listener: Listener) -> str:
    return getattr(listener, "__name__", type(listener).__name__)


def register_event_handler(event_type: str):
    """Subscribe the decorated callable to ``event_type``.

    Usable as a plain call too: ``register_event_handler(MESSAGE_SENT)(fn)``.
    """

    def decorator(listener: Listener) -> Listener:
        listeners = EVENT_HANDLERS.setdefault(event_type, [])
        listeners.append(listener)
        logger.debug(
            "event_listener_registered",
            listener=_name(listener),
            event_type=event_type,
            listener_count=len(listeners),
        )
        return listener

    return decorator


def dispatch_event(event: Event) -> List[Any]:
    """Run every listener for ``event.event_type``; return what succeeded."""
    listeners = EVENT_HANDLERS.get(event.event_type, [])
    results = []
    for listener in listeners:
        try:
            results.append(listener(event))
        except Exception as e:
            logger.error(
                "event_listener_failed",
                listener=_name(listener),
                event_type=event.event_type,
                error=str(e),
                correlation_id=str(event.correlation_id),
            )
    return results


def get_registered_events() -> List[str]:
    return list(EVENT_HANDLERS)


def get_handlers_for_event(event_type: str) -> List[Listener]:
    return EVENT_HANDLERS.get(event_type, [])


def clear_handlers() -> None:
    """Drop every listener. Used between tests."""
    EVENT_HANDLERS.clear()
