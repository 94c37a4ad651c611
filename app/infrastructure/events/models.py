"""Lifecycle event record published by the dispatch engine."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import UUID, uuid4

MESSAGE_SENT = "MESSAGE_SENT"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Event:
    """Immutable record of a lifecycle transition.

    For MESSAGE_SENT, ``metadata`` carries channel, recipient, template
    and message_id.
    """

    event_type: str
    timestamp: datetime = field(default_factory=_utcnow)
    correlation_id: UUID = field(default_factory=uuid4)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form: ISO timestamp, string correlation ID."""
        return {
            **asdict(self),
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": str(self.correlation_id),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Rebuild an event from to_dict() output.

        Missing timestamp or correlation ID are regenerated.

        Raises:
            ValueError: If event_type is missing or a field does not parse.
        """
        try:
            timestamp = data.get("timestamp") or _utcnow()
            if isinstance(timestamp, str):
                timestamp = datetime.fromisoformat(timestamp)
            correlation_id = data.get("correlation_id") or uuid4()
            if isinstance(correlation_id, str):
                correlation_id = UUID(correlation_id)
            return cls(
                event_type=data["event_type"],
                timestamp=timestamp,
                correlation_id=correlation_id,
                metadata=dict(data.get("metadata") or {}),
            )
        except (KeyError, ValueError) as e:
            raise ValueError(f"Invalid event data: {e}") from e

    def __hash__(self) -> int:
        # metadata is a dict, so hash on the identifying fields only
        return hash((self.correlation_id, self.timestamp))
