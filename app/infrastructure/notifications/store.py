"""In-memory registries owned by the dispatch engine.

Templates, user preferences and message records are keyed by stable
identifiers. Persistence is an external concern; these stores only hold
the engine's working state.
"""

import asyncio
import threading
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from infrastructure.logging import get_module_logger
from infrastructure.notifications.errors import (
    DuplicateMessageError,
    InvalidPreferencesError,
    MessageNotFoundError,
    TemplateNotFoundError,
)
from infrastructure.notifications.models import (
    Channel,
    MessageFilter,
    MessageRecord,
    MessageStatus,
    Template,
    UserPreferences,
    new_id,
    utcnow,
)
from infrastructure.notifications.preferences import (
    default_preferences,
    merge_preferences,
    validate_preferences,
)

logger = get_module_logger()

RecordMutation = Callable[[MessageRecord], Union[MessageRecord, Awaitable[MessageRecord]]]


class TemplateRegistry:
    """Templates by id."""

    def __init__(self):
        self._templates: Dict[str, Template] = {}
        self._lock = threading.Lock()

    def create(
        self,
        subject: str,
        html: str,
        text: Optional[str] = None,
        name: str = "",
        variables: Optional[List[str]] = None,
        channel: Channel = Channel.EMAIL,
        template_id: Optional[str] = None,
    ) -> Template:
        template = Template(
            template_id=template_id or new_id("tpl"),
            name=name,
            subject=subject,
            html=html,
            text=text,
            variables=variables or [],
            channel=channel,
        )
        self.add(template)
        return template

    def add(self, template: Template) -> Template:
        """Register a fully built template, replacing any with the same id."""
        with self._lock:
            self._templates[template.template_id] = template
        logger.info("template_registered", template_id=template.template_id)
        return template

    def update(self, template_id: str, **changes: Any) -> Template:
        """Apply changes to a template and refresh its updated_at.

        Raises:
            TemplateNotFoundError: If the id is unknown.
        """
        changes.pop("template_id", None)
        changes.pop("created_at", None)
        with self._lock:
            current = self._get(template_id)
            updated = current.model_copy(update={**changes, "updated_at": utcnow()})
            # Revalidate merged fields
            updated = Template.model_validate(updated.model_dump())
            self._templates[template_id] = updated
        logger.info("template_updated", template_id=template_id, fields=sorted(changes))
        return updated

    def get(self, template_id: str) -> Template:
        """
        Raises:
            TemplateNotFoundError: If the id is unknown.
        """
        with self._lock:
            return self._get(template_id)

    def delete(self, template_id: str) -> bool:
        with self._lock:
            removed = self._templates.pop(template_id, None)
        if removed is not None:
            logger.info("template_deleted", template_id=template_id)
        return removed is not None

    def list(self, channel: Optional[Channel] = None) -> List[Template]:
        with self._lock:
            templates = list(self._templates.values())
        if channel is not None:
            templates = [t for t in templates if t.channel == channel]
        return sorted(templates, key=lambda t: t.created_at)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    def _get(self, template_id: str) -> Template:
        try:
            return self._templates[template_id]
        except KeyError:
            raise TemplateNotFoundError(template_id) from None


class PreferenceStore:
    """User preferences by user id."""

    def __init__(self):
        self._preferences: Dict[str, UserPreferences] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[UserPreferences]:
        """Stored preferences, or None when the user never set any."""
        return self._preferences.get(user_id)

    def get_or_default(self, user_id: str) -> UserPreferences:
        return self._preferences.get(user_id) or default_preferences(user_id)

    def update(self, user_id: str, updates: Dict[str, Any]) -> UserPreferences:
        """Validate and deep-merge a partial update.

        The first update materialises the system defaults before merging.

        Raises:
            InvalidPreferencesError: If the update is rejected; nothing is stored.
        """
        problems = validate_preferences(updates)
        if problems:
            logger.warning(
                "preferences_update_rejected", user_id=user_id, problems=problems
            )
            raise InvalidPreferencesError(problems)

        with self._lock:
            merged = merge_preferences(self.get_or_default(user_id), updates)
            self._preferences[user_id] = merged
        logger.info("preferences_updated", user_id=user_id)
        return merged

    def put(self, preferences: UserPreferences) -> None:
        """Replace a user's preferences wholesale."""
        with self._lock:
            self._preferences[preferences.user_id] = preferences


class MessageStore:
    """Message records by id.

    Read-modify-write updates are serialized per message id; updates to
    different ids never wait on each other.
    """

    def __init__(self):
        self._records: Dict[str, MessageRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def create(self, record: MessageRecord) -> MessageRecord:
        """
        Raises:
            DuplicateMessageError: If a record with the same id exists.
        """
        if record.message_id in self._records:
            raise DuplicateMessageError(record.message_id)
        self._records[record.message_id] = record
        self._locks[record.message_id] = asyncio.Lock()
        return record

    def get(self, message_id: str) -> MessageRecord:
        """
        Raises:
            MessageNotFoundError: If the id is unknown.
        """
        try:
            return self._records[message_id]
        except KeyError:
            raise MessageNotFoundError(message_id) from None

    def exists(self, message_id: str) -> bool:
        return message_id in self._records

    async def update(self, message_id: str, mutate: RecordMutation) -> MessageRecord:
        """Atomically replace a record with ``mutate(current)``.

        ``mutate`` may be a plain function or a coroutine function; it may
        raise to abort the update, leaving the stored record unchanged.

        Raises:
            MessageNotFoundError: If the id is unknown.
        """
        self.get(message_id)
        async with self._locks[message_id]:
            current = self._records[message_id]
            updated = mutate(current)
            if asyncio.iscoroutine(updated):
                updated = await updated
            self._records[message_id] = updated
            return updated

    def find(
        self, recipient: str, criteria: Optional[MessageFilter] = None
    ) -> List[MessageRecord]:
        """Every record for a recipient (address or user id), newest first."""
        criteria = criteria or MessageFilter()
        matches = [
            r
            for r in self._records.values()
            if (r.recipient == recipient or r.user_id == recipient)
            and (criteria.channel is None or r.channel == criteria.channel)
            and (criteria.status is None or r.status == criteria.status)
            and (criteria.start_date is None or r.created_at >= criteria.start_date)
            and (criteria.end_date is None or r.created_at <= criteria.end_date)
        ]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        return matches

    def list_by_recipient(
        self, recipient: str, limit: int = 20, offset: int = 0
    ) -> List[MessageRecord]:
        return self.find(recipient)[offset : offset + limit]

    def count_unread(self, recipient: str) -> int:
        """Sent or delivered records the recipient has not read yet."""
        return sum(
            1
            for r in self.find(recipient)
            if r.status in (MessageStatus.SENT, MessageStatus.DELIVERED)
        )

    def delivery_rate(self, channel: Optional[Channel] = None) -> float:
        """Share of records that reached delivered or read."""
        records = [
            r for r in self._records.values() if channel is None or r.channel == channel
        ]
        if not records:
            return 0.0
        delivered = sum(
            1
            for r in records
            if r.status in (MessageStatus.DELIVERED, MessageStatus.READ)
        )
        return delivered / len(records)

    def __len__(self) -> int:
        return len(self._records)

    def all(self) -> List[MessageRecord]:
        return list(self._records.values())
