"""Bounded, append-only activity log for CRM mutations.

Stored as a JSON array under ``crmActivities`` in the local store, oldest
first. Only the most recent ``max_entries`` records are kept; older ones are
dropped on append.

Logging never raises for storage problems: log() returns an
ActivityLogResult whose ``ok`` is False so the caller can decide whether to
surface a degraded-audit warning.
"""

from __future__ import annotations

import structlog
from pydantic import ValidationError

from src.crm_client.core.monitoring import activity_log_failures_total
from src.crm_client.core.store import LocalStore
from src.crm_client.crm.errors import StorageError
from src.crm_client.crm.identity import ACTIVITY_PREFIX, generate_id, utcnow
from src.crm_client.crm.schemas import (
    Activity,
    ActivityAction,
    ActivityCreate,
    ActivityLogResult,
    CurrentUser,
    EntityType,
    FieldChange,
)

logger = structlog.get_logger(__name__)

ACTIVITY_STORAGE_KEY = "crmActivities"
CURRENT_USER_KEY = "currentUser"

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_RECENT_LIMIT = 50


def create_activity_description(
    action: ActivityAction | str,
    entity_name: str,
    changes: dict[str, FieldChange] | None = None,
) -> str:
    """Human-readable summary of an action on an entity."""
    try:
        action = ActivityAction(action)
    except ValueError:
        return f"Performed action on {entity_name}"

    if action == ActivityAction.UPDATED:
        if changes:
            if len(changes) == 1:
                return f"Updated {next(iter(changes))} of {entity_name}"
            return f"Updated {len(changes)} fields of {entity_name}"
        return f"Updated {entity_name}"

    templates = {
        ActivityAction.CREATED: "Created {name}",
        ActivityAction.DELETED: "Deleted {name}",
        ActivityAction.CONVERTED: "Converted {name} to Account and Opportunity",
        ActivityAction.EMAIL_SENT: "Sent email to {name}",
        ActivityAction.STATUS_CHANGED: "Changed status of {name}",
        ActivityAction.STAGE_CHANGED: "Changed stage of {name}",
    }
    return templates[action].format(name=entity_name)


async def get_current_user_info(store: LocalStore) -> CurrentUser:
    """Resolve the acting user from the ``currentUser`` key.

    Falls back to the unknown user when the key is missing or unreadable.
    """
    try:
        user = await store.get_json(CURRENT_USER_KEY)
    except StorageError:
        logger.error("activity.current_user_unreadable", exc_info=True)
        return CurrentUser()

    if not isinstance(user, dict):
        return CurrentUser()

    full_name = f"{user.get('firstName') or ''} {user.get('lastName') or ''}".strip()
    return CurrentUser(
        id=str(user.get("id") or user.get("email") or "unknown"),
        name=full_name or user.get("email") or "Unknown User",
    )


class ActivityLog:
    """Query and append interface over the stored activity sequence.

    Args:
        store: LocalStore holding the ``crmActivities`` collection.
        max_entries: Sliding-window cap (at least 1); oldest records are dropped first.
        recent_default: Default limit for get_recent().
    """

    def __init__(
        self,
        store: LocalStore,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        recent_default: int = DEFAULT_RECENT_LIMIT,
    ) -> None:
        self._store = store
        self._collection = store.collection(ACTIVITY_STORAGE_KEY)
        self._max_entries = max(1, max_entries)
        self._recent_default = recent_default

    async def log(self, entry: ActivityCreate) -> ActivityLogResult:
        """Append an activity, assigning its id and timestamp."""
        activity = Activity(
            **entry.model_dump(),
            id=generate_id(ACTIVITY_PREFIX),
            timestamp=utcnow(),
        )
        try:
            async with self._collection.transaction() as records:
                records.append(activity.to_record())
                records[:] = records[-self._max_entries:]
        except StorageError as exc:
            activity_log_failures_total.inc()
            logger.error(
                "activity.log_failed",
                entity_type=entry.type.value,
                entity_id=entry.entity_id,
                action=entry.action.value,
                error=str(exc),
            )
            return ActivityLogResult(error=str(exc))

        logger.debug(
            "activity.logged",
            activity_id=activity.id,
            entity_type=activity.type.value,
            action=activity.action.value,
        )
        return ActivityLogResult(activity=activity)

    async def record(
        self,
        entity_type: EntityType,
        entity_id: str,
        entity_name: str,
        action: ActivityAction,
        user: CurrentUser,
        changes: dict[str, FieldChange] | None = None,
    ) -> ActivityLogResult:
        """Build the description and log an activity for the given user."""
        return await self.log(
            ActivityCreate(
                type=entity_type,
                entity_id=entity_id,
                entity_name=entity_name,
                action=action,
                user_id=user.id,
                user_name=user.name,
                description=create_activity_description(action, entity_name, changes),
                changes=changes or None,
            )
        )

    async def get_all(self) -> list[Activity]:
        """All stored activities in insertion order; empty if unreadable."""
        try:
            records = await self._collection.snapshot()
        except StorageError:
            logger.error("activity.read_failed", exc_info=True)
            return []

        activities: list[Activity] = []
        for record in records:
            try:
                activities.append(Activity.model_validate(record))
            except ValidationError:
                logger.warning("activity.record_invalid", activity_id=record.get("id"))
        return activities

    async def get_by_entity(self, entity_type: EntityType, entity_id: str) -> list[Activity]:
        return [
            a for a in await self.get_all()
            if a.type == entity_type and a.entity_id == entity_id
        ]

    async def get_by_user(self, user_id: str) -> list[Activity]:
        return [a for a in await self.get_all() if a.user_id == user_id]

    async def get_by_action(self, action: ActivityAction) -> list[Activity]:
        return [a for a in await self.get_all() if a.action == action]

    async def get_recent(self, limit: int | None = None) -> list[Activity]:
        """The last ``limit`` activities, most recent first."""
        limit = self._recent_default if limit is None else limit
        if limit <= 0:
            return []
        return list(reversed((await self.get_all())[-limit:]))

    async def clear(self) -> None:
        await self._collection.clear()
        logger.info("activity.cleared")
