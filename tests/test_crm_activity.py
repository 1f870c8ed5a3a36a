"""Unit tests for the activity log, description synthesis and current-user lookup."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.crm_client.core.store import LocalStore, MemoryStore
from src.crm_client.crm.activity import (
    ACTIVITY_STORAGE_KEY,
    ActivityLog,
    create_activity_description,
    get_current_user_info,
)
from src.crm_client.crm.errors import StorageError
from src.crm_client.crm.schemas import (
    ActivityAction,
    ActivityCreate,
    CurrentUser,
    EntityType,
    FieldChange,
)


def _entry(**overrides) -> ActivityCreate:
    defaults = {
        "type": EntityType.LEAD,
        "entity_id": "lead-1",
        "entity_name": "Acme",
        "action": ActivityAction.CREATED,
        "user_id": "u-1",
        "user_name": "Ada",
        "description": "Created Acme",
    }
    defaults.update(overrides)
    return ActivityCreate(**defaults)


# ── Description synthesis ─────────────────────────────────────────────────


class TestCreateActivityDescription:
    @pytest.mark.parametrize(
        ("action", "expected"),
        [
            ("created", "Created Acme"),
            ("deleted", "Deleted Acme"),
            ("converted", "Converted Acme to Account and Opportunity"),
            ("email_sent", "Sent email to Acme"),
            ("status_changed", "Changed status of Acme"),
            ("stage_changed", "Changed stage of Acme"),
            ("archived", "Performed action on Acme"),
        ],
    )
    def test_action_templates(self, action, expected):
        assert create_activity_description(action, "Acme") == expected

    def test_updated_single_field(self):
        changes = {"email": FieldChange(old="a", new="b")}
        assert create_activity_description("updated", "Acme", changes) == "Updated email of Acme"

    def test_updated_multiple_fields(self):
        changes = {
            "email": FieldChange(old="a", new="b"),
            "phone": FieldChange(old=None, new="1"),
        }
        assert create_activity_description(ActivityAction.UPDATED, "Acme", changes) == (
            "Updated 2 fields of Acme"
        )

    def test_updated_without_changes(self):
        assert create_activity_description("updated", "Acme") == "Updated Acme"
        assert create_activity_description("updated", "Acme", {}) == "Updated Acme"


# ── ActivityLog ────────────────────────────────────────────────────────────


class TestActivityLog:
    @pytest.fixture
    def log(self, local_store) -> ActivityLog:
        return ActivityLog(local_store)

    async def test_log_assigns_id_and_timestamp(self, log):
        result = await log.log(_entry())

        assert result.ok
        assert result.activity.id.startswith("activity_")
        assert result.activity.timestamp is not None
        assert [a.id for a in await log.get_all()] == [result.activity.id]

    async def test_cap_keeps_most_recent_1000(self, log):
        """1005 appends leave 1000 records; get_recent returns newest first."""
        for i in range(1005):
            await log.log(_entry(entity_id=f"e{i}"))

        activities = await log.get_all()
        assert len(activities) == 1000
        assert activities[0].entity_id == "e5"

        recent = await log.get_recent(5)
        assert [a.entity_id for a in recent] == ["e1004", "e1003", "e1002", "e1001", "e1000"]

    async def test_small_cap_drops_oldest(self, local_store):
        log = ActivityLog(local_store, max_entries=3)
        for i in range(5):
            await log.log(_entry(entity_id=f"e{i}"))

        assert [a.entity_id for a in await log.get_all()] == ["e2", "e3", "e4"]

    async def test_zero_cap_keeps_latest_entry(self, local_store):
        """A non-positive cap still bounds the log to the newest record."""
        log = ActivityLog(local_store, max_entries=0)
        for i in range(3):
            await log.log(_entry(entity_id=f"e{i}"))

        assert [a.entity_id for a in await log.get_all()] == ["e2"]

    async def test_get_recent_default_limit(self, local_store):
        log = ActivityLog(local_store, recent_default=2)
        for i in range(4):
            await log.log(_entry(entity_id=f"e{i}"))

        assert [a.entity_id for a in await log.get_recent()] == ["e3", "e2"]

    async def test_filters(self, log):
        await log.log(_entry(entity_id="l1"))
        await log.log(_entry(type=EntityType.ACCOUNT, entity_id="a1", user_id="u-2"))
        await log.log(_entry(entity_id="l1", action=ActivityAction.DELETED))

        assert len(await log.get_by_entity(EntityType.LEAD, "l1")) == 2
        assert len(await log.get_by_entity(EntityType.ACCOUNT, "l1")) == 0
        assert [a.entity_id for a in await log.get_by_user("u-2")] == ["a1"]
        assert [a.action for a in await log.get_by_action(ActivityAction.DELETED)] == [
            ActivityAction.DELETED
        ]

    async def test_clear(self, log):
        await log.log(_entry())

        await log.clear()

        assert await log.get_all() == []

    async def test_corrupt_storage_reads_empty(self, memory_backend, log):
        await memory_backend.set(ACTIVITY_STORAGE_KEY, "{not json")

        assert await log.get_all() == []

    async def test_log_failure_returns_failed_result(self):
        """A storage error is reported in the result instead of raised."""
        backend = AsyncMock(spec=MemoryStore)
        backend.get.return_value = None
        backend.set.side_effect = StorageError("quota exceeded")
        log = ActivityLog(LocalStore(backend))

        result = await log.log(_entry())

        assert not result.ok
        assert result.activity is None
        assert "quota exceeded" in result.error

    async def test_unreadable_storage_returns_empty(self):
        backend = AsyncMock(spec=MemoryStore)
        backend.get.side_effect = StorageError("backend down")
        log = ActivityLog(LocalStore(backend))

        assert await log.get_all() == []
        assert await log.get_recent(3) == []

    async def test_record_builds_description_and_drops_empty_changes(self, log):
        result = await log.record(
            EntityType.LEAD,
            "l1",
            "Jane",
            ActivityAction.UPDATED,
            CurrentUser(id="u-9", name="Grace"),
            changes={},
        )

        assert result.activity.description == "Updated Jane"
        assert result.activity.changes is None
        assert result.activity.user_name == "Grace"


# ── Current user ───────────────────────────────────────────────────────────


class TestGetCurrentUserInfo:
    async def test_full_name(self, local_store):
        await local_store.set_json(
            "currentUser", {"id": "u-1", "firstName": "Ada", "lastName": "Lovelace"}
        )

        user = await get_current_user_info(local_store)

        assert user == CurrentUser(id="u-1", name="Ada Lovelace")

    async def test_email_fallback(self, local_store):
        await local_store.set_json("currentUser", {"email": "ada@example.com"})

        user = await get_current_user_info(local_store)

        assert user.id == "ada@example.com"
        assert user.name == "ada@example.com"

    async def test_missing_user(self, local_store):
        assert await get_current_user_info(local_store) == CurrentUser(
            id="unknown", name="Unknown User"
        )

    async def test_corrupt_user(self, memory_backend, local_store):
        await memory_backend.set("currentUser", "not-json{")

        assert (await get_current_user_info(local_store)).id == "unknown"
