"""Local fallback backend for one entity collection.

Wraps a LocalCollection (``localLeads``, ``localOpportunities``,
``localAccounts``) with id-based lookups. Records are stored in wire format
(camelCase dicts). Storage errors propagate to the caller.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.crm_client.core.store import LocalCollection, LocalStore

logger = structlog.get_logger(__name__)

LEADS_KEY = "localLeads"
OPPORTUNITIES_KEY = "localOpportunities"
ACCOUNTS_KEY = "localAccounts"


def find_index(records: list[dict[str, Any]], entity_id: str) -> int:
    """Index of the record with the given id, or -1."""
    for index, record in enumerate(records):
        if record.get("id") == entity_id:
            return index
    return -1


class LocalBackend:
    """Id-keyed access to a single local collection.

    Args:
        store: Shared LocalStore (collections and their locks are cached there).
        key: Collection key.
    """

    def __init__(self, store: LocalStore, key: str) -> None:
        self.key = key
        self.collection: LocalCollection = store.collection(key)

    async def list(self) -> list[dict[str, Any]]:
        return await self.collection.snapshot()

    async def find(self, entity_id: str) -> dict[str, Any] | None:
        records = await self.collection.snapshot()
        index = find_index(records, entity_id)
        return records[index] if index >= 0 else None

    async def append(self, record: dict[str, Any]) -> None:
        async with self.collection.transaction() as records:
            records.append(record)
        logger.debug("local.appended", key=self.key, entity_id=record.get("id"))

    async def upsert(self, record: dict[str, Any]) -> None:
        """Replace the record with the same id, or append it."""
        async with self.collection.transaction() as records:
            index = find_index(records, record["id"])
            if index >= 0:
                records[index] = record
            else:
                records.append(record)

    async def replace_if_present(self, record: dict[str, Any]) -> bool:
        """Overwrite an existing record with the same id; never appends."""
        async with self.collection.transaction() as records:
            index = find_index(records, record["id"])
            if index < 0:
                return False
            records[index] = record
        return True

    async def remove(self, entity_id: str) -> dict[str, Any] | None:
        """Remove the record with the given id, returning it if present."""
        async with self.collection.transaction() as records:
            index = find_index(records, entity_id)
            if index < 0:
                return None
            return records.pop(index)
