"""Shared fixtures for CRM client tests.

Provides:
- In-memory key-value store and LocalStore
- Mock RemoteBackend (AsyncMock with spec) defaulting to "endpoint missing" (404)
- CRMClient wired to the mock remote with a breaker that never opens
- Helpers to seed local collections
"""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.crm_client.core.store import LocalStore, MemoryStore
from src.crm_client.crm.client import CRMClient
from src.crm_client.crm.errors import NotFound
from src.crm_client.crm.health import CircuitBreaker
from src.crm_client.crm.remote import RemoteBackend


@pytest.fixture
def memory_backend() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def local_store(memory_backend) -> LocalStore:
    return LocalStore(memory_backend)


@pytest.fixture
def mock_remote() -> AsyncMock:
    """RemoteBackend mock where every operation answers 404."""
    remote = AsyncMock(spec=RemoteBackend)
    remote.create.return_value = NotFound(operation="create")
    remote.search.return_value = NotFound(operation="search")
    remote.update.return_value = NotFound(operation="update")
    remote.delete.return_value = NotFound(operation="delete")
    remote.convert_lead.return_value = NotFound(operation="convertLead")
    return remote


@pytest.fixture
def client(mock_remote, local_store) -> CRMClient:
    """CRMClient over the mock remote; the breaker never short-circuits."""
    return CRMClient(
        remote=mock_remote,
        store=local_store,
        breaker=CircuitBreaker(failure_threshold=10_000),
    )


async def seed(store: LocalStore, key: str, records: list[dict[str, Any]]) -> None:
    """Write raw records into a local collection."""
    await store.backend.set(key, json.dumps(records))


async def stored(store: LocalStore, key: str) -> list[dict[str, Any]]:
    """Read raw records back from a local collection."""
    raw = await store.backend.get(key)
    return json.loads(raw) if raw else []
