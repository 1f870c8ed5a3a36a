"""CRMClient facade wiring repositories, activity log and backends together.

Usage:
    client = build_crm_client()
    lead = await client.leads.create(LeadCreate(name="Acme", email="a@x.com"))
    result = await client.leads.convert_lead(lead.id, value=500)
    recent = await client.activities.get_recent(10)
    await client.close()
"""

from __future__ import annotations

from typing import Any

import structlog

from src.crm_client.config import Settings, get_settings
from src.crm_client.core.store import KeyValueStore, LocalStore, create_store
from src.crm_client.crm.activity import ActivityLog, get_current_user_info
from src.crm_client.crm.health import CircuitBreaker
from src.crm_client.crm.local import ACCOUNTS_KEY, LEADS_KEY, OPPORTUNITIES_KEY, LocalBackend
from src.crm_client.crm.remote import RemoteBackend
from src.crm_client.crm.repository import (
    AccountRepository,
    LeadRepository,
    OpportunityRepository,
)
from src.crm_client.crm.schemas import CurrentUser

logger = structlog.get_logger(__name__)

LOCAL_COLLECTIONS = {
    "leads": LEADS_KEY,
    "opportunities": OPPORTUNITIES_KEY,
    "accounts": ACCOUNTS_KEY,
}


class CRMClient:
    """Entry point for Leads, Opportunities, Accounts and the activity log.

    All repositories share one LocalStore (so per-collection locks are shared),
    one RemoteBackend and one CircuitBreaker.
    """

    def __init__(
        self,
        remote: RemoteBackend,
        store: LocalStore,
        breaker: CircuitBreaker | None = None,
        activity_max_entries: int = 1000,
        activity_recent_default: int = 50,
    ) -> None:
        self.remote = remote
        self.store = store
        self.breaker = breaker or CircuitBreaker()
        self.activities = ActivityLog(
            store,
            max_entries=activity_max_entries,
            recent_default=activity_recent_default,
        )

        leads = LocalBackend(store, LEADS_KEY)
        opportunities = LocalBackend(store, OPPORTUNITIES_KEY)
        accounts = LocalBackend(store, ACCOUNTS_KEY)

        shared = dict(
            remote=remote,
            activity_log=self.activities,
            breaker=self.breaker,
            current_user=self.current_user,
        )
        self.leads = LeadRepository(
            local=leads,
            accounts=accounts,
            opportunities=opportunities,
            **shared,
        )
        self.opportunities = OpportunityRepository(local=opportunities, **shared)
        self.accounts = AccountRepository(local=accounts, **shared)

    async def current_user(self) -> CurrentUser:
        return await get_current_user_info(self.store)

    async def local_snapshot(self, collection: str) -> list[dict[str, Any]]:
        """Raw records of a local collection (``leads``, ``opportunities``, ``accounts``)."""
        if collection not in LOCAL_COLLECTIONS:
            raise ValueError(
                f"Unknown collection {collection!r}; "
                f"expected one of {sorted(LOCAL_COLLECTIONS)}"
            )
        return await self.store.collection(LOCAL_COLLECTIONS[collection]).snapshot()

    async def close(self) -> None:
        await self.store.close()


def build_crm_client(
    settings: Settings | None = None,
    backend: KeyValueStore | None = None,
) -> CRMClient:
    """Build a CRMClient from settings.

    Args:
        settings: Optional settings; defaults to get_settings().
        backend: Optional key-value backend overriding LOCAL_STORE_BACKEND.
    """
    settings = settings or get_settings()
    store = LocalStore(backend or create_store(settings))
    client = CRMClient(
        remote=RemoteBackend.from_settings(settings),
        store=store,
        breaker=CircuitBreaker(
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            reset_seconds=settings.CIRCUIT_RESET_SECONDS,
        ),
        activity_max_entries=settings.ACTIVITY_LOG_MAX_ENTRIES,
        activity_recent_default=settings.ACTIVITY_RECENT_DEFAULT,
    )
    logger.info(
        "crm.client_built",
        offline=settings.is_offline,
        store_backend=settings.LOCAL_STORE_BACKEND.value,
    )
    return client
