"""End-to-end tests for build_crm_client in offline mode with the memory store."""

from __future__ import annotations

import pytest

from src.crm_client.config import Settings
from src.crm_client.core.store import MemoryStore
from src.crm_client.crm.client import build_crm_client
from src.crm_client.crm.errors import RemoteError
from src.crm_client.crm.schemas import ActivityAction, LeadCreate, LeadStatus


@pytest.fixture
def settings() -> Settings:
    return Settings(
        API_BASE_URL="",
        LOCAL_STORE_BACKEND="memory",
        ACTIVITY_LOG_MAX_ENTRIES=10,
        ACTIVITY_RECENT_DEFAULT=5,
    )


class TestOfflineClient:
    async def test_offline_create_and_list_leads(self, settings):
        """With no API configured, leads are created and listed from the local store."""
        client = build_crm_client(settings, backend=MemoryStore())

        lead = await client.leads.create(LeadCreate(name="Acme", email="a@x.com"))
        leads = await client.leads.get_all()

        assert [item.id for item in leads] == [lead.id]
        assert (await client.activities.get_recent())[0].action == ActivityAction.CREATED
        await client.close()

    async def test_offline_update_propagates_network_failure(self, settings):
        """A network failure is not a 404, so update does not fall back."""
        client = build_crm_client(settings, backend=MemoryStore())
        lead = await client.leads.create(LeadCreate(name="Acme"))

        with pytest.raises(RemoteError) as exc_info:
            await client.leads.update(lead.id, {"status": LeadStatus.LOST})

        assert exc_info.value.status_code == 0

    async def test_local_snapshot(self, settings):
        client = build_crm_client(settings, backend=MemoryStore())
        await client.accounts.create({"name": "Acme"})

        records = await client.local_snapshot("accounts")

        assert records[0]["name"] == "Acme"
        with pytest.raises(ValueError):
            await client.local_snapshot("pages")

    async def test_activity_cap_from_settings(self, settings):
        client = build_crm_client(settings, backend=MemoryStore())
        for i in range(12):
            await client.accounts.create({"name": f"A{i}"})

        assert len(await client.activities.get_all()) == 10


class TestSettings:
    def test_api_url(self):
        settings = Settings(API_BASE_URL="https://crm.example.com/", API_PATH_PREFIX="/api")

        assert settings.api_url == "https://crm.example.com/api"
        assert not settings.is_offline

    def test_offline_when_blank(self):
        assert Settings(API_BASE_URL="  ").is_offline
