"""Reconciliation layer: remote-first CRUD with local fallback per entity type.

Each repository prefers the remote CRM API and falls back to the local store:
- create: any remote failure -> synthesize the record locally and log ``created``
- get_all: Leads merge remote + local (local wins); others fall back on NotFound only
- update/delete: NotFound -> apply locally; other failures propagate unchanged
- convert_lead (Leads): NotFound -> create Account + Opportunity locally,
  mark the Lead CONVERTED and log converted/created/created

Remote availability is tracked by a CircuitBreaker fed only by endpoint-level
404s (create/search). While it is open the remote is not called and the
operation behaves as if it had answered 404; Lead listing still calls remote
search.

Successful remote writes keep any existing local copy current so the
local-wins merge never resurrects stale or deleted records.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, ClassVar, Generic, TypeVar

import structlog
from pydantic import ValidationError

from src.crm_client.core.monitoring import fallback_total, remote_requests_total
from src.crm_client.crm.activity import ActivityLog
from src.crm_client.crm.errors import (
    EntityNotFoundError,
    Failure,
    NotFound,
    Ok,
    RemoteError,
    RemoteResult,
)
from src.crm_client.crm.health import CircuitBreaker
from src.crm_client.crm.identity import (
    ACCOUNT_PREFIX,
    LEAD_PREFIX,
    OPPORTUNITY_PREFIX,
    compute_changes,
    generate_id,
    merge_by_id,
    utcnow_iso,
)
from src.crm_client.crm.local import LocalBackend, find_index
from src.crm_client.crm.remote import RemoteBackend
from src.crm_client.crm.schemas import (
    Account,
    AccountCreate,
    AccountUpdate,
    ActivityAction,
    ActivityLogResult,
    ConversionResult,
    CRMEntity,
    CRMPartial,
    CurrentUser,
    EntityType,
    Lead,
    LeadCreate,
    LeadStatus,
    LeadUpdate,
    Opportunity,
    OpportunityCreate,
    OpportunityStage,
    OpportunityUpdate,
)

logger = structlog.get_logger(__name__)

EntityT = TypeVar("EntityT", bound=CRMEntity)

UserProvider = Callable[[], Awaitable[CurrentUser]]


class EntityRepository(Generic[EntityT]):
    """Remote-first repository for one entity type.

    Args:
        remote: RemoteBackend for the CRM operation endpoints.
        local: LocalBackend over this entity's fallback collection.
        activity_log: Bounded activity log for fallback mutations.
        breaker: Shared remote health state.
        current_user: Async callable resolving the acting user.
    """

    entity: ClassVar[str]
    entity_type: ClassVar[EntityType]
    id_prefix: ClassVar[str]
    model: type[EntityT]
    create_model: ClassVar[type[CRMPartial]]
    update_model: ClassVar[type[CRMPartial]]
    # Only lead updates/deletes are written to the activity log.
    logs_updates: ClassVar[bool] = False

    def __init__(
        self,
        remote: RemoteBackend,
        local: LocalBackend,
        activity_log: ActivityLog,
        breaker: CircuitBreaker,
        current_user: UserProvider,
    ) -> None:
        self._remote = remote
        self._local = local
        self._activities = activity_log
        self._breaker = breaker
        self._current_user = current_user

    # ── Helpers ─────────────────────────────────────────────────────────

    async def _call_remote(
        self,
        operation: str,
        call: Callable[[], Awaitable[RemoteResult]],
        *,
        endpoint_level: bool = False,
        always_call: bool = False,
    ) -> RemoteResult:
        """Run a remote call through the circuit breaker.

        Args:
            endpoint_level: A 404 here means the endpoint itself is missing
                (create/search), so it counts toward opening the circuit.
                Per-record operations may 404 for a record that only exists
                locally and never trip the breaker.
            always_call: Call the remote even while the circuit is open.
        """
        if not always_call and not self._breaker.allow_request():
            remote_requests_total.labels(operation=operation, outcome="short_circuit").inc()
            return NotFound(operation=operation, detail="circuit open")

        result = await call()
        if isinstance(result, Ok):
            self._breaker.record_success()
        elif isinstance(result, NotFound) and endpoint_level:
            self._breaker.record_not_found()
        return result

    def _fallback(self, operation: str, **context: Any) -> None:
        fallback_total.labels(entity=self.entity, operation=operation).inc()
        logger.warning(
            "crm.fallback",
            entity=self.entity,
            operation=operation,
            **context,
        )

    @staticmethod
    def _changes(data: CRMPartial | dict[str, Any], model: type[CRMPartial]) -> dict[str, Any]:
        if isinstance(data, dict):
            data = model.model_validate(data)
        return data.to_changes()

    def _parse(self, record: Any, operation: str) -> EntityT:
        if not isinstance(record, dict):
            raise RemoteError(
                f"Unexpected response for {operation}",
                operation=operation,
                status_code=200,
            )
        return self.model.model_validate(record)

    def _parse_many(self, records: Any) -> list[EntityT]:
        entities: list[EntityT] = []
        for record in records or []:
            try:
                entities.append(self.model.model_validate(record))
            except ValidationError:
                logger.warning(
                    "crm.record_invalid",
                    entity=self.entity,
                    entity_id=record.get("id") if isinstance(record, dict) else None,
                )
        return entities

    def defaults(self) -> dict[str, Any]:
        """Field defaults for a locally synthesized record."""
        return {"name": ""}

    async def _log(
        self,
        action: ActivityAction,
        entity_id: str,
        entity_name: str,
        changes: Any = None,
        entity_type: EntityType | None = None,
    ) -> ActivityLogResult:
        user = await self._current_user()
        result = await self._activities.record(
            entity_type or self.entity_type,
            entity_id,
            entity_name,
            action,
            user,
            changes=changes,
        )
        if not result.ok:
            logger.warning(
                "crm.activity_not_recorded",
                entity=self.entity,
                entity_id=entity_id,
                action=action.value,
            )
        return result

    # ── Operations ──────────────────────────────────────────────────────

    async def create(self, draft: CRMPartial | dict[str, Any]) -> EntityT:
        """Create remotely; on any failure synthesize the record locally."""
        changes = self._changes(draft, self.create_model)
        result = await self._call_remote(
            f"create{self.entity}",
            lambda: self._remote.create(self.entity, changes),
            endpoint_level=True,
        )

        if isinstance(result, Ok):
            if isinstance(result.value, dict) and result.value.get("id"):
                entity = self.model.model_validate(result.value)
                await self._local.upsert(result.value)
                logger.info("crm.created", entity=self.entity, entity_id=entity.id)
                return entity
            logger.warning("crm.create_response_without_id", entity=self.entity)

        self._fallback("create", reason=type(result).__name__)
        record = self.defaults()
        record.update({k: v for k, v in changes.items() if v is not None})
        record["id"] = generate_id(self.id_prefix)
        record["createdAt"] = utcnow_iso()
        entity = self.model.model_validate(record)
        await self._local.append(entity.to_record())

        await self._log(ActivityAction.CREATED, entity.id, entity.name)
        return entity

    async def get_all(self) -> list[EntityT]:
        """Remote list; the local collection is served only on NotFound."""
        result = await self._call_remote(
            f"search{self.entity}",
            lambda: self._remote.search(self.entity),
            endpoint_level=True,
        )
        if isinstance(result, Ok):
            return self._parse_many(result.value)
        if isinstance(result, Failure):
            raise result.error

        self._fallback("get_all")
        return self._parse_many(await self._local.list())

    async def update(self, entity_id: str, data: CRMPartial | dict[str, Any]) -> EntityT:
        """Update remotely; on NotFound apply the change to the local record."""
        changes = self._changes(data, self.update_model)
        result = await self._call_remote(
            f"update{self.entity}",
            lambda: self._remote.update(self.entity, entity_id, changes),
        )
        if isinstance(result, Ok):
            entity = self._parse(result.value, f"update{self.entity}")
            await self._local.replace_if_present(entity.to_record())
            return entity
        if isinstance(result, Failure):
            raise result.error

        self._fallback("update", entity_id=entity_id)
        async with self._local.collection.transaction() as records:
            index = find_index(records, entity_id)
            if index < 0:
                raise EntityNotFoundError(self.entity, entity_id)
            previous = dict(records[index])
            diff = compute_changes(previous, changes)
            records[index] = {**previous, **changes, "updatedAt": utcnow_iso()}
            updated = records[index]

        entity = self.model.model_validate(updated)
        if self.logs_updates:
            action = self._update_action(previous, changes)
            await self._log(action, entity_id, entity.name, changes=diff)
        return entity

    def _update_action(self, previous: dict[str, Any], changes: dict[str, Any]) -> ActivityAction:
        return ActivityAction.UPDATED

    async def delete(self, entity_id: str) -> None:
        """Delete remotely; on NotFound remove the local record."""
        result = await self._call_remote(
            f"delete{self.entity}",
            lambda: self._remote.delete(self.entity, entity_id),
        )
        if isinstance(result, Ok):
            await self._local.remove(entity_id)
            return
        if isinstance(result, Failure):
            raise result.error

        self._fallback("delete", entity_id=entity_id)
        removed = await self._local.remove(entity_id)
        if removed is not None and self.logs_updates:
            await self._log(ActivityAction.DELETED, entity_id, removed.get("name", ""))


class OpportunityRepository(EntityRepository[Opportunity]):
    entity = "Opportunity"
    entity_type = EntityType.OPPORTUNITY
    id_prefix = OPPORTUNITY_PREFIX
    model = Opportunity
    create_model = OpportunityCreate
    update_model = OpportunityUpdate

    def defaults(self) -> dict[str, Any]:
        return {
            "name": "",
            "value": 0,
            "stage": OpportunityStage.PROSPECT.value,
            "accountId": "",
        }


class AccountRepository(EntityRepository[Account]):
    entity = "Account"
    entity_type = EntityType.ACCOUNT
    id_prefix = ACCOUNT_PREFIX
    model = Account
    create_model = AccountCreate
    update_model = AccountUpdate

    def defaults(self) -> dict[str, Any]:
        return {"name": "", "email": "", "phone": "", "company": ""}


class LeadRepository(EntityRepository[Lead]):
    """Lead repository: merged reads, audited fallback writes, conversion.

    Args:
        accounts: LocalBackend for ``localAccounts`` (conversion target).
        opportunities: LocalBackend for ``localOpportunities`` (conversion target).
    """

    entity = "Lead"
    entity_type = EntityType.LEAD
    id_prefix = LEAD_PREFIX
    model = Lead
    create_model = LeadCreate
    update_model = LeadUpdate
    logs_updates = True

    def __init__(
        self,
        remote: RemoteBackend,
        local: LocalBackend,
        activity_log: ActivityLog,
        breaker: CircuitBreaker,
        current_user: UserProvider,
        accounts: LocalBackend,
        opportunities: LocalBackend,
    ) -> None:
        super().__init__(remote, local, activity_log, breaker, current_user)
        self._accounts = accounts
        self._opportunities = opportunities

    def defaults(self) -> dict[str, Any]:
        return {
            "name": "",
            "email": "",
            "phone": "",
            "company": "",
            "status": LeadStatus.NEW.value,
            "notes": "",
        }

    def _update_action(self, previous: dict[str, Any], changes: dict[str, Any]) -> ActivityAction:
        status = changes.get("status")
        if status and status != previous.get("status"):
            return ActivityAction.STATUS_CHANGED
        return ActivityAction.UPDATED

    async def get_all(self) -> list[Lead]:
        """Remote leads merged with local ones; local only on any failure.

        Remote search is attempted even while the circuit is open.
        """
        result = await self._call_remote(
            "searchLead",
            lambda: self._remote.search(self.entity),
            endpoint_level=True,
            always_call=True,
        )
        local_records = await self._local.list()

        if isinstance(result, Ok):
            remote_records = [r for r in result.value or [] if isinstance(r, dict)]
            merged = merge_by_id(remote_records, local_records)
            logger.info(
                "crm.leads_merged",
                remote=len(remote_records),
                local=len(local_records),
                merged=len(merged),
            )
            return self._parse_many(merged)

        self._fallback("get_all", reason=type(result).__name__)
        return self._parse_many(local_records)

    async def convert_lead(self, lead_id: str, value: float | None = None) -> ConversionResult:
        """Turn a lead into an Account plus a PROSPECT Opportunity.

        Raises:
            ValueError: value is negative (checked before any call or write).
        """
        if value is not None and value < 0:
            raise ValueError("Opportunity value must be non-negative")

        result = await self._call_remote(
            "convertLead",
            lambda: self._remote.convert_lead(lead_id, value),
        )
        if isinstance(result, Ok):
            if not isinstance(result.value, dict):
                raise RemoteError(
                    "Unexpected response for convertLead",
                    operation="convertLead",
                    status_code=200,
                )
            return ConversionResult.model_validate(result.value)
        if isinstance(result, Failure):
            raise result.error

        self._fallback("convert", entity_id=lead_id)
        # Lock order: leads -> accounts -> opportunities
        async with self._local.collection.transaction() as leads:
            index = find_index(leads, lead_id)
            if index < 0:
                raise EntityNotFoundError(self.entity, lead_id)
            lead = leads[index]
            now = utcnow_iso()

            account = Account(
                id=generate_id(ACCOUNT_PREFIX),
                name=lead.get("name") or "",
                email=lead.get("email"),
                phone=lead.get("phone"),
                company=lead.get("company"),
                created_at=now,
            )
            opportunity = Opportunity(
                id=generate_id(OPPORTUNITY_PREFIX),
                name=f"{account.name} Opportunity",
                value=value or 0,
                stage=OpportunityStage.PROSPECT,
                account_id=account.id,
                account_name=account.name,
                lead_id=lead_id,
                created_at=now,
            )
            # Both records are validated before either collection is written.
            async with self._accounts.collection.transaction() as accounts:
                accounts.append(account.to_record())
            async with self._opportunities.collection.transaction() as opportunities:
                opportunities.append(opportunity.to_record())

            lead["status"] = LeadStatus.CONVERTED.value
            lead["updatedAt"] = now

        await self._log(ActivityAction.CONVERTED, lead_id, account.name)
        await self._log(
            ActivityAction.CREATED, account.id, account.name, entity_type=EntityType.ACCOUNT
        )
        await self._log(
            ActivityAction.CREATED,
            opportunity.id,
            opportunity.name,
            entity_type=EntityType.OPPORTUNITY,
        )

        logger.info(
            "crm.lead_converted",
            lead_id=lead_id,
            account_id=account.id,
            opportunity_id=opportunity.id,
        )
        return ConversionResult(account=account, opportunity=opportunity)

    async def log_email_sent(self, lead_id: str, lead_name: str | None = None) -> ActivityLogResult:
        """Record an ``email_sent`` activity for a lead.

        Without lead_name the lead is looked up in the local collection.

        Raises:
            EntityNotFoundError: lead_name is omitted and the lead is not stored locally.
        """
        if lead_name is None:
            record = await self._local.find(lead_id)
            if record is None:
                raise EntityNotFoundError(self.entity, lead_id)
            lead_name = record.get("name") or ""

        return await self._log(ActivityAction.EMAIL_SENT, lead_id, lead_name)
