"""Pydantic schemas for CRM entities, conversion results and activity records.

Defines:
- Enums: LeadStatus, OpportunityStage, EntityType, ActivityAction
- Entities: Lead, Opportunity, Account (wire format is camelCase JSON)
- Payloads: *Create drafts and *Update partials (only set fields are sent)
- ConversionResult, FieldChange, Activity, ActivityCreate, ActivityLogResult, CurrentUser

Entity models allow extra fields so records coming back from the remote API
round-trip through the local store without losing attributes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


# ── Enums ───────────────────────────────────────────────────────────────────


class LeadStatus(str, Enum):
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    CONVERTED = "CONVERTED"
    LOST = "LOST"


class OpportunityStage(str, Enum):
    PROSPECT = "PROSPECT"
    QUALIFIED = "QUALIFIED"
    PROPOSAL = "PROPOSAL"
    NEGOTIATION = "NEGOTIATION"
    CLOSED_WON = "CLOSED_WON"
    CLOSED_LOST = "CLOSED_LOST"


class EntityType(str, Enum):
    """Entity kinds tracked by the activity log."""

    LEAD = "lead"
    OPPORTUNITY = "opportunity"
    ACCOUNT = "account"


class ActivityAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    CONVERTED = "converted"
    EMAIL_SENT = "email_sent"
    STATUS_CHANGED = "status_changed"
    STAGE_CHANGED = "stage_changed"


# ── Base ────────────────────────────────────────────────────────────────────


class CRMModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict[str, Any]:
        """JSON-ready dict in wire format, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CRMEntity(CRMModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    name: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        """Null fields take their defaults instead of invalidating the record."""
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class CRMPartial(CRMModel):
    """Base for drafts and partial updates; only explicitly set fields count."""

    def to_changes(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


# ── Lead ────────────────────────────────────────────────────────────────────


class Lead(CRMEntity):
    email: str = ""
    phone: str | None = None
    company: str | None = None
    status: LeadStatus = LeadStatus.NEW
    notes: str | None = None


class LeadCreate(CRMPartial):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    status: LeadStatus | None = None
    notes: str | None = None


class LeadUpdate(LeadCreate):
    pass


# ── Opportunity ─────────────────────────────────────────────────────────────


class Opportunity(CRMEntity):
    value: float = Field(default=0.0, ge=0)
    stage: OpportunityStage = OpportunityStage.PROSPECT
    account_id: str = ""
    account_name: str | None = None
    lead_id: str | None = None
    probability: float | None = Field(default=None, ge=0, le=100)
    expected_close_date: str | None = None


class OpportunityCreate(CRMPartial):
    name: str | None = None
    value: float | None = Field(default=None, ge=0)
    stage: OpportunityStage | None = None
    account_id: str | None = None
    account_name: str | None = None
    lead_id: str | None = None
    probability: float | None = Field(default=None, ge=0, le=100)
    expected_close_date: str | None = None


class OpportunityUpdate(OpportunityCreate):
    pass


# ── Account ─────────────────────────────────────────────────────────────────


class Account(CRMEntity):
    email: str | None = None
    phone: str | None = None
    company: str | None = None


class AccountCreate(CRMPartial):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None


class AccountUpdate(AccountCreate):
    pass


class ConversionResult(CRMModel):
    """Entities produced by converting a lead."""

    account: Account
    opportunity: Opportunity


# ── Activity ────────────────────────────────────────────────────────────────


class FieldChange(BaseModel):
    old: Any = None
    new: Any = None


class ActivityCreate(CRMModel):
    """Activity payload before the log assigns id and timestamp."""

    type: EntityType
    entity_id: str
    entity_name: str
    action: ActivityAction
    user_id: str
    user_name: str
    description: str
    changes: dict[str, FieldChange] | None = None


class Activity(ActivityCreate):
    id: str
    timestamp: datetime


class ActivityLogResult(BaseModel):
    """Outcome of appending to the activity log.

    activity is None when persistence failed; error then carries the reason.
    """

    activity: Activity | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.activity is not None


class CurrentUser(BaseModel):
    id: str = "unknown"
    name: str = "Unknown User"
