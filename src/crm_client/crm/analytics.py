"""Pipeline and conversion summary over CRM entities.

Pure functions over the lists returned by the repositories' get_all(), plus
build_summary() which fetches them through a CRMClient. Figures:
- pipeline value: sum of opportunity values in open stages
- won value: sum of CLOSED_WON opportunity values
- conversion rate: CONVERTED leads / all leads, as a percentage
- counts per lead status / opportunity stage, value per stage
- daily series of new leads vs conversions over the last N days (UTC dates)
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Iterable, Optional

import structlog
from pydantic import BaseModel, Field

from src.crm_client.crm.identity import utcnow
from src.crm_client.crm.schemas import Lead, LeadStatus, Opportunity, OpportunityStage

if TYPE_CHECKING:
    from src.crm_client.crm.client import CRMClient

logger = structlog.get_logger(__name__)

CLOSED_STAGES = frozenset({OpportunityStage.CLOSED_WON, OpportunityStage.CLOSED_LOST})
DEFAULT_SERIES_DAYS = 30


class DailyLeadActivity(BaseModel):
    day: date
    new_leads: int = 0
    conversions: int = 0


class CRMSummary(BaseModel):
    """Snapshot of lead and pipeline figures."""

    total_leads: int = Field(default=0, description="Number of leads")
    total_opportunities: int = Field(default=0, description="Number of opportunities")
    total_accounts: int = Field(default=0, description="Number of accounts")
    pipeline_value: float = Field(
        default=0.0,
        description="Total value of opportunities not yet closed",
    )
    won_value: float = Field(default=0.0, description="Total value of CLOSED_WON opportunities")
    conversion_rate: float = Field(
        default=0.0,
        description="Percentage of leads with status CONVERTED (one decimal)",
    )
    leads_by_status: dict[str, int] = Field(default_factory=dict)
    opportunities_by_stage: dict[str, int] = Field(default_factory=dict)
    value_by_stage: dict[str, float] = Field(default_factory=dict)
    daily: list[DailyLeadActivity] = Field(default_factory=list)
    as_of: datetime = Field(..., description="Timestamp of this snapshot (UTC)")


def pipeline_value(opportunities: Iterable[Opportunity]) -> float:
    return sum(o.value for o in opportunities if o.stage not in CLOSED_STAGES)


def won_value(opportunities: Iterable[Opportunity]) -> float:
    return sum(o.value for o in opportunities if o.stage == OpportunityStage.CLOSED_WON)


def conversion_rate(leads: list[Lead]) -> float:
    """Converted leads as a percentage of all leads; 0.0 with no leads."""
    if not leads:
        return 0.0
    converted = sum(1 for lead in leads if lead.status == LeadStatus.CONVERTED)
    return round(converted / len(leads) * 100, 1)


def daily_lead_activity(
    leads: Iterable[Lead],
    days: int = DEFAULT_SERIES_DAYS,
    today: Optional[date] = None,
) -> list[DailyLeadActivity]:
    """Per-day new leads (by created_at) and conversions (by updated_at).

    The series covers ``days`` consecutive days ending with today, oldest first.
    """
    today = today or utcnow().date()
    series = {
        today - timedelta(days=offset): DailyLeadActivity(day=today - timedelta(days=offset))
        for offset in range(days - 1, -1, -1)
    }
    for lead in leads:
        if lead.created_at is not None and lead.created_at.date() in series:
            series[lead.created_at.date()].new_leads += 1
        if (
            lead.status == LeadStatus.CONVERTED
            and lead.updated_at is not None
            and lead.updated_at.date() in series
        ):
            series[lead.updated_at.date()].conversions += 1
    return list(series.values())


def summarize(
    leads: list[Lead],
    opportunities: list[Opportunity],
    total_accounts: int = 0,
    days: int = DEFAULT_SERIES_DAYS,
    today: Optional[date] = None,
) -> CRMSummary:
    value_by_stage: dict[str, float] = defaultdict(float)
    for opp in opportunities:
        value_by_stage[opp.stage.value] += opp.value

    return CRMSummary(
        total_leads=len(leads),
        total_opportunities=len(opportunities),
        total_accounts=total_accounts,
        pipeline_value=pipeline_value(opportunities),
        won_value=won_value(opportunities),
        conversion_rate=conversion_rate(leads),
        leads_by_status=dict(Counter(lead.status.value for lead in leads)),
        opportunities_by_stage=dict(Counter(opp.stage.value for opp in opportunities)),
        value_by_stage=dict(value_by_stage),
        daily=daily_lead_activity(leads, days=days, today=today),
        as_of=utcnow(),
    )


async def build_summary(
    client: CRMClient,
    days: int = DEFAULT_SERIES_DAYS,
    today: Optional[date] = None,
) -> CRMSummary:
    """Fetch leads, opportunities and accounts through the client and summarize.

    Remote errors from the opportunity/account listings propagate.
    """
    leads = await client.leads.get_all()
    opportunities = await client.opportunities.get_all()
    accounts = await client.accounts.get_all()

    summary = summarize(
        leads,
        opportunities,
        total_accounts=len(accounts),
        days=days,
        today=today,
    )
    logger.info(
        "analytics.summary_computed",
        leads=summary.total_leads,
        opportunities=summary.total_opportunities,
        pipeline_value=summary.pipeline_value,
        won_value=summary.won_value,
    )
    return summary
