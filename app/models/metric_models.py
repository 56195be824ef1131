"""ADSYNC — Daily Metric Models.

`ads_daily_metrics` is the single source of truth for every period total:
one row per (project, ad, date), upserted on that key so re-running a sync
for the same window never duplicates data.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field, UniqueConstraint


class AdsDailyMetric(SQLModel, table=True):
    """One day of performance for one ad."""

    __tablename__ = "ads_daily_metrics"
    __table_args__ = (
        UniqueConstraint("project_id", "ad_id", "date", name="uq_ads_daily_metrics"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    ad_account_id: str
    date: str = Field(index=True, description="YYYY-MM-DD")

    campaign_id: str = Field(index=True)
    campaign_name: str = ""
    campaign_status: Optional[str] = None
    campaign_objective: Optional[str] = None
    adset_id: str = Field(index=True)
    adset_name: str = ""
    adset_status: Optional[str] = None
    ad_id: str = Field(index=True)
    ad_name: str = ""
    ad_status: Optional[str] = None

    creative_id: Optional[str] = None
    creative_thumbnail: Optional[str] = None
    cached_creative_thumbnail: Optional[str] = None

    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    reach: int = 0
    frequency: float = 0.0
    conversions: float = 0.0
    conversion_value: float = 0.0
    ctr: float = 0.0
    cpm: float = 0.0
    cpc: float = 0.0
    cpa: float = 0.0
    roas: float = 0.0

    synced_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PeriodMetric(SQLModel, table=True):
    """Pre-computed entity totals for a named period.

    `synced_at` doubles as the parallel scheduler's cache timestamp.
    """

    __tablename__ = "period_metrics"
    __table_args__ = (
        UniqueConstraint(
            "project_id",
            "period_key",
            "entity_type",
            "entity_id",
            name="uq_period_metrics",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    period_key: str = Field(index=True, description="last_7d | this_month | ...")
    entity_type: str = Field(description="campaign | ad_set | ad")
    entity_id: str
    entity_name: str = ""
    status: str = "UNKNOWN"
    metrics: dict = Field(default_factory=dict, sa_column=Column(JSON))
    synced_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), index=True
    )


# ─────────────────────────────────────────────
# IN-MEMORY SCHEMAS — produced by the insights fetcher
# ─────────────────────────────────────────────


class DailyInsight(BaseModel):
    """A single day's performance for one ad, as parsed from Meta."""

    ad_id: str
    date: str
    ad_name: str = ""
    adset_id: str = ""
    adset_name: str = ""
    campaign_id: str = ""
    campaign_name: str = ""
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    reach: int = 0
    frequency: float = 0.0
    conversions: float = 0.0
    conversion_value: float = 0.0


class MetricTotals(BaseModel):
    """Summed volumes plus ratios derived from them."""

    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    reach: int = 0
    conversions: float = 0.0
    conversion_value: float = 0.0
    frequency: float = 0.0
    ctr: float = 0.0
    cpm: float = 0.0
    cpc: float = 0.0
    cpa: float = 0.0
    roas: float = 0.0
