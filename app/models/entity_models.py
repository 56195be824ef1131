"""ADSYNC — Campaign / Ad Set / Ad Models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel
from sqlmodel import SQLModel, Field, UniqueConstraint


class EntityType(str, Enum):
    """Levels of the Meta account hierarchy."""

    CAMPAIGN = "campaign"
    AD_SET = "ad_set"
    AD = "ad"


class EntityRecord(BaseModel):
    """Normalized entity metadata as fetched from Meta."""

    entity_type: EntityType
    entity_id: str
    name: str = ""
    status: Optional[str] = None
    objective: Optional[str] = None
    daily_budget: Optional[float] = None
    lifetime_budget: Optional[float] = None
    campaign_id: Optional[str] = None
    adset_id: Optional[str] = None
    creative_id: Optional[str] = None
    creative_thumbnail: Optional[str] = None
    creative_image_url: Optional[str] = None
    creative_video_url: Optional[str] = None
    created_time: Optional[str] = None
    updated_time: Optional[str] = None


class EntityAggregate(SQLModel, table=True):
    """Materialized rollup of daily rows for one entity in the synced window.

    Recomputed from scratch on each sync; never patched incrementally.
    """

    __tablename__ = "entity_aggregates"
    __table_args__ = (
        UniqueConstraint(
            "project_id", "entity_type", "entity_id", name="uq_entity_aggregates"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    entity_type: str = Field(index=True, description="campaign | ad_set | ad")
    entity_id: str = Field(index=True, description="Meta-assigned ID")
    name: str = ""
    status: Optional[str] = None
    objective: Optional[str] = None
    daily_budget: Optional[float] = None
    lifetime_budget: Optional[float] = None
    campaign_id: Optional[str] = None
    adset_id: Optional[str] = None
    creative_id: Optional[str] = None
    creative_thumbnail: Optional[str] = None
    creative_image_url: Optional[str] = None
    creative_video_url: Optional[str] = None

    window_start: str = ""
    window_end: str = ""
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
