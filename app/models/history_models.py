"""ADSYNC — Append-only Audit Models (optimization history, sync logs)."""

from datetime import datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field


class OptimizationHistory(SQLModel, table=True):
    """A tracked field that changed between two sync passes.

    Immutable once written.
    """

    __tablename__ = "optimization_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    entity_type: str = Field(index=True, description="campaign | ad_set | ad")
    entity_id: str = Field(index=True)
    entity_name: str = ""
    field_changed: str = Field(description="status | daily_budget | ... | created")
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    change_type: str = Field(
        description="created | paused | activated | status_change | budget_change | modified"
    )
    change_percentage: Optional[float] = None
    detected_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), index=True
    )


class SyncLog(SQLModel, table=True):
    """Outcome of one sync attempt."""

    __tablename__ = "sync_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id")
    status: str = Field(description="success | partial | error")
    message: str = Field(default="", description="JSON payload")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), index=True
    )
