"""ADSYNC — Project Models."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel
from sqlmodel import SQLModel, Field


class BusinessModel(str, Enum):
    """How the project's client sells."""

    INSIDE_SALES = "inside_sales"
    ECOMMERCE = "ecommerce"
    PDV = "pdv"


class SyncStatus(str, Enum):
    """Last known sync state of a project."""

    PENDING = "pending"
    SYNCING = "syncing"
    SUCCESS = "success"
    PARTIAL = "partial"
    CACHED = "cached"
    ERROR = "error"
    TOKEN_EXPIRED = "token_expired"


class Project(SQLModel, table=True):
    """Tenant-scoped configuration record for one ad account."""

    __tablename__ = "projects"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True, description="Owner")
    name: str
    ad_account_id: str = Field(index=True, description="Meta ad account (act_...)")
    business_model: BusinessModel = Field(default=BusinessModel.ECOMMERCE)
    timezone: str = Field(default="America/Sao_Paulo")
    currency: str = Field(default="BRL")
    webhook_status: str = Field(default=SyncStatus.PENDING.value)
    last_sync_at: Optional[datetime] = None
    archived: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ── Request Schemas ──


class ProjectCreate(BaseModel):
    """Request body for POST /projects."""

    user_id: str
    name: str
    ad_account_id: str
    business_model: BusinessModel = BusinessModel.ECOMMERCE
    timezone: Optional[str] = None
    currency: Optional[str] = None
