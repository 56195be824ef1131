"""ADSYNC — Sync API Routes."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from app.config import settings
from app.connectors.meta.client import TokenExpiredError
from app.database import get_session
from app.scheduler.parallel import (
    ParallelSyncScheduler,
    ParallelSyncSummary,
    load_projects,
    resolve_periods,
)
from app.sync.pipeline import SyncError, SyncInputError, SyncParams, run_sync
from app.core.logging import get_logger

logger = get_logger("api.sync")

router = APIRouter(tags=["Sync"])


# ── Request / Response Models ──


class SyncData(BaseModel):
    campaigns_count: int
    ad_sets_count: int
    ads_count: int
    records_count: int
    changes_count: int
    validation_attempts: int
    elapsed_seconds: float
    synced_at: str


class SyncResponse(BaseModel):
    """Response for POST /meta-ads-sync."""

    success: bool = True
    partial: bool = False
    rate_limited: bool = False
    keep_existing: bool = False
    step: str = "complete"
    data: SyncData
    message: Optional[str] = None


class ParallelSyncRequest(BaseModel):
    """Request body for POST /scheduled-sync-parallel."""

    periods: Optional[List[str]] = None
    group: Optional[str] = "daily"
    """One of: daily, priority, recent, extended, historical, all."""
    skip_cache: bool = False
    project_ids: Optional[List[str]] = None
    concurrent: Optional[int] = None
    light_sync: bool = True

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"group": "daily"},
                {"periods": ["last_7d", "last_30d"], "skip_cache": True, "concurrent": 5},
            ]
        }
    }


# ── Endpoints ──


@router.post("/meta-ads-sync", response_model=SyncResponse)
async def meta_ads_sync(
    request: SyncParams,
    session: Session = Depends(get_session),
):
    """Sync one project's Meta ads data for a date range or preset."""
    try:
        report = await run_sync(session, request)
    except SyncInputError as e:
        raise HTTPException(
            status_code=400,
            detail={"success": False, "error": str(e), "step": "init"},
        )
    except TokenExpiredError as e:
        raise HTTPException(
            status_code=401,
            detail={
                "success": False,
                "error": f"Meta access token expired or invalid: {e}",
                "token_expired": True,
                "step": "auth",
            },
        )
    except SyncError as e:
        raise HTTPException(
            status_code=500,
            detail={"success": False, "error": str(e), "step": e.step},
        )

    return SyncResponse(
        success=report.success,
        partial=report.partial,
        rate_limited=report.rate_limited,
        keep_existing=report.keep_existing,
        step=report.step,
        data=SyncData(**report.model_dump(include=set(SyncData.model_fields))),
        message=report.message,
    )


@router.post("/scheduled-sync-parallel", response_model=ParallelSyncSummary)
async def scheduled_sync_parallel(
    request: Optional[ParallelSyncRequest] = None,
    session: Session = Depends(get_session),
):
    """Sync all active projects (or the given ones) in parallel batches."""
    request = request or ParallelSyncRequest()
    if not settings.meta_access_token:
        raise HTTPException(
            status_code=400,
            detail={"success": False, "error": "META_ACCESS_TOKEN not configured"},
        )

    projects = load_projects(session, request.project_ids)
    periods = resolve_periods(request.periods, request.group)
    bind = session.get_bind()

    scheduler = ParallelSyncScheduler(
        session_factory=lambda: Session(bind),
        concurrent=request.concurrent,
        light_sync=request.light_sync,
    )
    try:
        return await scheduler.run(projects, periods, skip_cache=request.skip_cache)
    except Exception as e:
        logger.error(f"Parallel sync failed: {e}")
        raise HTTPException(
            status_code=500, detail={"success": False, "error": str(e)}
        )
