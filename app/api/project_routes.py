"""ADSYNC — Project & Dashboard Data Routes."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import delete
from sqlmodel import Session, select

from app.config import settings
from app.connectors.meta.client import TokenExpiredError, normalize_account_id
from app.database import get_session
from app.models.entity_models import EntityAggregate, EntityType
from app.models.history_models import OptimizationHistory, SyncLog
from app.models.metric_models import AdsDailyMetric, PeriodMetric
from app.models.project_models import Project, ProjectCreate
from app.sync.gaps import DEFAULT_MIN_GAP_DAYS, detect_gaps
from app.sync.periods import resolve_window
from app.sync.pipeline import SyncError, SyncInputError, SyncParams, TimeRange, run_sync
from app.core.logging import get_logger

logger = get_logger("api.projects")

router = APIRouter(prefix="/projects", tags=["Projects"])

# Rows owned by a project, removed with it
PROJECT_TABLES = (AdsDailyMetric, EntityAggregate, PeriodMetric, OptimizationHistory, SyncLog)


def _get_project(session: Session, project_id: str) -> Project:
    project = session.get(Project, project_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    return project


# ── CRUD ──


@router.post("", status_code=201)
async def create_project(body: ProjectCreate, session: Session = Depends(get_session)):
    """Create a project for one Meta ad account."""
    project = Project(
        user_id=body.user_id,
        name=body.name,
        ad_account_id=normalize_account_id(body.ad_account_id),
        business_model=body.business_model,
        timezone=body.timezone or settings.default_timezone,
        currency=body.currency or settings.default_currency,
    )
    session.add(project)
    session.commit()
    session.refresh(project)
    logger.info(f"Created project {project.name}", extra={"project_id": project.id})
    return project


@router.get("")
async def list_projects(
    user_id: Optional[str] = Query(None),
    include_archived: bool = Query(False),
    session: Session = Depends(get_session),
):
    query = select(Project).order_by(Project.created_at.desc())  # type: ignore
    if user_id:
        query = query.where(Project.user_id == user_id)
    if not include_archived:
        query = query.where(Project.archived == False)  # noqa: E712
    projects = session.exec(query).all()
    return {"status": "success", "count": len(projects), "projects": projects}


@router.get("/{project_id}")
async def get_project(project_id: str, session: Session = Depends(get_session)):
    return _get_project(session, project_id)


@router.post("/{project_id}/archive")
async def archive_project(
    project_id: str,
    archived: bool = Query(True),
    session: Session = Depends(get_session),
):
    """Archive (or unarchive) a project; archived projects are not synced."""
    project = _get_project(session, project_id)
    project.archived = archived
    project.updated_at = datetime.now(timezone.utc)
    session.add(project)
    session.commit()
    session.refresh(project)
    return project


@router.delete("/{project_id}")
async def delete_project(project_id: str, session: Session = Depends(get_session)):
    """Delete a project and every row it owns."""
    project = _get_project(session, project_id)
    for table in PROJECT_TABLES:
        session.exec(delete(table).where(table.project_id == project_id))  # type: ignore
    session.delete(project)
    session.commit()
    logger.info("Deleted project", extra={"project_id": project_id})
    return {"status": "success", "deleted": project_id}


# ── Dashboard Data ──


@router.get("/{project_id}/daily-metrics")
async def get_daily_metrics(
    project_id: str,
    since: Optional[str] = Query(None, description="YYYY-MM-DD"),
    until: Optional[str] = Query(None, description="YYYY-MM-DD"),
    date_preset: Optional[str] = Query(None),
    campaign_id: Optional[str] = Query(None),
    session: Session = Depends(get_session),
):
    """Daily ad rows for a window (last 30 days by default)."""
    _get_project(session, project_id)
    start, end = resolve_window(date_preset, since, until)
    query = (
        select(AdsDailyMetric)
        .where(
            AdsDailyMetric.project_id == project_id,
            AdsDailyMetric.date >= start,
            AdsDailyMetric.date <= end,
        )
        .order_by(AdsDailyMetric.date, AdsDailyMetric.ad_id)
    )
    if campaign_id:
        query = query.where(AdsDailyMetric.campaign_id == campaign_id)
    rows = session.exec(query).all()
    return {"status": "success", "since": start, "until": end, "count": len(rows), "rows": rows}


@router.get("/{project_id}/entities")
async def get_entities(
    project_id: str,
    entity_type: EntityType = Query(EntityType.CAMPAIGN),
    session: Session = Depends(get_session),
):
    """Materialized campaign / ad set / ad aggregates, highest spend first."""
    _get_project(session, project_id)
    rows = session.exec(
        select(EntityAggregate)
        .where(
            EntityAggregate.project_id == project_id,
            EntityAggregate.entity_type == entity_type.value,
        )
        .order_by(EntityAggregate.spend.desc())  # type: ignore
    ).all()
    return {"status": "success", "count": len(rows), "entities": rows}


@router.get("/{project_id}/optimization-history")
async def get_optimization_history(
    project_id: str,
    entity_type: Optional[EntityType] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    session: Session = Depends(get_session),
):
    _get_project(session, project_id)
    query = (
        select(OptimizationHistory)
        .where(OptimizationHistory.project_id == project_id)
        .order_by(OptimizationHistory.detected_at.desc(), OptimizationHistory.id.desc())  # type: ignore
        .limit(limit)
    )
    if entity_type:
        query = query.where(OptimizationHistory.entity_type == entity_type.value)
    rows = session.exec(query).all()
    return {"status": "success", "count": len(rows), "history": rows}


@router.get("/{project_id}/sync-logs")
async def get_sync_logs(
    project_id: str,
    limit: int = Query(20, ge=1, le=200),
    session: Session = Depends(get_session),
):
    _get_project(session, project_id)
    rows = session.exec(
        select(SyncLog)
        .where(SyncLog.project_id == project_id)
        .order_by(SyncLog.created_at.desc(), SyncLog.id.desc())  # type: ignore
        .limit(limit)
    ).all()
    return {"status": "success", "count": len(rows), "logs": rows}


# ── Gaps ──


class GapRequest(BaseModel):
    """Request body for POST /projects/{id}/gaps."""

    since: Optional[str] = None
    until: Optional[str] = None
    min_gap_days: int = DEFAULT_MIN_GAP_DAYS
    fix: bool = False
    """Re-sync each gap found."""
    access_token: Optional[str] = None


@router.post("/{project_id}/gaps")
async def find_and_fix_gaps(
    project_id: str,
    body: GapRequest,
    session: Session = Depends(get_session),
):
    """Report stretches of days with no data, optionally re-syncing them."""
    project = _get_project(session, project_id)
    start, end = resolve_window("last_90d", body.since, body.until)
    try:
        gaps = detect_gaps(session, project_id, start, end, body.min_gap_days)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    fixes = []
    if body.fix:
        for gap in gaps:
            params = SyncParams(
                project_id=project_id,
                ad_account_id=project.ad_account_id,
                access_token=body.access_token,
                time_range=TimeRange(since=gap.gap_start, until=gap.gap_end),
                light_sync=True,
            )
            try:
                report = await run_sync(session, params)
                fixes.append(
                    {**gap.model_dump(), "fixed": True, "records_imported": report.records_count}
                )
            except TokenExpiredError as e:
                raise HTTPException(
                    status_code=401,
                    detail={"success": False, "error": str(e), "token_expired": True},
                )
            except (SyncError, SyncInputError) as e:
                fixes.append({**gap.model_dump(), "fixed": False, "error": str(e)})

    return {
        "status": "success",
        "since": start,
        "until": end,
        "gaps": [g.model_dump() for g in gaps],
        "fixes": fixes,
    }
