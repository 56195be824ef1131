"""ADSYNC — Parallel Sync Scheduler.

Keeps every active project fresh across a list of named periods:
  - projects run in fixed-size batches, each batch awaited jointly;
  - a fixed delay separates batches, and a shorter one separates the
    period calls of a single project, to stay under Meta's rate limits;
  - a period is skipped while its period_metrics rows are younger than
    the period's TTL, unless `skip_cache` is set.
"""

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from pydantic import BaseModel
from sqlmodel import Session, select

from app.config import settings
from app.connectors.meta.client import Sleep, TokenExpiredError
from app.models.project_models import Project, SyncStatus
from app.sync import persistence
from app.sync.periods import PERIOD_GROUPS, cache_ttl, period_dates
from app.sync.pipeline import SyncParams, SyncReport, TimeRange, run_sync
from app.core.logging import get_logger

logger = get_logger("scheduler.parallel")

T = TypeVar("T")

PeriodRunner = Callable[[Session, SyncParams], Awaitable[SyncReport]]
SessionFactory = Callable[[], Session]


class ProjectRef(BaseModel):
    """The few project fields a scheduled sync needs."""

    id: str
    name: str
    ad_account_id: str


class ProjectSyncResult(BaseModel):
    project_id: str
    project_name: str
    periods_synced: List[str] = []
    periods_skipped: List[str] = []
    periods_failed: List[str] = []
    token_expired: bool = False
    elapsed_seconds: float = 0.0


class ParallelSyncSummary(BaseModel):
    success: bool = True
    elapsed_seconds: float = 0.0
    elapsed_minutes: float = 0.0
    projects_count: int = 0
    batch_sizes: List[int] = []
    total_synced: int = 0
    total_skipped: int = 0
    total_failed: int = 0
    results: List[ProjectSyncResult] = []


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into consecutive lists of at most `size`."""
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def resolve_periods(periods: Optional[List[str]], group: Optional[str]) -> List[str]:
    """Explicit periods win; otherwise the group's periods (daily by default)."""
    if periods:
        return periods
    return PERIOD_GROUPS.get(group or "daily", PERIOD_GROUPS["daily"])


def load_projects(
    session: Session, project_ids: Optional[List[str]] = None
) -> List[ProjectRef]:
    """Active projects with an ad account, optionally restricted to ids."""
    query = select(Project).where(Project.archived == False, Project.ad_account_id != "")  # noqa: E712
    if project_ids:
        query = query.where(Project.id.in_(project_ids))  # type: ignore
    return [
        ProjectRef(id=p.id, name=p.name, ad_account_id=p.ad_account_id)
        for p in session.exec(query).all()
    ]


def _final_status(result: ProjectSyncResult, period_count: int) -> str:
    if result.token_expired:
        return SyncStatus.TOKEN_EXPIRED.value
    synced, failed = len(result.periods_synced), len(result.periods_failed)
    if synced and not failed:
        return SyncStatus.SUCCESS.value
    if synced and failed:
        return SyncStatus.PARTIAL.value
    if len(result.periods_skipped) == period_count:
        return SyncStatus.CACHED.value
    return SyncStatus.ERROR.value


class ParallelSyncScheduler:
    """Batch-parallel, fixed-interval sync of many projects."""

    def __init__(
        self,
        session_factory: SessionFactory,
        runner: PeriodRunner = run_sync,
        sleep: Sleep = asyncio.sleep,
        concurrent: Optional[int] = None,
        batch_delay: Optional[float] = None,
        period_delay: Optional[float] = None,
        light_sync: bool = True,
    ):
        limit = concurrent or settings.concurrent_projects
        self.concurrent = max(1, min(limit, settings.max_concurrent_projects))
        self.batch_delay = (
            settings.batch_delay_seconds if batch_delay is None else batch_delay
        )
        self.period_delay = (
            settings.period_delay_seconds if period_delay is None else period_delay
        )
        self.session_factory = session_factory
        self.runner = runner
        self.sleep = sleep
        self.light_sync = light_sync

    async def sync_project(
        self, project: ProjectRef, periods: List[str], skip_cache: bool = False
    ) -> ProjectSyncResult:
        """Sync every period of one project, one after another."""
        started = time.monotonic()
        result = ProjectSyncResult(project_id=project.id, project_name=project.name)
        log_extra = {"project_id": project.id}
        logger.info(f"[{project.name}] Starting sync for {len(periods)} periods", extra=log_extra)

        with self.session_factory() as session:
            for i, period_key in enumerate(periods):
                dates = period_dates(period_key)
                if dates is None:
                    logger.warning(f"[{project.name}] {period_key}: invalid period", extra=log_extra)
                    result.periods_failed.append(period_key)
                    continue

                if not skip_cache:
                    cutoff = datetime.now(timezone.utc) - cache_ttl(period_key)
                    if persistence.is_period_cached(session, project.id, period_key, cutoff):
                        result.periods_skipped.append(period_key)
                        logger.info(f"[{project.name}] {period_key}: ⏭ cached", extra=log_extra)
                        continue

                params = SyncParams(
                    project_id=project.id,
                    ad_account_id=project.ad_account_id,
                    time_range=TimeRange(since=dates[0], until=dates[1]),
                    period_key=period_key,
                    light_sync=self.light_sync,
                )
                try:
                    report = await self.runner(session, params)
                    if report.success:
                        result.periods_synced.append(period_key)
                        logger.info(
                            f"[{project.name}] {period_key}: ✓ {report.elapsed_seconds}s",
                            extra={**log_extra, "period_key": period_key},
                        )
                    else:
                        result.periods_failed.append(period_key)
                except TokenExpiredError as e:
                    # Every remaining period would fail the same way
                    logger.error(f"[{project.name}] token expired: {e}", extra=log_extra)
                    result.token_expired = True
                    result.periods_failed.extend(
                        p for p in periods[i:] if p not in result.periods_failed
                    )
                    break
                except Exception as e:
                    result.periods_failed.append(period_key)
                    logger.error(
                        f"[{project.name}] {period_key}: ✗ {e}",
                        extra={**log_extra, "period_key": period_key},
                    )

                if i < len(periods) - 1:
                    await self.sleep(self.period_delay)

            result.elapsed_seconds = round(time.monotonic() - started, 1)
            status = _final_status(result, len(periods))
            persistence.update_project_status(
                session, project.id, status, touch_last_sync=True
            )
            persistence.write_sync_log(
                session,
                project.id,
                status if status in (SyncStatus.SUCCESS.value, SyncStatus.PARTIAL.value) else "error",
                {
                    "type": "parallel_sync",
                    "synced": result.periods_synced,
                    "skipped": result.periods_skipped,
                    "failed": result.periods_failed,
                    "elapsed": f"{result.elapsed_seconds}s",
                },
            )

        logger.info(
            f"[{project.name}] Complete: {len(result.periods_synced)} synced, "
            f"{len(result.periods_skipped)} cached, {len(result.periods_failed)} failed",
            extra=log_extra,
        )
        return result

    async def run(
        self,
        projects: Sequence[ProjectRef],
        periods: List[str],
        skip_cache: bool = False,
    ) -> ParallelSyncSummary:
        """Sync all projects batch by batch."""
        started = time.monotonic()
        batches = chunk(projects, self.concurrent)
        summary = ParallelSyncSummary(projects_count=len(projects))
        logger.info(
            f"Parallel sync: {len(projects)} projects, {len(batches)} batches, "
            f"periods={json.dumps(periods)}, skip_cache={skip_cache}"
        )

        for index, batch in enumerate(batches):
            logger.info(f"Batch {index + 1}/{len(batches)} ({len(batch)} projects)")
            summary.batch_sizes.append(len(batch))
            batch_results = await asyncio.gather(
                *(self.sync_project(p, periods, skip_cache) for p in batch)
            )
            summary.results.extend(batch_results)

            if index < len(batches) - 1:
                logger.info(f"Waiting {self.batch_delay}s before next batch")
                await self.sleep(self.batch_delay)

        elapsed = time.monotonic() - started
        summary.elapsed_seconds = round(elapsed, 1)
        summary.elapsed_minutes = round(elapsed / 60, 2)
        summary.total_synced = sum(len(r.periods_synced) for r in summary.results)
        summary.total_skipped = sum(len(r.periods_skipped) for r in summary.results)
        summary.total_failed = sum(len(r.periods_failed) for r in summary.results)
        logger.info(
            f"Parallel sync complete in {summary.elapsed_seconds}s: "
            f"{summary.total_synced} synced, {summary.total_skipped} cached, "
            f"{summary.total_failed} failed"
        )
        return summary
