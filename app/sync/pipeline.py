"""ADSYNC — Meta Ads Sync Pipeline.

Runs one sync pass for one project:
  entities → insights (validated, retried) → creatives + image cache →
  aggregate → detect changes → upsert → sync log

Error policy:
  - token expiry aborts the pass and is re-raised so the caller can ask
    the user to reconnect;
  - rate limiting that outlives the client's retries is a soft failure:
    existing data is kept and the pass still reports success;
  - a failing creative lookup or thumbnail download is logged and skipped;
  - anything else is logged to sync_logs and re-raised as SyncError.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel
from sqlmodel import Session

from app.config import settings
from app.connectors.meta.client import (
    MetaAPIError,
    MetaClient,
    RateLimitError,
    Sleep,
    TokenExpiredError,
    normalize_account_id,
)
from app.connectors.meta.endpoints import MetaEndpoints
from app.connectors.meta.transformer import flatten_insights
from app.analyzer.aggregator import build_aggregates
from app.analyzer.change_detector import detect_changes
from app.analyzer.validation import validate_rows
from app.models.entity_models import EntityRecord
from app.models.metric_models import DailyInsight
from app.models.project_models import Project, SyncStatus
from app.sync.image_cache import warm_image_cache
from app.sync.periods import parse_date, resolve_window
from app.sync import persistence
from app.core.logging import get_logger

logger = get_logger("sync.pipeline")

RATE_LIMIT_MESSAGE = "Meta API rate limit reached; existing data kept. Try again in 2-3 minutes."
PARTIAL_MESSAGE = "Partial sync: no ad sets or ads returned by Meta."


class SyncInputError(ValueError):
    """The request cannot be processed as given."""


class SyncError(Exception):
    """A sync pass failed at `step`."""

    def __init__(self, message: str, step: str):
        self.step = step
        super().__init__(message)


# ── Request / Report Models ──


class TimeRange(BaseModel):
    since: str
    until: str


class SyncParams(BaseModel):
    """Parameters for one sync pass."""

    project_id: Optional[str] = None
    ad_account_id: Optional[str] = None
    access_token: Optional[str] = None
    date_preset: Optional[str] = None
    time_range: Optional[TimeRange] = None
    period_key: Optional[str] = None
    light_sync: bool = False
    """Skip creative lookups and the image cache."""
    skip_image_cache: bool = False


class SyncReport(BaseModel):
    """Outcome of one sync pass."""

    success: bool = True
    partial: bool = False
    rate_limited: bool = False
    keep_existing: bool = False
    step: str = "complete"
    project_id: str = ""
    period_key: Optional[str] = None
    window_start: str = ""
    window_end: str = ""
    campaigns_count: int = 0
    ad_sets_count: int = 0
    ads_count: int = 0
    records_count: int = 0
    changes_count: int = 0
    images_cached: int = 0
    validation_attempts: int = 0
    elapsed_seconds: float = 0.0
    synced_at: str = ""
    message: Optional[str] = None


# ── Steps ──


def _check_params(session: Session, params: SyncParams) -> Tuple[str, str, str, str]:
    """Validate input and resolve (token, account, since, until)."""
    token = params.access_token or settings.meta_access_token
    if not token:
        raise SyncInputError("Meta access token is required.")
    if not params.project_id or not params.ad_account_id:
        raise SyncInputError("project_id and ad_account_id are required")
    if session.get(Project, params.project_id) is None:
        raise SyncInputError(f"Project not found: {params.project_id}")

    since = until = None
    if params.time_range:
        since = parse_date(params.time_range.since)
        until = parse_date(params.time_range.until)
        if since is None or until is None:
            raise SyncInputError("time_range dates must be YYYY-MM-DD")
        if since > until:
            raise SyncInputError("time_range.since must not be after time_range.until")

    date_start, date_stop = resolve_window(
        params.date_preset,
        params.time_range.since if params.time_range else None,
        params.time_range.until if params.time_range else None,
    )
    return token, normalize_account_id(params.ad_account_id), date_start, date_stop


async def _fetch_validated_insights(
    endpoints: MetaEndpoints,
    date_start: str,
    date_stop: str,
    sleep: Sleep,
    project_id: str,
) -> Tuple[List[DailyInsight], int]:
    """Fetch insights, re-running the pass while the result looks empty."""
    max_retries = settings.max_validation_retries
    attempt = 0
    while True:
        insights = await endpoints.fetch_ad_insights(date_start, date_stop)
        rows = flatten_insights(insights)
        verdict = validate_rows(rows, attempt, max_retries)
        if verdict.valid:
            if verdict.reason:
                logger.warning(
                    f"Accepting suspicious insights: {verdict.reason}",
                    extra={"project_id": project_id, "attempt": attempt},
                )
            return rows, attempt + 1
        attempt += 1
        logger.warning(
            f"Suspicious insights ({verdict.reason}); retrying pass "
            f"{attempt}/{max_retries} in {settings.validation_retry_delay_seconds}s",
            extra={"project_id": project_id, "attempt": attempt},
        )
        await sleep(settings.validation_retry_delay_seconds)


async def _enrich_creatives(
    endpoints: MetaEndpoints, ads: List[EntityRecord], project_id: str
) -> None:
    """Fill creative image/video URLs on ads; failures are skipped."""
    try:
        details = await endpoints.fetch_creative_details(
            [a.creative_id for a in ads if a.creative_id]
        )
    except TokenExpiredError:
        raise
    except MetaAPIError as e:
        logger.warning(
            f"Creative lookup skipped: {e}", extra={"project_id": project_id}
        )
        return

    for ad in ads:
        d: Dict[str, Optional[str]] = details.get(ad.creative_id or "", {})
        if not d:
            continue
        ad.creative_thumbnail = d.get("thumbnail_url") or ad.creative_thumbnail
        ad.creative_image_url = d.get("image_url") or ad.creative_image_url
        ad.creative_video_url = d.get("video_url") or ad.creative_video_url


# ── Orchestrator ──


async def run_sync(
    session: Session,
    params: SyncParams,
    client: Optional[MetaClient] = None,
    sleep: Sleep = asyncio.sleep,
    image_transport=None,
) -> SyncReport:
    """Execute one full sync pass for a project."""
    token, account_id, date_start, date_stop = _check_params(session, params)
    project_id = params.project_id
    log_extra = {"project_id": project_id, "period_key": params.period_key}

    own_client = client is None
    client = client or MetaClient(token, account_id, sleep=sleep)
    started = time.monotonic()
    step = "init"

    logger.info(
        f"🔄 Starting sync for {account_id}: {date_start} → {date_stop}",
        extra=log_extra,
    )
    persistence.update_project_status(session, project_id, SyncStatus.SYNCING.value)

    report = SyncReport(
        project_id=project_id,
        period_key=params.period_key,
        window_start=date_start,
        window_end=date_stop,
    )

    try:
        endpoints = MetaEndpoints(client)

        step = "campaigns"
        campaigns = await endpoints.fetch_campaigns()
        step = "ad_sets"
        adsets = await endpoints.fetch_adsets()
        step = "ads"
        ads = await endpoints.fetch_ads()
        logger.info(
            f"Fetched {len(campaigns)} campaigns, {len(adsets)} ad sets, {len(ads)} ads",
            extra=log_extra,
        )

        step = "insights"
        rows, passes = await _fetch_validated_insights(
            endpoints, date_start, date_stop, sleep, project_id
        )

        cached_thumbnails: Dict[str, str] = {}
        if not params.light_sync:
            step = "creatives"
            await _enrich_creatives(endpoints, ads, project_id)
            if not params.skip_image_cache:
                step = "image_cache"
                cache = await warm_image_cache(
                    project_id, ads, transport=image_transport, sleep=sleep
                )
                cached_thumbnails = cache.cached

        step = "aggregate"
        entities = campaigns + adsets + ads
        previous = persistence.load_entity_snapshot(session, project_id)
        aggregates = build_aggregates(
            project_id, entities, rows, date_start, date_stop, previous
        )
        fetched = {(e.entity_type.value, e.entity_id) for e in entities}
        changes = detect_changes(project_id, aggregates, previous, fetched)

        step = "persist"
        records = persistence.build_daily_records(
            project_id, account_id, rows, entities, cached_thumbnails
        )
        persistence.upsert_daily_metrics(session, records)
        persistence.upsert_entity_aggregates(session, aggregates)
        persistence.append_history(session, changes)
        if params.period_key:
            persistence.upsert_period_metrics(
                session, project_id, params.period_key, aggregates
            )
        session.commit()

    except TokenExpiredError as e:
        session.rollback()
        logger.error(f"Token expired during {step}: {e}", extra=log_extra)
        persistence.update_project_status(
            session, project_id, SyncStatus.TOKEN_EXPIRED.value
        )
        persistence.write_sync_log(
            session,
            project_id,
            "error",
            {"type": "meta_sync", "step": step, "error": str(e), "token_expired": True},
        )
        raise

    except RateLimitError as e:
        session.rollback()
        logger.warning(f"Rate limited during {step}, keeping existing data", extra=log_extra)
        persistence.update_project_status(
            session, project_id, SyncStatus.PARTIAL.value
        )
        persistence.write_sync_log(
            session,
            project_id,
            "partial",
            {"type": "meta_sync", "step": step, "error": str(e), "rate_limited": True},
        )
        report.step = step
        report.rate_limited = True
        report.keep_existing = True
        report.partial = True
        report.message = RATE_LIMIT_MESSAGE
        report.elapsed_seconds = round(time.monotonic() - started, 1)
        report.synced_at = datetime.now(timezone.utc).isoformat()
        return report

    except Exception as e:
        session.rollback()
        logger.error(f"Sync failed during {step}: {e}", extra=log_extra)
        persistence.update_project_status(session, project_id, SyncStatus.ERROR.value)
        persistence.write_sync_log(
            session,
            project_id,
            "error",
            {"type": "meta_sync", "step": step, "error": str(e)},
        )
        raise SyncError(str(e), step) from e

    finally:
        if own_client:
            await client.close()

    elapsed = round(time.monotonic() - started, 1)
    partial = not adsets or not ads
    status = SyncStatus.PARTIAL.value if partial else SyncStatus.SUCCESS.value

    report.partial = partial
    report.campaigns_count = len(campaigns)
    report.ad_sets_count = len(adsets)
    report.ads_count = len(ads)
    report.records_count = len(records)
    report.changes_count = len(changes)
    report.images_cached = len(cached_thumbnails)
    report.validation_attempts = passes
    report.elapsed_seconds = elapsed
    report.synced_at = datetime.now(timezone.utc).isoformat()
    report.message = PARTIAL_MESSAGE if partial else None

    persistence.update_project_status(session, project_id, status, touch_last_sync=True)
    persistence.write_sync_log(
        session,
        project_id,
        status,
        {
            "type": "meta_sync",
            "period_key": params.period_key,
            "window": [date_start, date_stop],
            "campaigns": len(campaigns),
            "ad_sets": len(adsets),
            "ads": len(ads),
            "records": len(records),
            "changes": len(changes),
            "elapsed": f"{elapsed}s",
        },
    )
    logger.info(
        f"✅ Sync complete: {len(records)} daily rows, {len(changes)} changes in {elapsed}s",
        extra={**log_extra, "duration_ms": int(elapsed * 1000)},
    )
    return report
