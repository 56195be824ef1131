"""ADSYNC — Persistence Writer.

Idempotent upserts (INSERT ... ON CONFLICT DO UPDATE) for daily rows,
entity aggregates and period caches, plus the append-only history and
sync log writers. Works on PostgreSQL and SQLite.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type

from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import Session, SQLModel, select

from app.models.entity_models import EntityAggregate, EntityRecord, EntityType
from app.models.history_models import OptimizationHistory, SyncLog
from app.models.metric_models import AdsDailyMetric, DailyInsight, PeriodMetric
from app.models.project_models import Project
from app.core.metric_registry import derive_ratios
from app.core.logging import get_logger

logger = get_logger("sync.persistence")

UPSERT_CHUNK_SIZE = 500

DAILY_CONFLICT_KEYS = ["project_id", "ad_id", "date"]
AGGREGATE_CONFLICT_KEYS = ["project_id", "entity_type", "entity_id"]
PERIOD_CONFLICT_KEYS = ["project_id", "period_key", "entity_type", "entity_id"]


def _dialect_insert(session: Session):
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise ValueError(f"Upserts are not supported on dialect '{name}'")


def _upsert(
    session: Session,
    model: Type[SQLModel],
    records: Sequence[Dict[str, Any]],
    conflict_keys: List[str],
) -> int:
    """Insert records, updating every non-key column on conflict."""
    if not records:
        return 0
    insert = _dialect_insert(session)
    update_cols = [c for c in records[0] if c not in conflict_keys]

    for start in range(0, len(records), UPSERT_CHUNK_SIZE):
        chunk = records[start : start + UPSERT_CHUNK_SIZE]
        stmt = insert(model).values(list(chunk))
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict_keys,
            set_={c: stmt.excluded[c] for c in update_cols},
        )
        session.execute(stmt)
    return len(records)


def _dump(model: SQLModel) -> Dict[str, Any]:
    return model.model_dump(exclude={"id"})


# ── Daily Rows ──


def build_daily_records(
    project_id: str,
    ad_account_id: str,
    rows: Iterable[DailyInsight],
    entities: Iterable[EntityRecord],
    cached_thumbnails: Optional[Dict[str, str]] = None,
) -> List[AdsDailyMetric]:
    """Join insight rows with entity metadata into storable daily rows."""
    by_key = {(e.entity_type, e.entity_id): e for e in entities}
    cached_thumbnails = cached_thumbnails or {}
    synced_at = datetime.now(timezone.utc)
    records: List[AdsDailyMetric] = []

    for row in rows:
        campaign = by_key.get((EntityType.CAMPAIGN, row.campaign_id))
        adset = by_key.get((EntityType.AD_SET, row.adset_id))
        ad = by_key.get((EntityType.AD, row.ad_id))
        ratios = derive_ratios(row.model_dump())
        records.append(
            AdsDailyMetric(
                project_id=project_id,
                ad_account_id=ad_account_id,
                date=row.date,
                campaign_id=row.campaign_id,
                campaign_name=row.campaign_name or (campaign.name if campaign else ""),
                campaign_status=campaign.status if campaign else None,
                campaign_objective=campaign.objective if campaign else None,
                adset_id=row.adset_id,
                adset_name=row.adset_name or (adset.name if adset else ""),
                adset_status=adset.status if adset else None,
                ad_id=row.ad_id,
                ad_name=row.ad_name or (ad.name if ad else ""),
                ad_status=ad.status if ad else None,
                creative_id=ad.creative_id if ad else None,
                creative_thumbnail=ad.creative_thumbnail if ad else None,
                cached_creative_thumbnail=cached_thumbnails.get(row.ad_id),
                spend=row.spend,
                impressions=row.impressions,
                clicks=row.clicks,
                reach=row.reach,
                frequency=row.frequency or ratios["frequency"],
                conversions=row.conversions,
                conversion_value=row.conversion_value,
                ctr=ratios["ctr"],
                cpm=ratios["cpm"],
                cpc=ratios["cpc"],
                cpa=ratios["cpa"],
                roas=ratios["roas"],
                synced_at=synced_at,
            )
        )
    return records


def upsert_daily_metrics(session: Session, records: Sequence[AdsDailyMetric]) -> int:
    """Upsert daily rows keyed by (project_id, ad_id, date)."""
    count = _upsert(
        session, AdsDailyMetric, [_dump(r) for r in records], DAILY_CONFLICT_KEYS
    )
    logger.info(f"Upserted {count} daily metric rows")
    return count


# ── Aggregates ──


def load_entity_snapshot(
    session: Session, project_id: str
) -> Dict[tuple, EntityAggregate]:
    """Return the stored aggregates keyed by (entity_type, entity_id)."""
    rows = session.exec(
        select(EntityAggregate).where(EntityAggregate.project_id == project_id)
    ).all()
    return {(r.entity_type, r.entity_id): r for r in rows}


def upsert_entity_aggregates(
    session: Session, aggregates: Sequence[EntityAggregate]
) -> int:
    """Replace each entity's materialized totals."""
    return _upsert(
        session,
        EntityAggregate,
        [_dump(a) for a in aggregates],
        AGGREGATE_CONFLICT_KEYS,
    )


def upsert_period_metrics(
    session: Session,
    project_id: str,
    period_key: str,
    aggregates: Sequence[EntityAggregate],
) -> int:
    """Store period totals; their synced_at is the scheduler's cache stamp."""
    synced_at = datetime.now(timezone.utc)
    metric_names = (
        "spend", "impressions", "clicks", "reach", "frequency", "conversions",
        "conversion_value", "ctr", "cpm", "cpc", "cpa", "roas",
    )
    records = [
        _dump(
            PeriodMetric(
                project_id=project_id,
                period_key=period_key,
                entity_type=a.entity_type,
                entity_id=a.entity_id,
                entity_name=a.name,
                status=a.status or "UNKNOWN",
                metrics={name: getattr(a, name) for name in metric_names},
                synced_at=synced_at,
            )
        )
        for a in aggregates
    ]
    return _upsert(session, PeriodMetric, records, PERIOD_CONFLICT_KEYS)


def is_period_cached(
    session: Session, project_id: str, period_key: str, cutoff: datetime
) -> bool:
    """True when the period was synced after `cutoff`."""
    row = session.exec(
        select(PeriodMetric.id)
        .where(
            PeriodMetric.project_id == project_id,
            PeriodMetric.period_key == period_key,
            PeriodMetric.synced_at > cutoff,
        )
        .limit(1)
    ).first()
    return row is not None


# ── Audit Trail ──


def append_history(session: Session, changes: Sequence[OptimizationHistory]) -> int:
    session.add_all(list(changes))
    return len(changes)


def write_sync_log(
    session: Session, project_id: str, status: str, message: Any
) -> SyncLog:
    """Append a sync log row and commit it."""
    log = SyncLog(
        project_id=project_id,
        status=status,
        message=message if isinstance(message, str) else json.dumps(message, default=str),
    )
    session.add(log)
    session.commit()
    return log


def update_project_status(
    session: Session, project_id: str, status: str, touch_last_sync: bool = False
) -> None:
    """Set the project's webhook_status (and last_sync_at) and commit."""
    project = session.get(Project, project_id)
    if project is None:
        logger.warning(
            f"Project {project_id} not found for status update",
            extra={"project_id": project_id},
        )
        return
    now = datetime.now(timezone.utc)
    project.webhook_status = status
    project.updated_at = now
    if touch_last_sync:
        project.last_sync_at = now
    session.add(project)
    session.commit()
