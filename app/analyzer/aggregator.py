"""ADSYNC — Aggregator.

Folds per-day ad rows into campaign / ad set / ad totals and derives
CTR, CPM, CPC, CPA, ROAS and frequency from the summed totals.
Deterministic arithmetic over the fetched window only.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from app.core.metric_registry import SUMMED_METRICS, derive_ratios
from app.models.entity_models import EntityAggregate, EntityRecord, EntityType
from app.models.metric_models import DailyInsight, MetricTotals
from app.core.logging import get_logger

logger = get_logger("analyzer.aggregator")

# Which DailyInsight attribute carries the id of each level
LEVEL_KEYS = {
    EntityType.CAMPAIGN: "campaign_id",
    EntityType.AD_SET: "adset_id",
    EntityType.AD: "ad_id",
}
NAME_KEYS = {
    EntityType.CAMPAIGN: "campaign_name",
    EntityType.AD_SET: "adset_name",
    EntityType.AD: "ad_name",
}


def totals_from_sums(sums: Dict[str, float]) -> MetricTotals:
    """Wrap summed volumes with their derived ratios."""
    return MetricTotals(
        spend=sums.get("spend", 0.0),
        impressions=int(sums.get("impressions", 0)),
        clicks=int(sums.get("clicks", 0)),
        reach=int(sums.get("reach", 0)),
        conversions=sums.get("conversions", 0.0),
        conversion_value=sums.get("conversion_value", 0.0),
        **derive_ratios(sums),
    )


def compute_totals(rows: Iterable[DailyInsight]) -> MetricTotals:
    """Sum a set of rows into one MetricTotals."""
    sums: Dict[str, float] = defaultdict(float)
    for row in rows:
        for name in SUMMED_METRICS:
            sums[name] += getattr(row, name)
    return totals_from_sums(sums)


def aggregate(
    rows: Iterable[DailyInsight],
) -> Dict[EntityType, Dict[str, MetricTotals]]:
    """Fold daily rows into totals per entity at every level."""
    sums: Dict[EntityType, Dict[str, Dict[str, float]]] = {
        level: defaultdict(lambda: defaultdict(float)) for level in LEVEL_KEYS
    }
    for row in rows:
        for level, key in LEVEL_KEYS.items():
            entity_id = getattr(row, key)
            if not entity_id:
                continue
            bucket = sums[level][entity_id]
            for name in SUMMED_METRICS:
                bucket[name] += getattr(row, name)

    return {
        level: {eid: totals_from_sums(s) for eid, s in per_entity.items()}
        for level, per_entity in sums.items()
    }


def _record_from_snapshot(level: EntityType, prior: EntityAggregate) -> EntityRecord:
    """Rebuild an entity's metadata from its last stored aggregate."""
    return EntityRecord(
        entity_type=level,
        entity_id=prior.entity_id,
        name=prior.name,
        status=prior.status,
        objective=prior.objective,
        daily_budget=prior.daily_budget,
        lifetime_budget=prior.lifetime_budget,
        campaign_id=prior.campaign_id,
        adset_id=prior.adset_id,
        creative_id=prior.creative_id,
        creative_thumbnail=prior.creative_thumbnail,
        creative_image_url=prior.creative_image_url,
        creative_video_url=prior.creative_video_url,
    )


def build_aggregates(
    project_id: str,
    entities: Iterable[EntityRecord],
    rows: List[DailyInsight],
    window_start: str,
    window_end: str,
    previous: Optional[Mapping[Tuple[str, str], EntityAggregate]] = None,
) -> List[EntityAggregate]:
    """Materialize one EntityAggregate per entity.

    Fetched entities without rows get zero totals. Entities that only appear
    in the rows (removed from Meta since) keep the metadata of their stored
    snapshot in `previous`, or the names reported by the insights when there
    is none.
    """
    totals = aggregate(rows)
    previous = previous or {}
    known: Dict[tuple, EntityRecord] = {
        (e.entity_type, e.entity_id): e for e in entities
    }

    for row in rows:
        for level, key in LEVEL_KEYS.items():
            entity_id = getattr(row, key)
            if not entity_id or (level, entity_id) in known:
                continue
            prior = previous.get((level.value, entity_id))
            if prior is not None:
                known[(level, entity_id)] = _record_from_snapshot(level, prior)
            else:
                known[(level, entity_id)] = EntityRecord(
                    entity_type=level,
                    entity_id=entity_id,
                    name=getattr(row, NAME_KEYS[level]),
                    campaign_id=row.campaign_id if level != EntityType.CAMPAIGN else None,
                    adset_id=row.adset_id if level == EntityType.AD else None,
                )

    aggregates: List[EntityAggregate] = []
    for (level, entity_id), entity in known.items():
        t = totals[level].get(entity_id) or MetricTotals()
        aggregates.append(
            EntityAggregate(
                project_id=project_id,
                entity_type=level.value,
                entity_id=entity_id,
                name=entity.name,
                status=entity.status,
                objective=entity.objective,
                daily_budget=entity.daily_budget,
                lifetime_budget=entity.lifetime_budget,
                campaign_id=entity.campaign_id,
                adset_id=entity.adset_id,
                creative_id=entity.creative_id,
                creative_thumbnail=entity.creative_thumbnail,
                creative_image_url=entity.creative_image_url,
                creative_video_url=entity.creative_video_url,
                window_start=window_start,
                window_end=window_end,
                **t.model_dump(),
            )
        )

    logger.info(
        f"Aggregated {len(rows)} daily rows into {len(aggregates)} entities",
        extra={"project_id": project_id},
    )
    return aggregates
