"""ADSYNC — Meta Raw → Normalized Transformer.

Converts raw Graph API payloads into `EntityRecord` and `DailyInsight`
objects.

Conversions are read from the `results` field only. That field is the
count Meta's own Ads Manager shows; summing or filtering the `actions`
array drifts from it, so `actions` is never consulted for conversions.
"""

from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from app.models.entity_models import EntityRecord, EntityType
from app.models.metric_models import DailyInsight
from app.core.logging import get_logger

logger = get_logger("meta.transformer")

PURCHASE_ACTION_TYPES = (
    "purchase",
    "omni_purchase",
    "offsite_conversion.fb_pixel_purchase",
)


def _safe_float(value: Any) -> float:
    """Safely convert a value to float."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _safe_int(value: Any) -> int:
    return int(_safe_float(value))


def _budget(value: Any) -> Optional[float]:
    """Meta reports budgets in minor currency units (cents)."""
    if value in (None, ""):
        return None
    return _safe_float(value) / 100


def extract_results(row: Dict[str, Any]) -> float:
    """Return the authoritative conversion count of an insight row.

    Missing `results` means zero conversions; nothing is inferred.
    """
    results = row.get("results")
    if results is None:
        return 0.0
    if isinstance(results, (int, float, str)):
        return _safe_float(results)
    if isinstance(results, list):
        if not results:
            return 0.0
        first = results[0]
        if not isinstance(first, dict):
            return _safe_float(first)
        # One `values` entry per attribution window; the first is the reported figure
        values = first.get("values")
        if isinstance(values, list):
            if values and isinstance(values[0], dict):
                return _safe_float(values[0].get("value"))
            return 0.0
        return _safe_float(first.get("value"))
    if isinstance(results, dict):
        return _safe_float(results.get("value"))
    return 0.0


def extract_conversion_value(row: Dict[str, Any]) -> float:
    """Purchase value from `action_values` (first purchase type present)."""
    action_values = row.get("action_values") or []
    by_type = {av.get("action_type"): av.get("value") for av in action_values}
    for action_type in PURCHASE_ACTION_TYPES:
        if action_type in by_type:
            return _safe_float(by_type[action_type])
    return 0.0


# ── Entities ──


def transform_campaign(raw: Dict[str, Any]) -> EntityRecord:
    return EntityRecord(
        entity_type=EntityType.CAMPAIGN,
        entity_id=str(raw.get("id", "")),
        name=raw.get("name", ""),
        status=raw.get("status"),
        objective=raw.get("objective"),
        daily_budget=_budget(raw.get("daily_budget")),
        lifetime_budget=_budget(raw.get("lifetime_budget")),
        created_time=raw.get("created_time"),
        updated_time=raw.get("updated_time"),
    )


def transform_adset(raw: Dict[str, Any]) -> EntityRecord:
    return EntityRecord(
        entity_type=EntityType.AD_SET,
        entity_id=str(raw.get("id", "")),
        name=raw.get("name", ""),
        status=raw.get("status"),
        daily_budget=_budget(raw.get("daily_budget")),
        lifetime_budget=_budget(raw.get("lifetime_budget")),
        campaign_id=raw.get("campaign_id"),
    )


def transform_ad(raw: Dict[str, Any]) -> EntityRecord:
    creative = raw.get("creative") or {}
    return EntityRecord(
        entity_type=EntityType.AD,
        entity_id=str(raw.get("id", "")),
        name=raw.get("name", ""),
        status=raw.get("status"),
        campaign_id=raw.get("campaign_id"),
        adset_id=raw.get("adset_id"),
        creative_id=creative.get("id"),
        creative_thumbnail=creative.get("thumbnail_url"),
        creative_image_url=creative.get("image_url") or creative.get("thumbnail_url"),
    )


# ── Insights ──


def transform_insight(row: Dict[str, Any]) -> DailyInsight:
    """Parse one ad-level, day-granularity insight row."""
    return DailyInsight(
        ad_id=str(row.get("ad_id", "")),
        date=row.get("date_start", ""),
        ad_name=row.get("ad_name", ""),
        adset_id=str(row.get("adset_id", "")),
        adset_name=row.get("adset_name", ""),
        campaign_id=str(row.get("campaign_id", "")),
        campaign_name=row.get("campaign_name", ""),
        spend=_safe_float(row.get("spend")),
        impressions=_safe_int(row.get("impressions")),
        clicks=_safe_int(row.get("clicks")),
        reach=_safe_int(row.get("reach")),
        frequency=_safe_float(row.get("frequency")),
        conversions=extract_results(row),
        conversion_value=extract_conversion_value(row),
    )


def transform_insights(
    raw_data: Iterable[Dict[str, Any]],
) -> Dict[str, Dict[str, DailyInsight]]:
    """Group raw insight rows into {ad_id: {date: DailyInsight}}.

    A repeated (ad, date) pair keeps the last row seen.
    """
    by_ad: Dict[str, Dict[str, DailyInsight]] = defaultdict(dict)
    skipped = 0
    for row in raw_data:
        insight = transform_insight(row)
        if not insight.ad_id or not insight.date:
            skipped += 1
            continue
        by_ad[insight.ad_id][insight.date] = insight

    if skipped:
        logger.warning(f"Skipped {skipped} insight rows without ad_id/date")
    return dict(by_ad)


def flatten_insights(
    insights: Dict[str, Dict[str, DailyInsight]],
) -> List[DailyInsight]:
    """Flatten the per-ad mapping back into a date-ordered list."""
    rows = [row for per_date in insights.values() for row in per_date.values()]
    rows.sort(key=lambda r: (r.date, r.ad_id))
    return rows
