"""ADSYNC — Change Detector.

Diffs freshly aggregated entities against the snapshot stored by the
previous sync and emits one OptimizationHistory record per changed
tracked field. These records are the optimization audit trail.
"""

from typing import AbstractSet, Any, Dict, Iterable, List, Mapping, Optional, Tuple

from app.models.entity_models import EntityAggregate, EntityType
from app.models.history_models import OptimizationHistory
from app.core.logging import get_logger

logger = get_logger("analyzer.changes")

TRACKED_FIELDS: Dict[str, Tuple[str, ...]] = {
    EntityType.CAMPAIGN.value: ("status", "daily_budget", "lifetime_budget", "objective"),
    EntityType.AD_SET.value: ("status", "daily_budget", "lifetime_budget"),
    EntityType.AD.value: ("status",),
}
BUDGET_FIELDS = {"daily_budget", "lifetime_budget"}
ACTIVE = "ACTIVE"

SnapshotKey = Tuple[str, str]


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def budget_change_percentage(old: Any, new: Any) -> Optional[float]:
    """Percentage delta between two budgets; None when there is no base."""
    try:
        old_f = float(old)
        new_f = float(new)
    except (TypeError, ValueError):
        return None
    if old_f == 0:
        return None
    return round((new_f - old_f) / old_f * 100, 2)


def classify_change(field: str, old: Any, new: Any) -> str:
    """Map a field transition to its change category."""
    if field == "status":
        if new == ACTIVE and old != ACTIVE:
            return "activated"
        if old == ACTIVE and new != ACTIVE:
            return "paused"
        return "status_change"
    if field in BUDGET_FIELDS:
        return "budget_change"
    return "modified"


def _values_differ(field: str, old: Any, new: Any) -> bool:
    if field in BUDGET_FIELDS and old is not None and new is not None:
        return abs(float(old) - float(new)) > 1e-9
    return old != new


def detect_changes(
    project_id: str,
    current: Iterable[EntityAggregate],
    previous: Mapping[SnapshotKey, EntityAggregate],
    fetched: Optional[AbstractSet[SnapshotKey]] = None,
) -> List[OptimizationHistory]:
    """Compare current entities with the prior snapshot.

    An entity absent from the snapshot yields a single `created` record.
    Entities that disappeared are not reported: when `fetched` is given, an
    entity outside it only has the metadata its snapshot carried, so a None
    there means "unknown" and is not diffed.
    """
    changes: List[OptimizationHistory] = []

    for entity in current:
        key = (entity.entity_type, entity.entity_id)
        prior = previous.get(key)

        if prior is None:
            changes.append(
                OptimizationHistory(
                    project_id=project_id,
                    entity_type=entity.entity_type,
                    entity_id=entity.entity_id,
                    entity_name=entity.name,
                    field_changed="created",
                    new_value=_as_text(entity.status),
                    change_type="created",
                )
            )
            continue

        was_fetched = fetched is None or key in fetched
        for field in TRACKED_FIELDS.get(entity.entity_type, ()):
            old = getattr(prior, field)
            new = getattr(entity, field)
            if new is None and not was_fetched:
                continue
            if not _values_differ(field, old, new):
                continue
            changes.append(
                OptimizationHistory(
                    project_id=project_id,
                    entity_type=entity.entity_type,
                    entity_id=entity.entity_id,
                    entity_name=entity.name,
                    field_changed=field,
                    old_value=_as_text(old),
                    new_value=_as_text(new),
                    change_type=classify_change(field, old, new),
                    change_percentage=(
                        budget_change_percentage(old, new)
                        if field in BUDGET_FIELDS
                        else None
                    ),
                )
            )

    logger.info(
        f"Detected {len(changes)} changes against {len(previous)} prior entities",
        extra={"project_id": project_id},
    )
    return changes
