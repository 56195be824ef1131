"""ADSYNC — Sync Result Validation.

Meta occasionally answers with a transiently empty report: every row zero.
Persisting that would wipe a good window, so an all-zero pass is treated
as suspicious and retried until the retry ceiling is reached.
"""

from typing import Iterable

from pydantic import BaseModel

from app.analyzer.aggregator import compute_totals
from app.models.metric_models import DailyInsight, MetricTotals


class ValidationResult(BaseModel):
    """Verdict on one insights pass."""

    valid: bool
    should_retry: bool = False
    reason: str = ""
    row_count: int = 0
    totals: MetricTotals = MetricTotals()


def is_all_zero(rows: list[DailyInsight]) -> bool:
    """True when no row has spend, impressions or clicks (empty included)."""
    return all(r.spend == 0 and r.impressions == 0 and r.clicks == 0 for r in rows)


def validate_rows(
    rows: Iterable[DailyInsight], attempt: int, max_retries: int
) -> ValidationResult:
    """Decide whether a pass can be persisted.

    `attempt` counts retries already made (0 on the first pass). An all-zero
    result is invalid while `attempt < max_retries` and accepted after.
    """
    rows = list(rows)
    totals = compute_totals(rows)

    if not is_all_zero(rows):
        return ValidationResult(valid=True, row_count=len(rows), totals=totals)

    reason = "no rows returned" if not rows else "all rows have zero spend, impressions and clicks"
    if attempt < max_retries:
        return ValidationResult(
            valid=False,
            should_retry=True,
            reason=reason,
            row_count=len(rows),
            totals=totals,
        )
    return ValidationResult(
        valid=True,
        reason=f"{reason}; accepted after {attempt} retries",
        row_count=len(rows),
        totals=totals,
    )
