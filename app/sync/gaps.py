"""ADSYNC — Gap Detection.

Finds runs of consecutive days with no stored daily rows. Short runs are
usually days without spend, so only runs of `min_gap_days` or more count.
"""

from datetime import date, timedelta
from typing import List

from pydantic import BaseModel
from sqlmodel import Session, select

from app.models.metric_models import AdsDailyMetric
from app.sync.periods import DATE_FORMAT, parse_date

DEFAULT_MIN_GAP_DAYS = 3


class Gap(BaseModel):
    """A run of missing days, inclusive on both ends."""

    gap_start: str
    gap_end: str
    gap_days: int


def find_gaps(
    dates_with_data: set[str], start: date, end: date, min_gap_days: int
) -> List[Gap]:
    """Scan [start, end] for missing runs of at least `min_gap_days`."""
    gaps: List[Gap] = []
    run_start: date | None = None
    current = start

    while current <= end + timedelta(days=1):
        missing = current <= end and current.strftime(DATE_FORMAT) not in dates_with_data
        if missing:
            if run_start is None:
                run_start = current
        elif run_start is not None:
            days = (current - run_start).days
            if days >= min_gap_days:
                gaps.append(
                    Gap(
                        gap_start=run_start.strftime(DATE_FORMAT),
                        gap_end=(current - timedelta(days=1)).strftime(DATE_FORMAT),
                        gap_days=days,
                    )
                )
            run_start = None
        current += timedelta(days=1)

    return gaps


def detect_gaps(
    session: Session,
    project_id: str,
    start: str,
    end: str,
    min_gap_days: int = DEFAULT_MIN_GAP_DAYS,
) -> List[Gap]:
    """Return the data gaps of a project between two YYYY-MM-DD dates."""
    start_d = parse_date(start)
    end_d = parse_date(end)
    if start_d is None or end_d is None or start_d > end_d:
        raise ValueError("start and end must be YYYY-MM-DD with start <= end")

    dates = session.exec(
        select(AdsDailyMetric.date)
        .where(
            AdsDailyMetric.project_id == project_id,
            AdsDailyMetric.date >= start,
            AdsDailyMetric.date <= end,
        )
        .distinct()
    ).all()
    return find_gaps(set(dates), start_d, end_d, min_gap_days)
