"""ADSYNC — Date presets and period groups."""

from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

DATE_FORMAT = "%Y-%m-%d"

PERIOD_GROUPS: Dict[str, List[str]] = {
    "daily": ["yesterday", "this_month"],
    "priority": ["yesterday", "this_month", "this_year"],
    "recent": ["last_7d", "last_14d", "last_30d"],
    "extended": ["last_60d", "last_90d"],
    "historical": ["last_month", "last_year"],
    "all": [
        "yesterday",
        "last_7d",
        "last_14d",
        "last_30d",
        "last_60d",
        "last_90d",
        "this_month",
        "last_month",
        "this_year",
        "last_year",
    ],
}

# How long a synced period stays fresh, in hours
CACHE_TTL_HOURS: Dict[str, int] = {
    "yesterday": 4,
    "this_month": 4,
    "this_year": 6,
    "last_7d": 8,
    "last_14d": 12,
    "last_30d": 12,
    "last_60d": 18,
    "last_90d": 18,
    "last_month": 24,
    "last_year": 48,
}
DEFAULT_CACHE_TTL_HOURS = 12
DEFAULT_PRESET = "last_30d"


def _fmt(d: date) -> str:
    return d.strftime(DATE_FORMAT)


def parse_date(value: Optional[str]) -> Optional[date]:
    """Return a date for a valid YYYY-MM-DD string, else None."""
    if not value:
        return None
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        return None


def period_dates(period_key: str, today: Optional[date] = None) -> Optional[Tuple[str, str]]:
    """Resolve a named period into (since, until), or None if unknown."""
    today = today or datetime.now(timezone.utc).date()
    yesterday = today - timedelta(days=1)
    first_this_month = today.replace(day=1)
    last_day_last_month = first_this_month - timedelta(days=1)

    mapping = {
        "yesterday": (yesterday, yesterday),
        "last_7d": (today - timedelta(days=7), yesterday),
        "last_14d": (today - timedelta(days=14), yesterday),
        "last_30d": (today - timedelta(days=30), yesterday),
        "last_60d": (today - timedelta(days=60), yesterday),
        "last_90d": (today - timedelta(days=90), yesterday),
        "this_month": (first_this_month, today),
        "last_month": (last_day_last_month.replace(day=1), last_day_last_month),
        "this_year": (today.replace(month=1, day=1), today),
        "last_year": (
            date(today.year - 1, 1, 1),
            date(today.year - 1, 12, 31),
        ),
    }
    if period_key not in mapping:
        return None
    since, until = mapping[period_key]
    return _fmt(since), _fmt(until)


def resolve_window(
    date_preset: Optional[str] = None,
    since: Optional[str] = None,
    until: Optional[str] = None,
    today: Optional[date] = None,
) -> Tuple[str, str]:
    """Resolve request parameters into a (since, until) window.

    An explicit range wins over a preset; unknown presets fall back to
    the last 30 days.
    """
    if since and until:
        return since, until
    return period_dates(date_preset or DEFAULT_PRESET, today) or period_dates(
        DEFAULT_PRESET, today
    )


def cache_ttl(period_key: str) -> timedelta:
    return timedelta(hours=CACHE_TTL_HOURS.get(period_key, DEFAULT_CACHE_TTL_HOURS))
