from datetime import date, timedelta

from app.sync.periods import (
    PERIOD_GROUPS,
    cache_ttl,
    parse_date,
    period_dates,
    resolve_window,
)

TODAY = date(2026, 3, 15)


def test_period_dates():
    assert period_dates("yesterday", TODAY) == ("2026-03-14", "2026-03-14")
    assert period_dates("last_7d", TODAY) == ("2026-03-08", "2026-03-14")
    assert period_dates("this_month", TODAY) == ("2026-03-01", "2026-03-15")
    assert period_dates("last_month", TODAY) == ("2026-02-01", "2026-02-28")
    assert period_dates("this_year", TODAY) == ("2026-01-01", "2026-03-15")
    assert period_dates("last_year", TODAY) == ("2025-01-01", "2025-12-31")


def test_unknown_period_is_none():
    assert period_dates("last_3d", TODAY) is None


def test_every_group_period_resolves():
    for periods in PERIOD_GROUPS.values():
        for key in periods:
            assert period_dates(key, TODAY) is not None


def test_resolve_window_prefers_explicit_range():
    assert resolve_window("last_7d", "2026-01-01", "2026-01-05", TODAY) == ("2026-01-01", "2026-01-05")
    assert resolve_window(None, None, None, TODAY) == ("2026-02-13", "2026-03-14")
    assert resolve_window("bogus", None, None, TODAY) == ("2026-02-13", "2026-03-14")


def test_cache_ttl():
    assert cache_ttl("yesterday") == timedelta(hours=4)
    assert cache_ttl("last_year") == timedelta(hours=48)
    assert cache_ttl("unknown") == timedelta(hours=12)


def test_parse_date():
    assert parse_date("2026-10-01") == date(2026, 10, 1)
    assert parse_date("10/01/2026") is None
    assert parse_date(None) is None
