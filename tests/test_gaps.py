from datetime import date

import pytest

from app.models.metric_models import AdsDailyMetric
from app.sync.gaps import detect_gaps, find_gaps


def test_find_gaps_respects_minimum_length():
    present = {"2026-10-01", "2026-10-03", "2026-10-08"}
    gaps = find_gaps(present, date(2026, 10, 1), date(2026, 10, 10), min_gap_days=3)
    # 10-02 and the trailing 10-09..10 are shorter than three days
    assert [(g.gap_start, g.gap_end, g.gap_days) for g in gaps] == [
        ("2026-10-04", "2026-10-07", 4),
    ]


def test_trailing_gap_is_reported():
    gaps = find_gaps({"2026-10-01"}, date(2026, 10, 1), date(2026, 10, 5), min_gap_days=2)
    assert [(g.gap_start, g.gap_end) for g in gaps] == [("2026-10-02", "2026-10-05")]


def test_no_data_is_one_gap():
    gaps = find_gaps(set(), date(2026, 10, 1), date(2026, 10, 3), min_gap_days=1)
    assert len(gaps) == 1 and gaps[0].gap_days == 3


def test_detect_gaps_reads_stored_dates(session, project):
    for day in ("2026-10-01", "2026-10-02", "2026-10-06"):
        session.add(
            AdsDailyMetric(
                project_id=project.id,
                ad_account_id="act_123",
                date=day,
                campaign_id="c1",
                adset_id="s1",
                ad_id="a1",
            )
        )
    session.commit()

    gaps = detect_gaps(session, project.id, "2026-10-01", "2026-10-06", min_gap_days=3)
    assert [(g.gap_start, g.gap_end) for g in gaps] == [("2026-10-03", "2026-10-05")]


def test_detect_gaps_rejects_bad_dates(session, project):
    with pytest.raises(ValueError):
        detect_gaps(session, project.id, "2026-10-06", "2026-10-01")
