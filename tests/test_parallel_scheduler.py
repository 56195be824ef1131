import asyncio
from datetime import datetime, timezone

import pytest
from sqlmodel import Session, select

from app.connectors.meta.client import TokenExpiredError
from app.models.history_models import SyncLog
from app.models.metric_models import PeriodMetric
from app.models.project_models import Project
from app.scheduler.parallel import (
    ParallelSyncScheduler,
    ProjectRef,
    chunk,
    load_projects,
    resolve_periods,
)
from app.sync.periods import PERIOD_GROUPS
from app.sync.pipeline import SyncReport


class FakeRunner:
    """Records every (project, period) sync and fails on request."""

    def __init__(self, fail=None):
        self.calls = []
        self.fail = fail or {}

    async def __call__(self, session, params):
        self.calls.append((params.project_id, params.period_key))
        error = self.fail.get((params.project_id, params.period_key))
        if error:
            raise error
        return SyncReport(project_id=params.project_id, period_key=params.period_key)


def _refs(count):
    return [ProjectRef(id=f"p{i}", name=f"Project {i}", ad_account_id=f"act_{i}") for i in range(count)]


def _scheduler(engine, runner, sleep, **kwargs):
    return ParallelSyncScheduler(
        session_factory=lambda: Session(engine),
        runner=runner,
        sleep=sleep,
        batch_delay=30,
        period_delay=5,
        **kwargs,
    )


def test_chunk():
    assert chunk(list(range(5)), 2) == [[0, 1], [2, 3], [4]]
    assert chunk([], 3) == []


def test_resolve_periods():
    assert resolve_periods(["last_7d"], "all") == ["last_7d"]
    assert resolve_periods(None, "recent") == PERIOD_GROUPS["recent"]
    assert resolve_periods(None, None) == PERIOD_GROUPS["daily"]
    assert resolve_periods(None, "unknown") == PERIOD_GROUPS["daily"]


def test_concurrency_is_clamped(engine, sleep):
    assert _scheduler(engine, FakeRunner(), sleep, concurrent=50).concurrent == 20
    assert _scheduler(engine, FakeRunner(), sleep, concurrent=3).concurrent == 3
    assert _scheduler(engine, FakeRunner(), sleep).concurrent == 10


def test_projects_run_in_batches_with_fixed_delay(engine, sleep):
    runner = FakeRunner()
    scheduler = _scheduler(engine, runner, sleep, concurrent=10)

    summary = asyncio.run(scheduler.run(_refs(25), ["yesterday"]))

    assert summary.batch_sizes == [10, 10, 5]
    assert sleep.calls == [30, 30]
    assert summary.projects_count == 25
    assert summary.total_synced == 25
    assert len(runner.calls) == 25


def test_period_delay_between_periods_of_one_project(engine, sleep):
    runner = FakeRunner()
    summary = asyncio.run(
        _scheduler(engine, runner, sleep).run(_refs(1), ["yesterday", "last_7d", "last_30d"])
    )
    assert sleep.calls == [5, 5]
    assert summary.results[0].periods_synced == ["yesterday", "last_7d", "last_30d"]


def test_fresh_periods_are_skipped_unless_forced(engine, sleep):
    with Session(engine) as session:
        session.add(
            PeriodMetric(
                project_id="p0",
                period_key="yesterday",
                entity_type="campaign",
                entity_id="c1",
                synced_at=datetime.now(timezone.utc),
            )
        )
        session.commit()

    runner = FakeRunner()
    summary = asyncio.run(_scheduler(engine, runner, sleep).run(_refs(1), ["yesterday", "last_7d"]))
    assert runner.calls == [("p0", "last_7d")]
    assert summary.results[0].periods_skipped == ["yesterday"]
    assert summary.total_skipped == 1

    forced = FakeRunner()
    asyncio.run(_scheduler(engine, forced, sleep).run(_refs(1), ["yesterday", "last_7d"], skip_cache=True))
    assert forced.calls == [("p0", "yesterday"), ("p0", "last_7d")]


def test_token_expiry_fails_remaining_periods(engine, sleep):
    runner = FakeRunner(fail={("p0", "yesterday"): TokenExpiredError("expired", 401, 190)})
    summary = asyncio.run(
        _scheduler(engine, runner, sleep).run(_refs(2), ["yesterday", "this_month"])
    )

    first, second = summary.results
    assert first.periods_failed == ["yesterday", "this_month"]
    assert runner.calls.count(("p0", "this_month")) == 0
    assert second.periods_synced == ["yesterday", "this_month"]


def test_one_failing_period_does_not_stop_others(engine, sleep):
    runner = FakeRunner(fail={("p0", "yesterday"): RuntimeError("boom")})
    summary = asyncio.run(_scheduler(engine, runner, sleep).run(_refs(1), ["yesterday", "this_month"]))
    result = summary.results[0]
    assert result.periods_failed == ["yesterday"]
    assert result.periods_synced == ["this_month"]


def test_invalid_period_is_failed(engine, sleep):
    runner = FakeRunner()
    summary = asyncio.run(_scheduler(engine, runner, sleep).run(_refs(1), ["last_3d"]))
    assert summary.results[0].periods_failed == ["last_3d"]
    assert runner.calls == []


def test_project_status_and_log_are_written(engine, sleep):
    with Session(engine) as session:
        session.add(Project(id="p0", user_id="u", name="Project 0", ad_account_id="act_0"))
        session.commit()

    asyncio.run(_scheduler(engine, FakeRunner(), sleep).run(_refs(1), ["yesterday"]))

    with Session(engine) as session:
        assert session.get(Project, "p0").webhook_status == "success"
        log = session.exec(select(SyncLog)).one()
        assert '"type": "parallel_sync"' in log.message


@pytest.mark.parametrize("archived, expected", [(False, ["p1"]), (True, [])])
def test_load_projects_skips_archived(session, archived, expected):
    session.add(Project(id="p1", user_id="u", name="A", ad_account_id="act_1", archived=archived))
    session.add(Project(id="p2", user_id="u", name="No account", ad_account_id=""))
    session.commit()
    assert [p.id for p in load_projects(session)] == expected


def test_token_expired_run_marks_project_token_expired(engine, sleep):
    with Session(engine) as session:
        session.add(Project(id="p0", user_id="u", name="Project 0", ad_account_id="act_0"))
        session.commit()

    runner = FakeRunner(fail={("p0", "yesterday"): TokenExpiredError("expired", 401, 190)})
    summary = asyncio.run(_scheduler(engine, runner, sleep).run(_refs(1), ["yesterday", "last_7d"]))

    assert summary.results[0].token_expired is True
    with Session(engine) as session:
        assert session.get(Project, "p0").webhook_status == "token_expired"
        assert session.exec(select(SyncLog)).one().status == "error"
