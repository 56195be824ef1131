import asyncio

import httpx
import pytest
from sqlmodel import select

from app.config import settings
from app.connectors.meta.client import TokenExpiredError
from app.models.history_models import OptimizationHistory, SyncLog
from app.models.metric_models import AdsDailyMetric, PeriodMetric
from app.models.entity_models import EntityAggregate
from app.models.project_models import Project
from app.sync.pipeline import SyncError, SyncInputError, SyncParams, TimeRange, run_sync
from tests.helpers import batch_item, batch_payload, graph_error

CAMPAIGN = {"id": "c1", "name": "Camp", "status": "ACTIVE", "objective": "OUTCOME_SALES", "daily_budget": "10000"}
ADSET = {"id": "s1", "name": "Set", "status": "ACTIVE", "campaign_id": "c1", "daily_budget": "5000"}
AD = {
    "id": "a1",
    "name": "Ad",
    "status": "ACTIVE",
    "adset_id": "s1",
    "campaign_id": "c1",
    "creative": {"id": "cr1", "thumbnail_url": "https://cdn.example/a1.jpg"},
}


def _insight(date, spend="50", impressions="500", clicks="25", results=None):
    row = {
        "campaign_id": "c1",
        "campaign_name": "Camp",
        "adset_id": "s1",
        "adset_name": "Set",
        "ad_id": "a1",
        "ad_name": "Ad",
        "date_start": date,
        "spend": spend,
        "impressions": impressions,
        "clicks": clicks,
        "reach": "400",
    }
    if results is not None:
        row["results"] = [{"values": [{"value": str(results)}]}]
    return row


INSIGHTS = [_insight("2026-10-01", results=2), _insight("2026-10-02", results=3)]


@pytest.fixture
def account(graph):
    graph.routes["campaigns"] = {"data": [CAMPAIGN]}
    graph.routes["adsets"] = {"data": [ADSET]}
    graph.routes["ads"] = {"data": [AD]}
    graph.routes["insights"] = {"data": INSIGHTS}
    return graph


def _params(**overrides):
    params = dict(
        project_id="p1",
        ad_account_id="123",
        access_token="tok",
        time_range=TimeRange(since="2026-10-01", until="2026-10-02"),
        light_sync=True,
    )
    params.update(overrides)
    return SyncParams(**params)


def _sync(session, graph, sleep, **overrides):
    return asyncio.run(run_sync(session, _params(**overrides), client=graph.client(sleep), sleep=sleep))


def test_full_sync_persists_rows_aggregates_and_history(session, project, account, sleep):
    report = _sync(session, account, sleep)

    assert report.success and not report.partial
    assert (report.campaigns_count, report.ad_sets_count, report.ads_count) == (1, 1, 1)
    assert report.records_count == 2
    assert report.changes_count == 3
    assert report.validation_attempts == 1

    rows = session.exec(select(AdsDailyMetric)).all()
    assert len(rows) == 2
    assert sum(r.conversions for r in rows) == 5

    campaign = session.exec(
        select(EntityAggregate).where(EntityAggregate.entity_type == "campaign")
    ).one()
    assert campaign.spend == 100
    assert campaign.conversions == 5
    assert campaign.cpa == 20.0
    assert campaign.daily_budget == 100.0

    history = session.exec(select(OptimizationHistory)).all()
    assert {h.change_type for h in history} == {"created"}

    refreshed = session.get(Project, project.id)
    assert refreshed.webhook_status == "success"
    assert refreshed.last_sync_at is not None
    assert session.exec(select(SyncLog)).one().status == "success"

    insights_request = account.calls_to("insights")[0]
    assert insights_request.url.params["level"] == "ad"
    assert insights_request.url.params["time_increment"] == "1"
    assert "results" in insights_request.url.params["fields"]


def test_resync_is_idempotent_and_detects_changes(session, project, account, sleep):
    _sync(session, account, sleep)
    _sync(session, account, sleep)

    assert len(session.exec(select(AdsDailyMetric)).all()) == 2
    assert len(session.exec(select(EntityAggregate)).all()) == 3
    assert len(session.exec(select(OptimizationHistory)).all()) == 3

    account.routes["campaigns"] = {"data": [{**CAMPAIGN, "status": "PAUSED", "daily_budget": "15000"}]}
    report = _sync(session, account, sleep)

    assert report.changes_count == 2
    changes = session.exec(
        select(OptimizationHistory).where(OptimizationHistory.change_type != "created")
    ).all()
    by_field = {c.field_changed: c for c in changes}
    assert by_field["status"].change_type == "paused"
    assert by_field["daily_budget"].change_percentage == 50.0


def test_period_sync_writes_period_metrics(session, project, account, sleep):
    _sync(session, account, sleep, period_key="last_7d")
    stored = session.exec(select(PeriodMetric).where(PeriodMetric.period_key == "last_7d")).all()
    assert len(stored) == 3


def test_all_zero_insights_are_retried(session, project, account, sleep):
    passes = [[], INSIGHTS]
    account.routes["insights"] = lambda request: httpx.Response(200, json={"data": passes.pop(0)})

    report = _sync(session, account, sleep)

    assert report.validation_attempts == 2
    assert report.records_count == 2
    assert sleep.calls.count(settings.validation_retry_delay_seconds) == 1


def test_all_zero_insights_accepted_after_retry_ceiling(session, project, account, sleep):
    account.routes["insights"] = {"data": []}

    report = _sync(session, account, sleep)

    assert report.success
    assert report.validation_attempts == settings.max_validation_retries + 1
    assert len(account.calls_to("insights")) == settings.max_validation_retries + 1
    assert report.records_count == 0


def test_token_expiry_aborts_and_flags_project(session, project, account, sleep):
    account.routes["adsets"] = lambda request: graph_error(190, "Error validating access token")

    with pytest.raises(TokenExpiredError):
        _sync(session, account, sleep)

    assert session.get(Project, project.id).webhook_status == "token_expired"
    log = session.exec(select(SyncLog)).one()
    assert log.status == "error"
    assert '"token_expired": true' in log.message
    assert session.exec(select(AdsDailyMetric)).all() == []


def test_rate_limit_keeps_existing_data(session, project, account, sleep):
    _sync(session, account, sleep)
    account.routes["insights"] = lambda request: graph_error(17, "User request limit reached")

    report = _sync(session, account, sleep)

    assert report.success
    assert report.rate_limited and report.keep_existing and report.partial
    assert report.step == "insights"
    assert sleep.calls[-2:] == [5.0, 10.0]
    assert len(session.exec(select(AdsDailyMetric)).all()) == 2
    assert session.get(Project, project.id).webhook_status == "partial"


def test_other_errors_raise_sync_error_with_step(session, project, account, sleep):
    account.routes["ads"] = lambda request: graph_error(100, "Invalid parameter")

    with pytest.raises(SyncError) as exc:
        _sync(session, account, sleep)

    assert exc.value.step == "ads"
    assert session.get(Project, project.id).webhook_status == "error"


def test_missing_ads_is_partial(session, project, account, sleep):
    account.routes["ads"] = {"data": []}
    report = _sync(session, account, sleep)
    assert report.success and report.partial
    assert session.get(Project, project.id).webhook_status == "partial"


def test_input_errors(session, project, account, sleep, monkeypatch):
    monkeypatch.setattr(settings, "meta_access_token", "")
    with pytest.raises(SyncInputError):
        _sync(session, account, sleep, access_token=None)
    with pytest.raises(SyncInputError):
        _sync(session, account, sleep, project_id="missing")
    with pytest.raises(SyncInputError):
        _sync(session, account, sleep, time_range=TimeRange(since="2026-10-05", until="2026-10-01"))
    assert account.requests == []


def test_full_mode_resolves_creatives_and_caches_images(session, project, account, sleep, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "image_cache_dir", str(tmp_path))

    def batch(request: httpx.Request) -> httpx.Response:
        out = []
        for entry in batch_payload(request):
            object_id = entry["relative_url"].split("?")[0]
            if object_id == "cr1":
                out.append(batch_item({"id": "cr1", "image_url": "https://cdn.example/full.jpg", "video_id": "v1"}))
            else:
                out.append(batch_item({"id": object_id, "source": "https://cdn.example/v1.mp4"}))
        return httpx.Response(200, json=out)

    account.routes["v21.0"] = batch

    def images(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"JPEG", headers={"content-type": "image/jpeg"})

    report = asyncio.run(
        run_sync(
            session,
            _params(light_sync=False),
            client=account.client(sleep),
            sleep=sleep,
            image_transport=httpx.MockTransport(images),
        )
    )

    assert report.images_cached == 1
    assert len(account.calls_to("v21.0")) == 2
    ad = session.exec(select(EntityAggregate).where(EntityAggregate.entity_type == "ad")).one()
    assert ad.creative_video_url == "https://cdn.example/v1.mp4"
    assert ad.creative_image_url == "https://cdn.example/full.jpg"
    row = session.exec(select(AdsDailyMetric)).first()
    assert row.cached_creative_thumbnail == f"{settings.image_cache_url}/p1/a1.jpg"
    assert (tmp_path / "p1" / "a1.jpg").exists()


def test_ad_removed_on_meta_keeps_stored_metadata(session, project, account, sleep):
    _sync(session, account, sleep)
    account.routes["ads"] = {"data": []}

    report = _sync(session, account, sleep)

    assert report.changes_count == 0
    ad = session.exec(select(EntityAggregate).where(EntityAggregate.entity_type == "ad")).one()
    assert ad.status == "ACTIVE"
    assert ad.creative_id == "cr1"
    assert ad.spend == 100
