from datetime import timedelta

import pytest

from app.database import SessionLocal
from app.models.db import Campaign, RecalculationRun
from app.models.db.enums import CampaignStatus, CampaignType, PolicyType, RecalculationTrigger
from app.services.errors import CampaignNotFound, RepositoryReadFailure, RepositoryWriteFailure
from app.services.progress_cache import InMemoryProgressCache
from app.services.recalculation import RecalculationService
from app.services.repository import SqlAlchemyCampaignRepository
from app.utils.time import utc_now


class LinksUnavailableRepository(SqlAlchemyCampaignRepository):
    def get_active_links(self, campaign_id):
        raise RepositoryReadFailure("links table unavailable", campaign_id=campaign_id)


class WriteRejectingRepository(SqlAlchemyCampaignRepository):
    def update_progress(self, campaign_id, update):
        raise RepositoryWriteFailure("database is read-only", campaign_id=campaign_id)


def failing_for(bad_id):
    class _Repo(SqlAlchemyCampaignRepository):
        def get_active_links(self, campaign_id):
            if campaign_id == bad_id:
                raise RepositoryReadFailure("boom", campaign_id=campaign_id)
            return super().get_active_links(campaign_id)
    return _Repo


def reload(campaign_id):
    session = SessionLocal()
    try:
        return session.get(Campaign, campaign_id)
    finally:
        session.close()


def test_recalculate_persists_progress_and_completion(service, campaign_factory, policy_factory, link_factory):
    campaign = campaign_factory(type=CampaignType.VALUE, target=2000)
    broker_id = campaign.user_id
    for premium in (1200, 800):
        policy = policy_factory(campaign.broker, premium_value=premium)
        link_factory(policy, campaign)

    outcome = service.recalculate(campaign.id, RecalculationTrigger.POLICY_CREATED)

    assert outcome.success is True
    assert outcome.status == CampaignStatus.COMPLETED
    assert outcome.status_changed is True
    row = reload(campaign.id)
    assert row.status == CampaignStatus.COMPLETED
    assert row.current_value == 2000
    assert row.progress_percentage == 100
    assert row.achieved_value == 2000
    assert row.achieved_at is not None
    assert row.last_updated is not None
    assert row.user_id == broker_id


def test_recalculate_twice_is_stable(service, campaign_factory, policy_factory, link_factory):
    campaign = campaign_factory(type=CampaignType.QUANTITY, target=1)
    link_factory(policy_factory(campaign.broker), campaign)

    first = service.recalculate(campaign.id)
    stamped = reload(campaign.id).achieved_at
    second = service.recalculate(campaign.id)

    assert first.status == second.status == CampaignStatus.COMPLETED
    assert second.status_changed is False
    assert reload(campaign.id).achieved_at == stamped


def test_backdated_links_do_not_count(service, campaign_factory, policy_factory, link_factory):
    accepted_at = utc_now() - timedelta(days=2)
    campaign = campaign_factory(type=CampaignType.QUANTITY, target=5, accepted_at=accepted_at)
    link_factory(policy_factory(campaign.broker), campaign, linked_at=accepted_at - timedelta(days=1))
    link_factory(policy_factory(campaign.broker), campaign)

    outcome = service.recalculate(campaign.id)
    assert outcome.progress.total_policies == 1
    assert reload(campaign.id).current_value == 1


def test_unknown_campaign_raises(service):
    with pytest.raises(CampaignNotFound):
        service.recalculate(999)


def test_read_failure_leaves_persisted_state_untouched(campaign_factory):
    done_at = utc_now() - timedelta(days=1)
    campaign = campaign_factory(status=CampaignStatus.COMPLETED, achieved_at=done_at, achieved_value=10000)
    service = RecalculationService(SessionLocal, repository_factory=LinksUnavailableRepository)

    outcome = service.recalculate(campaign.id)

    assert outcome.success is False
    assert outcome.error["error_type"] == "RepositoryReadFailure"
    row = reload(campaign.id)
    assert row.status == CampaignStatus.COMPLETED
    assert row.achieved_value == 10000


def test_write_failure_is_reported_and_invalidates_cache(campaign_factory):
    cache = InMemoryProgressCache()
    campaign = campaign_factory()
    cache.set(f"progress:{campaign.id}", {"progress_percentage": 42})
    service = RecalculationService(SessionLocal, cache=cache, repository_factory=WriteRejectingRepository)

    outcome = service.recalculate(campaign.id)

    assert outcome.success is False
    assert outcome.status_changed is False
    assert outcome.error["error_type"] == "RepositoryWriteFailure"
    assert cache.get(f"progress:{campaign.id}") is None


def test_recalculate_refreshes_cache(service, campaign_factory, policy_factory, link_factory):
    campaign = campaign_factory(type=CampaignType.VALUE, target=4000)
    link_factory(policy_factory(campaign.broker, premium_value=1000), campaign)

    service.recalculate(campaign.id)
    cached = service.cached_progress(campaign.id)
    assert cached["progress_percentage"] == 25
    assert cached["status"] == "active"

    snapshot = service.progress_snapshot(campaign.id)
    assert snapshot["cached"] is True
    assert snapshot["stale"] is False


def test_progress_snapshot_computes_without_writing(service, campaign_factory, policy_factory, link_factory):
    campaign = campaign_factory(type=CampaignType.QUANTITY, target=2)
    link_factory(policy_factory(campaign.broker), campaign)

    snapshot = service.progress_snapshot(campaign.id)

    assert snapshot["progress_percentage"] == 50
    assert snapshot["cached"] is False
    assert reload(campaign.id).progress_percentage == 0


def test_progress_snapshot_falls_back_to_persisted_values(campaign_factory):
    campaign = campaign_factory()
    session = SessionLocal()
    try:
        row = session.get(Campaign, campaign.id)
        row.current_value = 3000
        row.progress_percentage = 30
        session.commit()
    finally:
        session.close()
    service = RecalculationService(SessionLocal, repository_factory=LinksUnavailableRepository)

    snapshot = service.progress_snapshot(campaign.id)

    assert snapshot["stale"] is True
    assert snapshot["progress_percentage"] == 30
    assert snapshot["current_value"] == 3000
    assert "warning" in snapshot


def test_progress_snapshot_unknown_campaign(service):
    with pytest.raises(CampaignNotFound):
        service.progress_snapshot(12345)


def test_batch_isolates_failing_campaign(campaign_factory, policy_factory, link_factory, user_factory):
    broker = user_factory()
    healthy = campaign_factory(broker, type=CampaignType.QUANTITY, target=1)
    broken = campaign_factory(broker, type=CampaignType.QUANTITY, target=1)
    also_healthy = campaign_factory(broker, type=CampaignType.QUANTITY, target=1)
    for campaign in (healthy, broken, also_healthy):
        link_factory(policy_factory(broker), campaign)
    service = RecalculationService(SessionLocal, repository_factory=failing_for(broken.id), max_workers=3)

    result = service.recalculate_all(broker.id)

    assert result.total == 3
    assert result.succeeded == 2
    assert [e["campaign_id"] for e in result.errors] == [broken.id]
    assert reload(healthy.id).status == CampaignStatus.COMPLETED
    assert reload(also_healthy.id).status == CampaignStatus.COMPLETED
    assert reload(broken.id).status == CampaignStatus.ACTIVE


def test_batch_scope_and_cancelled_campaigns_are_skipped(service, campaign_factory, user_factory):
    broker = user_factory()
    other = user_factory()
    campaign_factory(broker)
    campaign_factory(broker, status=CampaignStatus.CANCELLED)
    campaign_factory(other)

    assert service.recalculate_all(broker.id).total == 1
    assert service.recalculate_all().total == 2


def test_batch_run_is_recorded(service, campaign_factory):
    campaign_factory()
    result = service.recalculate_all(trigger=RecalculationTrigger.PERIODIC_SWEEP)

    runs = service.recent_runs()
    assert len(runs) == 1
    assert runs[0].id == result.run_id
    assert runs[0].trigger == RecalculationTrigger.PERIODIC_SWEEP
    assert runs[0].total == 1
    assert runs[0].success is True


def test_unrecorded_batch_leaves_no_run(service, campaign_factory, db_session):
    campaign_factory()
    service.recalculate_all(record=False)
    assert db_session.query(RecalculationRun).count() == 0


def test_correct_all_repairs_inconsistent_statuses(service, campaign_factory, policy_factory, link_factory, user_factory):
    broker = user_factory()
    today = utc_now().date()
    # persisted as completed, but only 9 of 10 policies remain
    stale_completed = campaign_factory(
        broker,
        type=CampaignType.QUANTITY,
        target=10,
        status=CampaignStatus.COMPLETED,
        achieved_at=utc_now() - timedelta(days=1),
        achieved_value=10,
    )
    for _ in range(9):
        link_factory(policy_factory(broker), stale_completed)
    expired = campaign_factory(
        broker,
        type=CampaignType.QUANTITY,
        target=10,
        start_date=today - timedelta(days=60),
        end_date=today - timedelta(days=1),
        accepted_at=utc_now() - timedelta(days=50),
    )
    for _ in range(8):
        link_factory(policy_factory(broker, policy_type=PolicyType.RESIDENTIAL), expired)
    untouched = campaign_factory(broker, type=CampaignType.QUANTITY, target=10)

    summary = service.correct_all(broker.id)

    assert summary.total == 3
    assert summary.corrected_count == 2
    by_id = {c["campaign_id"]: c for c in summary.corrected}
    assert by_id[stale_completed.id]["to_status"] == "active"
    assert by_id[expired.id]["to_status"] == "cancelled"
    assert untouched.id not in by_id
    row = reload(stale_completed.id)
    assert row.achieved_at is None
    assert row.achieved_value is None
    assert row.progress_percentage == 90
    assert reload(expired.id).status == CampaignStatus.CANCELLED
    assert summary.run_id is not None


def test_calculation_crash_is_reported_as_failed_outcome(service, campaign_factory, monkeypatch):
    from app.services import recalculation as recalculation_module

    def explode(*args, **kwargs):
        raise RuntimeError("calculator bug")

    campaign = campaign_factory(status=CampaignStatus.COMPLETED, achieved_at=utc_now(), achieved_value=10000)
    monkeypatch.setattr(recalculation_module, "calculate_progress", explode)

    outcome = service.recalculate(campaign.id)

    assert outcome.success is False
    assert outcome.status_changed is False
    assert outcome.error["error_type"] == "RuntimeError"
    assert reload(campaign.id).status == CampaignStatus.COMPLETED
