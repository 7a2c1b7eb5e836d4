import time
from unittest.mock import MagicMock

import pytest

from app.config import BACKOFF_POLICY
from app.jobs.queue import PriorityDelayQueue
from app.jobs.recalculation_job import RecalculationJob
from app.jobs.worker_recalculation import RecalculationWorker
from app.models.db.enums import CampaignStatus, CampaignType, RecalculationTrigger
from app.services.errors import CampaignNotFound, RepositoryReadFailure
from app.services.recalculation import RecalculationOutcome


def ok_outcome(campaign_id):
    return RecalculationOutcome(campaign_id, RecalculationTrigger.POLICY_CREATED, True)


def failed_outcome(campaign_id):
    error = RepositoryReadFailure("db away", campaign_id=campaign_id).to_dict()
    return RecalculationOutcome(campaign_id, RecalculationTrigger.POLICY_CREATED, False, error=error)


def test_queue_coalesces_pending_campaign():
    q = PriorityDelayQueue()
    first = q.enqueue(RecalculationJob(7), priority="high")
    second = q.enqueue(RecalculationJob(7), priority="high")

    assert second is first
    assert q.depth() == 1
    assert q.snapshot()["coalesced"] == 1

    assert q.dequeue(block=False).campaign_id == 7
    assert not q.is_pending("recalc:7")
    q.enqueue(RecalculationJob(7), priority="high")
    assert q.depth() == 1


def test_queue_orders_by_priority_then_fifo():
    q = PriorityDelayQueue()
    q.enqueue(RecalculationJob(1, priority="low"), priority="low")
    q.enqueue(RecalculationJob(2), priority="high")
    q.enqueue(RecalculationJob(3), priority="high")

    order = [q.dequeue(block=False).campaign_id for _ in range(3)]
    assert order == [2, 3, 1]
    assert q.dequeue(block=False) is None


def test_delayed_job_becomes_ready():
    q = PriorityDelayQueue()
    q.enqueue(RecalculationJob(4), priority="high", delay_seconds=0.05)

    assert q.dequeue(block=False) is None
    job = q.dequeue(timeout=1.0)
    assert job is not None and job.campaign_id == 4


def test_deferred_retry_does_not_block_fresh_work():
    q = PriorityDelayQueue()
    q.enqueue(RecalculationJob(1), priority="high", delay_seconds=30)
    q.enqueue(RecalculationJob(2, priority="low"), priority="low")

    assert q.dequeue(block=False).campaign_id == 2
    assert q.dequeue(timeout=0.05) is None
    assert q.pending_job("recalc:1").campaign_id == 1
    assert q.snapshot()["scheduled"] == 1


def test_queue_rejects_after_shutdown_and_unknown_priority():
    q = PriorityDelayQueue()
    with pytest.raises(ValueError):
        q.enqueue(RecalculationJob(1), priority="urgent")
    q.shutdown()
    with pytest.raises(RuntimeError):
        q.enqueue(RecalculationJob(1), priority="high")


def test_worker_success_counts():
    service = MagicMock()
    service.recalculate.return_value = ok_outcome(5)
    worker = RecalculationWorker(PriorityDelayQueue(), service)

    assert worker.process(RecalculationJob(5, correlation_id="req-1")) is True
    service.recalculate.assert_called_once_with(5, RecalculationTrigger.POLICY_CREATED, correlation_id="req-1")
    assert worker.stats["succeeded"] == 1


def test_worker_schedules_retry_with_backoff():
    q = PriorityDelayQueue()
    service = MagicMock()
    service.recalculate.return_value = failed_outcome(5)
    worker = RecalculationWorker(q, service)

    assert worker.process(RecalculationJob(5)) is False

    snap = q.snapshot()
    assert snap["scheduled"] == 1
    assert worker.stats["retried"] == 1
    assert worker.last_failures[-1]["error_type"] == "RepositoryReadFailure"
    retried = q.pending_job("recalc:5")
    assert retried.attempt == 1
    assert retried.campaign_id == 5


def test_worker_drops_job_after_max_attempts():
    q = PriorityDelayQueue()
    service = MagicMock()
    service.recalculate.side_effect = RuntimeError("still broken")
    worker = RecalculationWorker(q, service)

    last_attempt = int(BACKOFF_POLICY["max_attempts"]) - 1
    worker.process(RecalculationJob(5, attempt=last_attempt))

    assert q.depth() == 0
    assert worker.stats["dropped"] == 1


def test_worker_drops_missing_campaign_without_retry():
    q = PriorityDelayQueue()
    service = MagicMock()
    service.recalculate.side_effect = CampaignNotFound(99)
    worker = RecalculationWorker(q, service)

    worker.process(RecalculationJob(99))

    assert q.depth() == 0
    assert worker.stats == {"processed": 1, "succeeded": 0, "retried": 0, "dropped": 1}


def test_worker_thread_recalculates_queued_campaign(service, campaign_factory, policy_factory, link_factory):
    campaign = campaign_factory(type=CampaignType.QUANTITY, target=1)
    link_factory(policy_factory(campaign.broker), campaign)
    q = PriorityDelayQueue()
    worker = RecalculationWorker(q, service, poll_timeout=0.05)
    worker.start()
    try:
        q.enqueue(RecalculationJob(campaign.id), priority="high")
        deadline = time.time() + 5
        while worker.stats["succeeded"] < 1 and time.time() < deadline:
            time.sleep(0.02)
    finally:
        worker.stop(timeout=2)

    assert worker.stats["succeeded"] == 1
    assert not worker.is_running()
    assert service.cached_progress(campaign.id)["status"] == CampaignStatus.COMPLETED.value
