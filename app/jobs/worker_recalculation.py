"""Background worker consuming recalculation jobs.

A failed job is re-queued with exponential backoff + jitter until
``BACKOFF_POLICY["max_attempts"]``; after that it is dropped and the periodic
sweep picks the campaign up on its next pass.
"""
from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import Any, Optional

from app.config import QUEUE_SETTINGS
from app.jobs.queue import PriorityDelayQueue
from app.jobs.recalculation_job import RecalculationJob
from app.services.errors import CampaignNotFound
from app.services.recalculation import RecalculationService
from app.utils import get_logger
from app.utils.backoff import compute_backoff_seconds, should_retry

logger = get_logger(__name__)


class RecalculationWorker:
    def __init__(self, queue: PriorityDelayQueue, service: RecalculationService, *, poll_timeout: Optional[float] = None):
        self.queue = queue
        self.service = service
        self.poll_timeout = float(poll_timeout if poll_timeout is not None else QUEUE_SETTINGS.get("poll_timeout_seconds", 5.0))  # type: ignore[arg-type]
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._stats_lock = threading.Lock()
        self.stats: dict[str, int] = {"processed": 0, "succeeded": 0, "retried": 0, "dropped": 0}
        self.last_failures: list[dict[str, Any]] = []

    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="recalculation-worker", daemon=True)
        self._thread.start()
        logger.info("Recalculation worker started")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        logger.info("Recalculation worker stop requested")
        if timeout is not None and self._thread is not None:
            self._thread.join(timeout=timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def _bump(self, name: str) -> None:
        with self._stats_lock:
            self.stats[name] += 1

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                job = self.queue.dequeue(timeout=self.poll_timeout)
                if job is None:
                    continue
                if not isinstance(job, RecalculationJob):
                    logger.warning("Skipping unknown job type", job_type=type(job).__name__)
                    continue
                self.process(job)
            except Exception as e:  # pragma: no cover
                logger.error("Worker loop error", error=str(e), exc_info=True)
                time.sleep(1)

    def process(self, job: RecalculationJob) -> bool:
        """Run one job; returns True on success. Failures are retried or dropped here."""
        self._bump("processed")
        logger.info("Processing recalculation job", campaign_id=job.campaign_id, trigger=job.trigger.value, attempt=job.attempt + 1)
        try:
            outcome = self.service.recalculate(job.campaign_id, job.trigger, correlation_id=job.correlation_id)
        except CampaignNotFound:
            logger.warning("Dropping recalculation job for missing campaign", campaign_id=job.campaign_id)
            self._bump("dropped")
            return False
        except Exception as e:
            self._handle_failure(job, {"error_type": type(e).__name__, "message": str(e)})
            return False
        if outcome.success:
            self._bump("succeeded")
            return True
        self._handle_failure(job, outcome.error or {})
        return False

    def _handle_failure(self, job: RecalculationJob, error: dict[str, Any]) -> None:
        attempts = job.attempt + 1
        self.last_failures = (self.last_failures + [{"campaign_id": job.campaign_id, "attempt": attempts, **error}])[-50:]
        if not should_retry(attempts):
            logger.warning(
                "Recalculation job exhausted retries, leaving campaign to the periodic sweep",
                campaign_id=job.campaign_id,
                attempts=attempts,
                error=error.get("message"),
            )
            self._bump("dropped")
            return
        delay = compute_backoff_seconds(attempts)
        try:
            self.queue.enqueue(replace(job, attempt=attempts), priority=job.priority, delay_seconds=delay)
        except (RuntimeError, OverflowError) as e:
            logger.warning("Could not re-queue recalculation job", campaign_id=job.campaign_id, error=str(e))
            self._bump("dropped")
            return
        self._bump("retried")
        logger.warning(
            "Recalculation job failed, retry scheduled",
            campaign_id=job.campaign_id,
            attempt=attempts,
            retry_in_seconds=round(delay, 2),
            error=error.get("message"),
        )

    def snapshot(self) -> dict:
        with self._stats_lock:
            return {"running": self.is_running(), **self.stats}


__all__ = ["RecalculationWorker"]
