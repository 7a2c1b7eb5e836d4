"""Recalculation orchestrator.

``RecalculationService`` is the single entry point every trigger goes through
(policy registration, link removal, the periodic sweep, admin correction,
manual requests):

1. Read the campaign and its active links through the repository.
2. Run the progress calculator, then the status reconciler.
3. Write the computed fields back (last write wins) and refresh the cache.

Recalculation is a pure function of persisted state, so running it twice, or
concurrently from two triggers, converges on the same row. A read failure
leaves persisted state untouched and is reported as a failed outcome.

Batch runs process campaigns independently on a thread pool with one session
per campaign; a failing campaign is reported and the rest continue.
"""
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import database
from app.config import CACHE_SETTINGS, RECALCULATION_SETTINGS
from app.models.db import RecalculationRun
from app.models.db.enums import CampaignStatus, RecalculationTrigger
from app.models.domain import CampaignRecord, ProgressUpdate
from app.services.errors import CampaignNotFound, ProgressError
from app.services.progress_cache import ProgressCache, progress_key
from app.services.progress_calculator import ProgressResult, calculate_progress
from app.services.repository import CampaignRepository, SqlAlchemyCampaignRepository
from app.services.status_reconciler import StatusDecision, reconcile
from app.utils import get_logger, log_business_event, log_performance
from app.utils.time import utc_now

logger = get_logger(__name__)


@dataclass(slots=True)
class RecalculationOutcome:
    campaign_id: int
    trigger: RecalculationTrigger
    success: bool
    previous_status: Optional[CampaignStatus] = None
    status: Optional[CampaignStatus] = None
    progress: Optional[ProgressResult] = None
    decision: Optional[StatusDecision] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def status_changed(self) -> bool:
        return self.decision is not None and self.decision.status_changed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "trigger": self.trigger.value,
            "success": self.success,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "status": self.status.value if self.status else None,
            "status_changed": self.status_changed,
            "progress_percentage": self.progress.progress_percentage if self.progress else None,
            "current_value": self.progress.current_value if self.progress else None,
            "is_completed": self.progress.is_completed if self.progress else None,
            "error": self.error,
        }


@dataclass(slots=True)
class BatchRecalculationResult:
    trigger: RecalculationTrigger
    started_at: datetime
    finished_at: Optional[datetime] = None
    outcomes: List[RecalculationOutcome] = field(default_factory=list)
    run_id: Optional[int] = None

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def changed(self) -> List[RecalculationOutcome]:
        return [o for o in self.outcomes if o.status_changed]

    @property
    def errors(self) -> List[Dict[str, Any]]:
        return [o.error for o in self.outcomes if o.error]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger": self.trigger.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "total": self.total,
            "succeeded": self.succeeded,
            "changed": len(self.changed),
            "errors": self.errors,
        }


@dataclass(slots=True)
class CorrectionSummary:
    total: int
    corrected: List[Dict[str, Any]]
    errors: List[Dict[str, Any]]
    run_id: Optional[int] = None

    @property
    def corrected_count(self) -> int:
        return len(self.corrected)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "total": self.total,
            "corrected_count": self.corrected_count,
            "corrected": self.corrected,
            "errors": self.errors,
        }


def _default_session_factory() -> Session:
    # Resolved per call so a rebound app.database.SessionLocal is honoured
    return database.SessionLocal()


class RecalculationService:
    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        *,
        cache: Optional[ProgressCache] = None,
        repository_factory: Callable[[Session], CampaignRepository] = SqlAlchemyCampaignRepository,
        aggregation: Optional[str] = None,
        max_workers: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory or _default_session_factory
        self._repository_factory = repository_factory
        self.cache = cache
        self.aggregation = aggregation
        self.max_workers = int(max_workers if max_workers is not None else RECALCULATION_SETTINGS["max_workers"])
        self._clock = clock

    # ----------------------------- cache helpers ----------------------------- #
    def _cache_progress(self, campaign: CampaignRecord, progress: ProgressResult, status: CampaignStatus, computed_at: datetime) -> None:
        if self.cache is None:
            return
        payload = progress.to_dict()
        payload.update({"status": status.value, "computed_at": computed_at.isoformat()})
        try:
            self.cache.set(progress_key(campaign.id), payload, int(CACHE_SETTINGS["progress_ttl_seconds"]))
        except Exception as e:
            logger.warning("Progress cache write failed", campaign_id=campaign.id, error=str(e))

    def invalidate(self, campaign_id: int) -> None:
        if self.cache is None:
            return
        try:
            self.cache.invalidate(progress_key(campaign_id))
        except Exception as e:
            logger.warning("Progress cache invalidation failed", campaign_id=campaign_id, error=str(e))

    def cached_progress(self, campaign_id: int) -> Optional[Dict[str, Any]]:
        if self.cache is None:
            return None
        try:
            return self.cache.get(progress_key(campaign_id))
        except Exception as e:
            logger.warning("Progress cache read failed", campaign_id=campaign_id, error=str(e))
            return None

    # ----------------------------- single campaign ----------------------------- #
    def preview(self, campaign_id: int) -> ProgressResult:
        """Compute progress without writing anything."""
        session = self._session_factory()
        try:
            repo = self._repository_factory(session)
            campaign = repo.get_campaign(campaign_id)
            links = repo.get_active_links(campaign_id)
            return calculate_progress(campaign, links, aggregation=self.aggregation)
        finally:
            session.close()

    def progress_snapshot(self, campaign_id: int) -> Dict[str, Any]:
        """Progress for read endpoints: cache, then a fresh preview, then persisted values.

        Raises CampaignNotFound. Never raises on calculation failure.
        """
        cached = self.cached_progress(campaign_id)
        if cached is not None:
            cached.update({"stale": False, "cached": True})
            return cached

        session = self._session_factory()
        try:
            repo = self._repository_factory(session)
            campaign = repo.get_campaign(campaign_id)
            try:
                links = repo.get_active_links(campaign_id)
                progress = calculate_progress(campaign, links, aggregation=self.aggregation)
            except Exception as e:
                logger.warning(
                    "Progress calculation failed, serving persisted values",
                    campaign_id=campaign_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return {
                    "campaign_id": campaign.id,
                    "current_value": campaign.current_value,
                    "progress_percentage": campaign.progress_percentage,
                    "is_completed": campaign.status == CampaignStatus.COMPLETED,
                    "total_policies": None,
                    "accepted": campaign.is_accepted,
                    "aggregation": None,
                    "criteria": [],
                    "status": campaign.status.value,
                    "stale": True,
                    "cached": False,
                    "warning": f"Progress could not be recalculated: {e}",
                }
            payload = progress.to_dict()
            payload.update({"status": campaign.status.value, "stale": False, "cached": False})
            return payload
        finally:
            session.close()

    def recalculate(
        self,
        campaign_id: int,
        trigger: RecalculationTrigger = RecalculationTrigger.MANUAL,
        *,
        correlation_id: Optional[str] = None,
    ) -> RecalculationOutcome:
        """Recalculate and persist one campaign.

        Raises CampaignNotFound. Other progress errors come back as a failed outcome.
        """
        session = self._session_factory()
        try:
            return self._recalculate_in(session, campaign_id, trigger, correlation_id)
        finally:
            session.close()

    def _recalculate_in(self, session: Session, campaign_id: int, trigger: RecalculationTrigger, correlation_id: Optional[str]) -> RecalculationOutcome:
        repo = self._repository_factory(session)
        try:
            campaign = repo.get_campaign(campaign_id)
            links = repo.get_active_links(campaign_id)
        except CampaignNotFound:
            raise
        except ProgressError as e:
            logger.error("Recalculation aborted: read failed", campaign_id=campaign_id, trigger=trigger.value, error=e.message)
            return RecalculationOutcome(campaign_id, trigger, False, error=e.to_dict())

        now = self._clock()
        try:
            progress = calculate_progress(campaign, links, aggregation=self.aggregation)
            decision = reconcile(campaign, progress, now)
        except Exception as e:
            logger.error(
                "Recalculation aborted: calculation failed",
                campaign_id=campaign_id,
                trigger=trigger.value,
                error=str(e),
                exc_info=True,
            )
            error = {"campaign_id": campaign_id, "error_type": type(e).__name__, "message": str(e)}
            return RecalculationOutcome(campaign_id, trigger, False, campaign.status, campaign.status, error=error)
        update = ProgressUpdate(
            current_value=progress.current_value,
            progress_percentage=progress.progress_percentage,
            status=decision.status,
            achieved_at=decision.achieved_at,
            achieved_value=decision.achieved_value,
            last_updated=now,
        )
        try:
            repo.update_progress(campaign_id, update)
        except ProgressError as e:
            logger.error("Recalculation aborted: write failed", campaign_id=campaign_id, trigger=trigger.value, error=e.message)
            self.invalidate(campaign_id)
            return RecalculationOutcome(campaign_id, trigger, False, campaign.status, campaign.status, progress, None, e.to_dict())

        self._cache_progress(campaign, progress, decision.status, now)

        if decision.status_changed:
            log_business_event(
                event_type="campaign_status_changed",
                details={
                    "campaign_id": campaign_id,
                    "from_status": decision.previous_status.value,
                    "to_status": decision.status.value,
                    "reason": decision.reason,
                    "trigger": trigger.value,
                    "progress_percentage": progress.progress_percentage,
                    "current_value": progress.current_value,
                },
                user_id=campaign.user_id,
                request_id=correlation_id,
            )

        logger.debug(
            "Campaign recalculated",
            campaign_id=campaign_id,
            trigger=trigger.value,
            status=decision.status.value,
            progress_percentage=progress.progress_percentage,
            is_completed=progress.is_completed,
        )
        return RecalculationOutcome(campaign_id, trigger, True, decision.previous_status, decision.status, progress, decision)

    def _safe_recalculate(self, campaign_id: int, trigger: RecalculationTrigger) -> RecalculationOutcome:
        try:
            return self.recalculate(campaign_id, trigger)
        except ProgressError as e:
            return RecalculationOutcome(campaign_id, trigger, False, error=e.to_dict())
        except Exception as e:
            logger.error("Unexpected recalculation failure", campaign_id=campaign_id, error=str(e), exc_info=True)
            return RecalculationOutcome(
                campaign_id,
                trigger,
                False,
                error={"campaign_id": campaign_id, "error_type": type(e).__name__, "message": str(e)},
            )

    # ----------------------------- batches ----------------------------- #
    def _list_campaign_ids(self, user_id: Optional[int], statuses: Sequence[CampaignStatus]) -> List[int]:
        session = self._session_factory()
        try:
            return self._repository_factory(session).list_campaign_ids(user_id=user_id, statuses=statuses)
        finally:
            session.close()

    def recalculate_all(
        self,
        user_id: Optional[int] = None,
        trigger: RecalculationTrigger = RecalculationTrigger.MANUAL,
        *,
        statuses: Optional[Sequence[CampaignStatus]] = None,
        record: bool = True,
    ) -> BatchRecalculationResult:
        """Recalculate every campaign in scope (default: active and completed)."""
        start = time.time()
        if statuses is None:
            statuses = [CampaignStatus(s) for s in RECALCULATION_SETTINGS["batch_statuses"]]  # type: ignore[union-attr]
        result = BatchRecalculationResult(trigger=trigger, started_at=utc_now())

        try:
            campaign_ids = self._list_campaign_ids(user_id, statuses)
        except ProgressError as e:
            result.finished_at = utc_now()
            if record:
                result.run_id = self.record_run(result, user_id=user_id, success=False, extra_errors=[e.to_dict()])
            raise

        if campaign_ids:
            workers = max(1, min(self.max_workers, len(campaign_ids)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="recalc") as pool:
                result.outcomes = list(pool.map(lambda cid: self._safe_recalculate(cid, trigger), campaign_ids))
        result.finished_at = utc_now()

        if record:
            result.run_id = self.record_run(result, user_id=user_id)

        duration_ms = (time.time() - start) * 1000
        log_performance(
            operation="recalculate_all",
            duration_ms=duration_ms,
            additional_data={
                "trigger": trigger.value,
                "user_id": user_id,
                "total": result.total,
                "succeeded": result.succeeded,
                "changed": len(result.changed),
            },
        )
        if result.errors:
            logger.warning("Batch recalculation finished with errors", trigger=trigger.value, error_count=len(result.errors))
        return result

    def correct_all(self, user_id: Optional[int] = None, *, request_id: Optional[str] = None) -> CorrectionSummary:
        """Admin bulk correction: re-evaluate and repair statuses, report what changed."""
        result = self.recalculate_all(user_id, RecalculationTrigger.ADMIN_CORRECTION)
        corrected = [
            {
                "campaign_id": o.campaign_id,
                "from_status": o.previous_status.value if o.previous_status else None,
                "to_status": o.status.value if o.status else None,
                "reason": o.decision.reason if o.decision else None,
            }
            for o in result.changed
        ]
        summary = CorrectionSummary(total=result.total, corrected=corrected, errors=result.errors, run_id=result.run_id)
        log_business_event(
            event_type="bulk_correction_completed",
            details={
                "scope_user_id": user_id,
                "total": summary.total,
                "corrected_count": summary.corrected_count,
                "error_count": len(summary.errors),
            },
            request_id=request_id,
        )
        return summary

    # ----------------------------- audit trail ----------------------------- #
    def record_run(
        self,
        result: BatchRecalculationResult,
        *,
        user_id: Optional[int] = None,
        success: bool = True,
        extra_errors: Optional[List[Dict[str, Any]]] = None,
    ) -> Optional[int]:
        """Persist a batch run. A failure here is logged, never raised."""
        session = self._session_factory()
        try:
            run = RecalculationRun(
                trigger=result.trigger,
                user_id=user_id,
                started_at=result.started_at,
                finished_at=result.finished_at,
                success=success and not result.errors,
                total=result.total,
                succeeded=result.succeeded,
                changed=len(result.changed),
                errors=result.errors + (extra_errors or []),
                details=[
                    {"campaign_id": o.campaign_id, "from_status": o.previous_status.value if o.previous_status else None, "to_status": o.status.value if o.status else None}
                    for o in result.changed
                ],
            )
            session.add(run)
            session.commit()
            return run.id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Failed to record recalculation run", trigger=result.trigger.value, error=str(e))
            return None
        finally:
            session.close()

    def recent_runs(self, limit: Optional[int] = None) -> List[RecalculationRun]:
        session = self._session_factory()
        try:
            limit = int(limit or RECALCULATION_SETTINGS["history_limit"])  # type: ignore[arg-type]
            runs = (
                session.query(RecalculationRun)
                .order_by(RecalculationRun.started_at.desc(), RecalculationRun.id.desc())
                .limit(limit)
                .all()
            )
            session.expunge_all()
            return runs
        finally:
            session.close()


__all__ = [
    "RecalculationService",
    "RecalculationOutcome",
    "BatchRecalculationResult",
    "CorrectionSummary",
]
