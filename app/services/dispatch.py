"""Best-effort recalculation dispatch after a write.

With a running worker the campaign is queued as a high-priority
``RecalculationJob``; otherwise it is recalculated inline. Either way a
failure is reported, never raised: the triggering write is already committed
and the periodic sweep reconciles whatever is left behind.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from app.jobs.queue import PriorityDelayQueue
from app.jobs.recalculation_job import RecalculationJob
from app.models.db.enums import RecalculationTrigger
from app.services.recalculation import RecalculationService
from app.utils import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class DispatchSummary:
    mode: str
    queued: List[int] = field(default_factory=list)
    recalculated: List[int] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "queued": self.queued,
            "recalculated": self.recalculated,
            "failed": self.failed,
        }


def dispatch_recalculation(
    service: RecalculationService,
    campaign_ids: Iterable[int],
    trigger: RecalculationTrigger,
    *,
    queue: Optional[PriorityDelayQueue] = None,
    correlation_id: Optional[str] = None,
) -> DispatchSummary:
    summary = DispatchSummary(mode="queued" if queue is not None else "synchronous")
    for campaign_id in campaign_ids:
        service.invalidate(campaign_id)
        if queue is not None:
            job = RecalculationJob(campaign_id=campaign_id, trigger=trigger, priority="high", correlation_id=correlation_id)
            try:
                queue.enqueue(job, priority=job.priority)
                summary.queued.append(campaign_id)
                continue
            except (RuntimeError, OverflowError) as e:
                logger.warning("Queue unavailable, recalculating inline", campaign_id=campaign_id, error=str(e))
        try:
            outcome = service.recalculate(campaign_id, trigger, correlation_id=correlation_id)
        except Exception as e:
            logger.error("Inline recalculation failed", campaign_id=campaign_id, error=str(e), exc_info=True)
            summary.failed.append({"campaign_id": campaign_id, "error_type": type(e).__name__, "message": str(e)})
            continue
        if outcome.success:
            summary.recalculated.append(campaign_id)
        else:
            summary.failed.append(outcome.error or {"campaign_id": campaign_id})
    if summary.failed:
        logger.warning(
            "Recalculation dispatch incomplete, periodic sweep will reconcile",
            trigger=trigger.value,
            failed=[f.get("campaign_id") for f in summary.failed],
        )
    return summary


__all__ = ["DispatchSummary", "dispatch_recalculation"]
