"""Campaign lifecycle status reconciliation.

Rules, first match wins:

* not accepted: status untouched.
* cancelled: terminal, never reopened.
* criteria satisfied: ``completed`` (achievement stamped on entry only).
* unsatisfied and the window closed (past the end of ``end_date``, UTC): ``cancelled``.
* unsatisfied, window open: ``active``.

A campaign persisted as ``completed`` whose criteria no longer hold loses its
achievement stamp on the way back to ``active`` (or ``cancelled``).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.models.db.enums import CampaignStatus
from app.models.domain import CampaignRecord
from app.services.progress_calculator import ProgressResult
from app.utils.time import end_of_day, ensure_utc


@dataclass(frozen=True, slots=True)
class StatusDecision:
    previous_status: CampaignStatus
    status: CampaignStatus
    achieved_at: Optional[datetime]
    achieved_value: Optional[float]
    reason: str

    @property
    def status_changed(self) -> bool:
        return self.status != self.previous_status

    @property
    def transition(self) -> Optional[str]:
        if not self.status_changed:
            return None
        return f"{self.previous_status.value}->{self.status.value}"

    @property
    def reverted_completion(self) -> bool:
        return self.previous_status == CampaignStatus.COMPLETED and self.status != CampaignStatus.COMPLETED


def is_window_closed(campaign: CampaignRecord, now: datetime) -> bool:
    return ensure_utc(now) > end_of_day(campaign.end_date)


def reconcile(campaign: CampaignRecord, progress: ProgressResult, now: datetime) -> StatusDecision:
    previous = campaign.status

    if not campaign.is_accepted:
        return StatusDecision(previous, previous, campaign.achieved_at, campaign.achieved_value, "not_accepted")

    if previous == CampaignStatus.CANCELLED:
        return StatusDecision(previous, previous, campaign.achieved_at, campaign.achieved_value, "terminal")

    if progress.is_completed:
        if previous == CampaignStatus.COMPLETED and campaign.achieved_at is not None:
            achieved_value = campaign.achieved_value if campaign.achieved_value is not None else progress.current_value
            return StatusDecision(previous, previous, campaign.achieved_at, achieved_value, "still_completed")
        return StatusDecision(previous, CampaignStatus.COMPLETED, now, progress.current_value, "criteria_satisfied")

    if is_window_closed(campaign, now):
        return StatusDecision(previous, CampaignStatus.CANCELLED, None, None, "window_closed")

    reason = "completion_reverted" if previous == CampaignStatus.COMPLETED else "in_progress"
    return StatusDecision(previous, CampaignStatus.ACTIVE, None, None, reason)


__all__ = ["StatusDecision", "reconcile", "is_window_closed"]
