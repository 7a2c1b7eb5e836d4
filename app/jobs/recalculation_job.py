"""Recalculation job payload structure."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from app.models.db.enums import RecalculationTrigger


@dataclass(slots=True)
class RecalculationJob:
    campaign_id: int
    trigger: RecalculationTrigger = RecalculationTrigger.POLICY_CREATED
    priority: str = "high"
    attempt: int = 0  # failed attempts so far
    correlation_id: Optional[str] = None

    def key(self) -> str:  # one pending run per campaign is enough, recalculation is idempotent
        return f"recalc:{self.campaign_id}"


__all__ = ["RecalculationJob"]
