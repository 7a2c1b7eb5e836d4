"""Plain domain records the progress engine computes over.

The calculator and reconciler never touch ORM rows: the repository converts
rows into these frozen snapshots (parsing enums and criteria once at the
boundary) so the engine stays a pure function of its inputs.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional, Union

from app.models.db.enums import (
    AcceptanceStatus,
    CampaignStatus,
    CampaignType,
    ContractType,
    PolicyStatus,
    PolicyType,
    TargetType,
)


@dataclass(frozen=True, slots=True)
class Criterion:
    index: int
    target_type: TargetType
    target_value: float
    policy_type: Optional[PolicyType] = None
    contract_type: Optional[ContractType] = None
    min_value_per_policy: Optional[float] = None
    description: Optional[str] = None


@dataclass(frozen=True, slots=True)
class MalformedCriterion:
    """A stored criterion that could not be parsed. Counts as unsatisfied."""
    index: int
    reason: str
    raw: Any = None


CriterionSpec = Union[Criterion, MalformedCriterion]


@dataclass(frozen=True, slots=True)
class PolicySnapshot:
    policy_id: int
    policy_number: str
    policy_type: PolicyType
    contract_type: ContractType
    premium_value: float
    status: PolicyStatus = PolicyStatus.ACTIVE


@dataclass(frozen=True, slots=True)
class LinkedPolicy:
    link_id: int
    linked_at: datetime
    is_active: bool
    policy: PolicySnapshot


@dataclass(frozen=True, slots=True)
class CampaignRecord:
    id: int
    user_id: int
    title: str
    type: CampaignType
    target: float
    start_date: date
    end_date: date
    acceptance_status: AcceptanceStatus
    status: CampaignStatus
    accepted_at: Optional[datetime] = None
    criteria: tuple[CriterionSpec, ...] = field(default_factory=tuple)
    current_value: float = 0.0
    progress_percentage: float = 0.0
    achieved_at: Optional[datetime] = None
    achieved_value: Optional[float] = None
    last_updated: Optional[datetime] = None

    @property
    def is_accepted(self) -> bool:
        return self.acceptance_status == AcceptanceStatus.ACCEPTED


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    """Computed fields written back for one campaign (last write wins)."""
    current_value: float
    progress_percentage: float
    status: CampaignStatus
    achieved_at: Optional[datetime]
    achieved_value: Optional[float]
    last_updated: datetime


__all__ = [
    "Criterion",
    "MalformedCriterion",
    "CriterionSpec",
    "PolicySnapshot",
    "LinkedPolicy",
    "CampaignRecord",
    "ProgressUpdate",
]
