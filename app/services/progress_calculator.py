"""Campaign progress calculation.

``calculate_progress(campaign, links)`` is a pure function of the campaign
configuration and its policy links:

1. A campaign that has not been accepted yields the zero result.
2. Candidates are active links whose policy is active.
3. Links made before ``accepted_at`` never count (no backdating).
4. With criteria, every criterion is evaluated and completion is the AND of
   all of them. The displayed percentage folds the per-criterion percentages
   (``PROGRESS_SETTINGS["aggregation"]``), and ``current_value`` sums the
   premiums of eligible policies matching at least one criterion.
   A criterion that is malformed or fails to evaluate contributes zero
   progress and is reported with an ``error``; its siblings still count.
5. Without criteria, the campaign type/target act as one implicit criterion.
6. The displayed percentage is capped; ``is_completed`` never is.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from app.config import PROGRESS_SETTINGS
from app.models.db.enums import CampaignType, PolicyStatus, TargetType
from app.models.domain import CampaignRecord, Criterion, LinkedPolicy, MalformedCriterion, PolicySnapshot
from app.services.criteria import CriterionResult, evaluate, malformed_result
from app.utils import get_logger
from app.utils.metrics import clamp, mean
from app.utils.time import ensure_utc

logger = get_logger(__name__)

AGGREGATION_MODES = ("average", "minimum")


@dataclass(slots=True)
class ProgressResult:
    campaign_id: int
    current_value: float
    progress_percentage: float
    is_completed: bool
    total_policies: int
    criteria: List[CriterionResult] = field(default_factory=list)
    accepted: bool = True
    uncapped_percentage: float = 0.0
    aggregation: str = "average"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "current_value": self.current_value,
            "progress_percentage": self.progress_percentage,
            "is_completed": self.is_completed,
            "total_policies": self.total_policies,
            "accepted": self.accepted,
            "aggregation": self.aggregation,
            "criteria": [c.to_dict() for c in self.criteria],
        }


def zero_result(campaign_id: int, *, aggregation: str = "average") -> ProgressResult:
    return ProgressResult(
        campaign_id=campaign_id,
        current_value=0.0,
        progress_percentage=0.0,
        is_completed=False,
        total_policies=0,
        accepted=False,
        aggregation=aggregation,
    )


def eligible_policies(campaign: CampaignRecord, links: Iterable[LinkedPolicy]) -> List[PolicySnapshot]:
    """Active policies on active links made at or after acceptance. Each policy once."""
    accepted_at = ensure_utc(campaign.accepted_at)
    seen: set[int] = set()
    eligible: List[PolicySnapshot] = []
    for link in links:
        if not link.is_active or link.policy.status != PolicyStatus.ACTIVE:
            continue
        if accepted_at is not None and ensure_utc(link.linked_at) < accepted_at:
            continue
        if link.policy.policy_id in seen:
            continue
        seen.add(link.policy.policy_id)
        eligible.append(link.policy)
    return eligible


def aggregate_percentages(percentages: List[float], mode: str) -> float:
    if not percentages:
        return 0.0
    if mode == "minimum":
        return min(percentages)
    return mean(percentages)


def _resolve_aggregation(aggregation: Optional[str]) -> str:
    mode = str(aggregation or PROGRESS_SETTINGS.get("aggregation", "average")).lower()
    if mode not in AGGREGATION_MODES:
        logger.warning("Unknown progress aggregation, using average", aggregation=mode)
        return "average"
    return mode


def implicit_criterion(campaign: CampaignRecord) -> Criterion:
    target_type = TargetType.QUANTITY if campaign.type == CampaignType.QUANTITY else TargetType.VALUE
    return Criterion(
        index=0,
        target_type=target_type,
        target_value=float(campaign.target or 0),
        description="Campaign target",
    )


def calculate_progress(
    campaign: CampaignRecord,
    links: Iterable[LinkedPolicy],
    *,
    aggregation: Optional[str] = None,
    max_display_percentage: Optional[float] = None,
) -> ProgressResult:
    mode = _resolve_aggregation(aggregation)
    if not campaign.is_accepted:
        return zero_result(campaign.id, aggregation=mode)

    cap = float(max_display_percentage if max_display_percentage is not None else PROGRESS_SETTINGS["max_display_percentage"])
    policies = eligible_policies(campaign, links)

    if campaign.criteria:
        results: List[CriterionResult] = []
        for spec in campaign.criteria:
            if isinstance(spec, MalformedCriterion):
                logger.warning(
                    "Malformed campaign criterion counted as unsatisfied",
                    campaign_id=campaign.id,
                    criterion_index=spec.index,
                    reason=spec.reason,
                )
                results.append(malformed_result(spec))
                continue
            try:
                results.append(evaluate(spec, policies))
            except Exception as e:
                logger.warning(
                    "Criterion evaluation failed, counted as unsatisfied",
                    campaign_id=campaign.id,
                    criterion_index=spec.index,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                results.append(malformed_result(MalformedCriterion(index=spec.index, reason=f"evaluation failed: {e}", raw=spec)))
        is_completed = all(r.is_satisfied for r in results)
        raw_percentage = aggregate_percentages([r.percentage for r in results], mode)
        matched_ids = {p.policy_id for r in results for p in r.matching_policies}
        current_value = float(sum(p.premium_value for p in policies if p.policy_id in matched_ids))
    else:
        implicit = evaluate(implicit_criterion(campaign), policies)
        results = [implicit]
        is_completed = implicit.is_satisfied
        raw_percentage = implicit.percentage
        current_value = implicit.current_progress

    return ProgressResult(
        campaign_id=campaign.id,
        current_value=round(current_value, 2),
        progress_percentage=round(clamp(raw_percentage, 0.0, cap), 2),
        is_completed=is_completed,
        total_policies=len(policies),
        criteria=results,
        accepted=True,
        uncapped_percentage=raw_percentage,
        aggregation=mode,
    )


__all__ = [
    "ProgressResult",
    "AGGREGATION_MODES",
    "zero_result",
    "eligible_policies",
    "aggregate_percentages",
    "implicit_criterion",
    "calculate_progress",
]
