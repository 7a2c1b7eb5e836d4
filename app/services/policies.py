"""Policy registration and policy-to-campaign linking.

``register_policy`` inserts the policy and links it to every campaign of the
broker that is accepted, active, inside its window, and whose criteria the
policy matches (criteria-less campaigns take every policy). The commit covers
the policy and its links only; recalculation is dispatched afterwards.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models.db import Campaign, Policy, PolicyCampaignLink
from app.models.db.enums import AcceptanceStatus, CampaignStatus, ContractType, PolicyStatus, PolicyType
from app.models.domain import Criterion, PolicySnapshot
from app.services.criteria import matches, parse_criteria
from app.utils import get_logger
from app.utils.time import end_of_day, utc_now

logger = get_logger(__name__)


@dataclass(slots=True)
class RegistrationResult:
    policy: Policy
    linked_campaign_ids: List[int] = field(default_factory=list)


def policy_matches_campaign(campaign: Campaign, policy: PolicySnapshot) -> bool:
    specs = parse_criteria(campaign.criteria)
    if not specs:
        return True
    return any(isinstance(spec, Criterion) and matches(spec, policy) for spec in specs)


def linkable_campaigns(session: Session, user_id: int, policy: PolicySnapshot, now: Optional[datetime] = None) -> List[Campaign]:
    now = now or utc_now()
    candidates = (
        session.query(Campaign)
        .filter(
            Campaign.user_id == user_id,
            Campaign.acceptance_status == AcceptanceStatus.ACCEPTED,
            Campaign.status == CampaignStatus.ACTIVE,
            Campaign.is_active == True,  # noqa: E712
        )
        .order_by(Campaign.id)
        .all()
    )
    return [
        c for c in candidates
        if c.start_date <= now.date() and now <= end_of_day(c.end_date) and policy_matches_campaign(c, policy)
    ]


def register_policy(
    session: Session,
    user_id: int,
    *,
    policy_number: str,
    policy_type: PolicyType,
    contract_type: ContractType,
    premium_value: float,
    now: Optional[datetime] = None,
) -> RegistrationResult:
    now = now or utc_now()
    policy = Policy(
        user_id=user_id,
        policy_number=policy_number,
        policy_type=policy_type,
        contract_type=contract_type,
        premium_value=premium_value,
        status=PolicyStatus.ACTIVE,
    )
    session.add(policy)
    session.flush()

    snapshot = PolicySnapshot(
        policy_id=policy.id,
        policy_number=policy_number,
        policy_type=policy_type,
        contract_type=contract_type,
        premium_value=float(premium_value),
    )
    campaigns = linkable_campaigns(session, user_id, snapshot, now)
    for campaign in campaigns:
        session.add(PolicyCampaignLink(
            policy_id=policy.id,
            campaign_id=campaign.id,
            user_id=user_id,
            linked_at=now,
            is_active=True,
            linked_automatically=True,
        ))
    session.commit()
    session.refresh(policy)

    linked_ids = [c.id for c in campaigns]
    logger.info("Policy registered", policy_id=policy.id, user_id=user_id, linked_campaigns=linked_ids)
    return RegistrationResult(policy=policy, linked_campaign_ids=linked_ids)


def deactivate_link(session: Session, link: PolicyCampaignLink) -> bool:
    """Soft delete a link. Returns False when it was already inactive."""
    if not link.is_active:
        return False
    link.is_active = False
    session.commit()
    logger.info("Policy link deactivated", link_id=link.id, campaign_id=link.campaign_id, policy_id=link.policy_id)
    return True


__all__ = [
    "RegistrationResult",
    "policy_matches_campaign",
    "linkable_campaigns",
    "register_policy",
    "deactivate_link",
]
