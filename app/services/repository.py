"""Campaign repository: the only I/O boundary of the progress engine.

``CampaignRepository`` is what ``RecalculationService`` talks to; the
SQLAlchemy implementation converts rows into domain records (parsing criteria
once) and maps driver errors onto the progress error hierarchy.
"""
from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from app.models.db import Campaign, PolicyCampaignLink
from app.models.db.enums import CampaignStatus
from app.models.domain import CampaignRecord, LinkedPolicy, PolicySnapshot, ProgressUpdate
from app.services.criteria import parse_criteria
from app.services.errors import CampaignNotFound, RepositoryReadFailure, RepositoryWriteFailure
from app.utils import get_logger
from app.utils.time import ensure_utc

logger = get_logger(__name__)


class CampaignRepository(Protocol):
    def get_campaign(self, campaign_id: int) -> CampaignRecord: ...
    def get_active_links(self, campaign_id: int) -> List[LinkedPolicy]: ...
    def list_campaign_ids(self, *, user_id: Optional[int] = None, statuses: Optional[Sequence[CampaignStatus]] = None) -> List[int]: ...
    def update_progress(self, campaign_id: int, update: ProgressUpdate) -> None: ...


def to_campaign_record(row: Campaign) -> CampaignRecord:
    return CampaignRecord(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        type=row.type,
        target=float(row.target or 0),
        start_date=row.start_date,
        end_date=row.end_date,
        acceptance_status=row.acceptance_status,
        status=row.status,
        accepted_at=ensure_utc(row.accepted_at),
        criteria=tuple(parse_criteria(row.criteria)),
        current_value=float(row.current_value or 0),
        progress_percentage=float(row.progress_percentage or 0),
        achieved_at=ensure_utc(row.achieved_at),
        achieved_value=float(row.achieved_value) if row.achieved_value is not None else None,
        last_updated=ensure_utc(row.last_updated),
    )


def to_linked_policy(link: PolicyCampaignLink) -> LinkedPolicy:
    policy = link.policy
    return LinkedPolicy(
        link_id=link.id,
        linked_at=ensure_utc(link.linked_at),  # type: ignore[arg-type]
        is_active=bool(link.is_active),
        policy=PolicySnapshot(
            policy_id=policy.id,
            policy_number=policy.policy_number,
            policy_type=policy.policy_type,
            contract_type=policy.contract_type,
            premium_value=float(policy.premium_value or 0),
            status=policy.status,
        ),
    )


class SqlAlchemyCampaignRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _load(self, campaign_id: int) -> Campaign:
        row = self.session.query(Campaign).filter(Campaign.id == campaign_id).one_or_none()
        if row is None:
            raise CampaignNotFound(campaign_id)
        return row

    def get_campaign(self, campaign_id: int) -> CampaignRecord:
        try:
            return to_campaign_record(self._load(campaign_id))
        except SQLAlchemyError as e:
            logger.error("Campaign read failed", campaign_id=campaign_id, error=str(e))
            raise RepositoryReadFailure(f"Failed to read campaign {campaign_id}: {e}", campaign_id=campaign_id)

    def get_active_links(self, campaign_id: int) -> List[LinkedPolicy]:
        try:
            links = (
                self.session.query(PolicyCampaignLink)
                .options(joinedload(PolicyCampaignLink.policy))
                .filter(
                    PolicyCampaignLink.campaign_id == campaign_id,
                    PolicyCampaignLink.is_active == True,  # noqa: E712
                )
                .order_by(PolicyCampaignLink.linked_at, PolicyCampaignLink.id)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error("Policy link read failed", campaign_id=campaign_id, error=str(e))
            raise RepositoryReadFailure(f"Failed to read links for campaign {campaign_id}: {e}", campaign_id=campaign_id)
        return [to_linked_policy(link) for link in links]

    def list_campaign_ids(self, *, user_id: Optional[int] = None, statuses: Optional[Sequence[CampaignStatus]] = None) -> List[int]:
        try:
            query = self.session.query(Campaign.id).filter(Campaign.is_active == True)  # noqa: E712
            if user_id is not None:
                query = query.filter(Campaign.user_id == user_id)
            if statuses:
                query = query.filter(Campaign.status.in_(list(statuses)))
            return [row[0] for row in query.order_by(Campaign.id).all()]
        except SQLAlchemyError as e:
            logger.error("Campaign listing failed", user_id=user_id, error=str(e))
            raise RepositoryReadFailure(f"Failed to list campaigns: {e}")

    def update_progress(self, campaign_id: int, update: ProgressUpdate) -> None:
        try:
            row = self._load(campaign_id)
            row.current_value = update.current_value
            row.progress_percentage = update.progress_percentage
            row.status = update.status
            row.achieved_at = update.achieved_at
            row.achieved_value = update.achieved_value
            row.last_updated = update.last_updated
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("Campaign progress write failed", campaign_id=campaign_id, error=str(e))
            raise RepositoryWriteFailure(f"Failed to persist progress for campaign {campaign_id}: {e}", campaign_id=campaign_id)


__all__ = [
    "CampaignRepository",
    "SqlAlchemyCampaignRepository",
    "to_campaign_record",
    "to_linked_policy",
]
