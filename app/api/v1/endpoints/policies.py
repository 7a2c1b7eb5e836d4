"""
Policy registration endpoints. Registration links the policy to matching
campaigns and dispatches their recalculation; the policy write never depends
on that recalculation succeeding.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional
import time
from app.api.deps import (
    get_db,
    get_current_user,
    require_broker,
    get_recalculation_service,
    get_dispatch_queue,
)
from app.jobs.queue import PriorityDelayQueue
from app.models.db import Policy, PolicyCampaignLink, User
from app.models.db.enums import RecalculationTrigger, UserRole
from app.models.schemas.base import ResponseBase
from app.models.schemas.policies import PolicyCreate, PolicyRead, PolicyRegistrationRead
from app.services.dispatch import dispatch_recalculation
from app.services.policies import deactivate_link, register_policy
from app.services.recalculation import RecalculationService
from app.utils.observability import request_id_from
from app.utils import get_logger, log_business_event, log_performance

router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "/",
    response_model=PolicyRegistrationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register policy",
    description="Register a policy for the calling broker and link it to matching accepted campaigns"
)
async def create_policy(
    policy_data: PolicyCreate,
    request: Request,
    broker: User = Depends(require_broker),
    db: Session = Depends(get_db),
    service: RecalculationService = Depends(get_recalculation_service),
    queue: Optional[PriorityDelayQueue] = Depends(get_dispatch_queue)
) -> PolicyRegistrationRead:
    start_time = time.time()
    request_id = request_id_from(request)
    
    logger.info(
        "Policy registration started",
        policy_number=policy_data.policy_number,
        policy_type=policy_data.policy_type.value,
        user_id=broker.id,
        request_id=request_id
    )
    
    existing = db.query(Policy).filter(Policy.policy_number == policy_data.policy_number).first()
    if existing:
        logger.warning(
            "Policy registration failed: duplicate policy number",
            policy_number=policy_data.policy_number,
            existing_policy_id=existing.id,
            request_id=request_id
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Policy '{policy_data.policy_number}' already registered"
        )
    
    try:
        result = register_policy(
            db,
            broker.id,
            policy_number=policy_data.policy_number,
            policy_type=policy_data.policy_type,
            contract_type=policy_data.contract_type,
            premium_value=policy_data.premium_value,
        )
    except IntegrityError as e:
        db.rollback()
        logger.error("Policy registration failed: integrity error", error=str(e), request_id=request_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Policy '{policy_data.policy_number}' already registered"
        )
    
    # Committed: from here on failures are reported, not raised
    dispatch = dispatch_recalculation(
        service,
        result.linked_campaign_ids,
        RecalculationTrigger.POLICY_CREATED,
        queue=queue,
        correlation_id=request_id,
    )
    
    log_business_event(
        event_type="policy_registered",
        details={
            "policy_id": result.policy.id,
            "policy_number": result.policy.policy_number,
            "policy_type": result.policy.policy_type.value,
            "premium_value": result.policy.premium_value,
            "linked_campaign_ids": result.linked_campaign_ids,
            "dispatch_mode": dispatch.mode,
            "dispatch_failures": len(dispatch.failed),
        },
        user_id=broker.id,
        request_id=request_id
    )
    log_performance(
        operation="register_policy",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"policy_id": result.policy.id, "linked_campaigns": len(result.linked_campaign_ids)}
    )
    
    return PolicyRegistrationRead(
        policy=PolicyRead.model_validate(result.policy),
        linked_campaign_ids=result.linked_campaign_ids,
        recalculation=dispatch.to_dict(),
    )

@router.delete(
    "/links/{link_id}",
    response_model=ResponseBase,
    summary="Remove policy from campaign",
    description="Soft delete a policy-campaign link and recalculate that campaign"
)
async def remove_policy_link(
    link_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: RecalculationService = Depends(get_recalculation_service),
    queue: Optional[PriorityDelayQueue] = Depends(get_dispatch_queue)
) -> ResponseBase:
    request_id = request_id_from(request)
    
    link = db.query(PolicyCampaignLink).filter(PolicyCampaignLink.id == link_id).first()
    if not link:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Policy link not found")
    if current_user.role != UserRole.ADMIN and link.user_id != current_user.id:
        logger.warning(
            "Link removal denied",
            link_id=link_id,
            user_id=current_user.id,
            request_id=request_id
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    
    changed = deactivate_link(db, link)
    dispatch = None
    if changed:
        dispatch = dispatch_recalculation(
            service,
            [link.campaign_id],
            RecalculationTrigger.LINK_REMOVED,
            queue=queue,
            correlation_id=request_id,
        )
        log_business_event(
            event_type="policy_link_removed",
            details={"link_id": link.id, "campaign_id": link.campaign_id, "policy_id": link.policy_id},
            user_id=current_user.id,
            request_id=request_id
        )
    
    return ResponseBase(
        success=True,
        message="Policy link removed" if changed else "Policy link already inactive",
        data={
            "link_id": link.id,
            "campaign_id": link.campaign_id,
            "recalculation": dispatch.to_dict() if dispatch else None,
        }
    )
