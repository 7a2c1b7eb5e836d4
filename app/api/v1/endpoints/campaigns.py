"""
Campaign management endpoints: creation, acceptance, progress and manual recalculation.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
import time
from app.api.deps import (
    get_db,
    get_current_user,
    require_admin,
    require_broker,
    get_campaign_if_authorized,
    get_recalculation_service,
)
from app.models.db import Campaign, User
from app.models.db.enums import AcceptanceStatus, CampaignStatus, RecalculationTrigger, UserRole
from app.models.schemas.campaigns import CampaignCreate, CampaignRead
from app.models.schemas.progress import CampaignProgressRead
from app.models.schemas.base import ResponseBase
from app.services.errors import CampaignNotFound
from app.services.recalculation import RecalculationService
from app.utils.observability import request_id_from
from app.utils import get_logger, log_business_event, log_performance
from app.utils.time import utc_now

router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "/",
    response_model=CampaignRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create new campaign",
    description="Create an incentive campaign for a broker (starts pending acceptance)"
)
async def create_campaign(
    campaign_data: CampaignCreate,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> CampaignRead:
    start_time = time.time()
    request_id = request_id_from(request)
    
    logger.info(
        "Campaign creation started",
        campaign_title=campaign_data.title,
        broker_id=campaign_data.user_id,
        criteria_count=len(campaign_data.criteria),
        request_id=request_id
    )
    
    try:
        broker = db.query(User).filter(User.id == campaign_data.user_id, User.is_active == True).first()
        if not broker or broker.role != UserRole.BROKER:
            logger.warning(
                "Campaign creation failed: broker not found",
                broker_id=campaign_data.user_id,
                request_id=request_id
            )
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Active broker with id {campaign_data.user_id} not found"
            )
        
        campaign = Campaign(
            title=campaign_data.title,
            description=campaign_data.description,
            user_id=broker.id,
            created_by=admin.id,
            type=campaign_data.type,
            target=campaign_data.target,
            criteria=campaign_data.criteria_payload(),
            start_date=campaign_data.start_date,
            end_date=campaign_data.end_date,
            acceptance_status=AcceptanceStatus.PENDING,
            status=CampaignStatus.ACTIVE,
            is_active=True,
            current_value=0,
            progress_percentage=0,
        )
        db.add(campaign)
        db.commit()
        db.refresh(campaign)
        
        log_business_event(
            event_type="campaign_created",
            details={
                "campaign_id": campaign.id,
                "campaign_title": campaign.title,
                "broker_id": campaign.user_id,
                "campaign_type": campaign.type.value,
                "target": campaign.target,
                "criteria_count": len(campaign_data.criteria),
            },
            user_id=admin.id,
            request_id=request_id
        )
        
        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="create_campaign",
            duration_ms=duration_ms,
            additional_data={"campaign_id": campaign.id}
        )
        
        return CampaignRead.model_validate(campaign)
        
    except HTTPException:
        raise
    except Exception as e:
        logger.error(
            "Campaign creation failed with unexpected error",
            campaign_title=campaign_data.title,
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during campaign creation"
        )

@router.get(
    "/",
    response_model=List[CampaignRead],
    summary="List campaigns"
)
async def list_campaigns(
    request: Request,
    status_filter: Optional[CampaignStatus] = Query(None, alias="status"),
    user_id: Optional[int] = Query(None, description="Filter by broker (admin only)"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> List[CampaignRead]:
    """Brokers see their own campaigns; admins see all, optionally filtered by broker."""
    request_id = request_id_from(request)
    
    query = db.query(Campaign).filter(Campaign.is_active == True)
    if current_user.role == UserRole.ADMIN:
        if user_id is not None:
            query = query.filter(Campaign.user_id == user_id)
    else:
        query = query.filter(Campaign.user_id == current_user.id)
    if status_filter:
        query = query.filter(Campaign.status == status_filter)
    
    campaigns = query.order_by(Campaign.id).offset(offset).limit(limit).all()
    
    logger.info(
        "Campaign list completed",
        campaigns_returned=len(campaigns),
        user_id=current_user.id,
        request_id=request_id
    )
    return [CampaignRead.model_validate(c) for c in campaigns]

@router.get(
    "/{campaign_id}",
    response_model=CampaignRead,
    summary="Get campaign"
)
async def get_campaign(campaign: Campaign = Depends(get_campaign_if_authorized)) -> CampaignRead:
    return CampaignRead.model_validate(campaign)

def _set_acceptance(
    campaign: Campaign,
    current_user: User,
    db: Session,
    new_status: AcceptanceStatus,
    request_id: str,
) -> Campaign:
    if campaign.user_id != current_user.id:
        logger.warning(
            "Acceptance change denied: not the campaign broker",
            campaign_id=campaign.id,
            user_id=current_user.id,
            request_id=request_id
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the assigned broker can answer a campaign")
    if campaign.acceptance_status != AcceptanceStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Campaign already {campaign.acceptance_status.value}"
        )
    campaign.acceptance_status = new_status
    if new_status == AcceptanceStatus.ACCEPTED:
        campaign.accepted_at = utc_now()
    db.commit()
    db.refresh(campaign)
    return campaign

@router.post(
    "/{campaign_id}/accept",
    response_model=CampaignRead,
    summary="Accept campaign",
    description="Broker accepts a pending campaign. Only policies linked from now on count."
)
async def accept_campaign(
    request: Request,
    campaign: Campaign = Depends(get_campaign_if_authorized),
    current_user: User = Depends(require_broker),
    db: Session = Depends(get_db),
    service: RecalculationService = Depends(get_recalculation_service)
) -> CampaignRead:
    request_id = request_id_from(request)
    campaign = _set_acceptance(campaign, current_user, db, AcceptanceStatus.ACCEPTED, request_id)
    service.invalidate(campaign.id)
    log_business_event(
        event_type="campaign_accepted",
        details={"campaign_id": campaign.id, "accepted_at": campaign.accepted_at},
        user_id=current_user.id,
        request_id=request_id
    )
    return CampaignRead.model_validate(campaign)

@router.post(
    "/{campaign_id}/reject",
    response_model=CampaignRead,
    summary="Reject campaign"
)
async def reject_campaign(
    request: Request,
    campaign: Campaign = Depends(get_campaign_if_authorized),
    current_user: User = Depends(require_broker),
    db: Session = Depends(get_db),
    service: RecalculationService = Depends(get_recalculation_service)
) -> CampaignRead:
    request_id = request_id_from(request)
    campaign = _set_acceptance(campaign, current_user, db, AcceptanceStatus.REJECTED, request_id)
    service.invalidate(campaign.id)
    log_business_event(
        event_type="campaign_rejected",
        details={"campaign_id": campaign.id},
        user_id=current_user.id,
        request_id=request_id
    )
    return CampaignRead.model_validate(campaign)

@router.get(
    "/{campaign_id}/progress",
    response_model=CampaignProgressRead,
    summary="Campaign progress",
    description="Progress with per-criterion detail. Falls back to persisted values (stale=true) if calculation fails."
)
async def get_campaign_progress(
    request: Request,
    campaign: Campaign = Depends(get_campaign_if_authorized),
    service: RecalculationService = Depends(get_recalculation_service)
) -> CampaignProgressRead:
    request_id = request_id_from(request)
    try:
        snapshot = service.progress_snapshot(campaign.id)
    except CampaignNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    if snapshot.get("stale"):
        logger.warning("Serving stale campaign progress", campaign_id=campaign.id, request_id=request_id)
    return CampaignProgressRead.model_validate(snapshot)

@router.post(
    "/{campaign_id}/recalculate",
    response_model=ResponseBase,
    summary="Recalculate campaign progress"
)
async def recalculate_campaign(
    request: Request,
    campaign: Campaign = Depends(get_campaign_if_authorized),
    service: RecalculationService = Depends(get_recalculation_service)
) -> ResponseBase:
    start_time = time.time()
    request_id = request_id_from(request)
    try:
        outcome = service.recalculate(campaign.id, RecalculationTrigger.MANUAL, correlation_id=request_id)
    except CampaignNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    
    log_performance(
        operation="recalculate_campaign",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"campaign_id": campaign.id, "success": outcome.success}
    )
    
    if not outcome.success:
        logger.error(
            "Manual recalculation failed",
            campaign_id=campaign.id,
            error=outcome.error,
            request_id=request_id
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Recalculation failed; persisted progress left unchanged"
        )
    
    return ResponseBase(
        success=True,
        message=f"Campaign {campaign.id} recalculated",
        data=outcome.to_dict()
    )
