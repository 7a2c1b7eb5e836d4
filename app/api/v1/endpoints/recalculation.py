"""
Admin recalculation endpoints: batch runs, bulk status correction, run history
and the periodic sweep status.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
import time
from app.api.deps import require_admin, get_recalculation_service
from app.models.db import User
from app.models.db.enums import RecalculationTrigger
from app.models.schemas.base import ResponseBase
from app.models.schemas.progress import RecalculationRunRead
from app.services.errors import ProgressError
from app.services.recalculation import RecalculationService
from app.utils.observability import request_id_from
from app.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "/run",
    response_model=ResponseBase,
    summary="Recalculate campaigns",
    description="Recalculate every active or completed campaign, optionally for one broker"
)
async def run_recalculation(
    request: Request,
    user_id: Optional[int] = Query(None, description="Limit to one broker's campaigns"),
    admin: User = Depends(require_admin),
    service: RecalculationService = Depends(get_recalculation_service)
) -> ResponseBase:
    start_time = time.time()
    request_id = request_id_from(request)
    
    logger.info("Manual batch recalculation requested", scope_user_id=user_id, admin_id=admin.id, request_id=request_id)
    try:
        result = service.recalculate_all(user_id, RecalculationTrigger.MANUAL)
    except ProgressError as e:
        logger.error("Batch recalculation failed", error=e.message, request_id=request_id)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    
    log_performance(
        operation="run_recalculation_endpoint",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"total": result.total}
    )
    return ResponseBase(
        success=not result.errors,
        message=f"Recalculated {result.succeeded}/{result.total} campaign(s)",
        data=result.to_dict()
    )

@router.post(
    "/correct",
    response_model=ResponseBase,
    summary="Bulk status correction",
    description="Re-evaluate campaigns and repair statuses that no longer match their criteria"
)
async def correct_statuses(
    request: Request,
    user_id: Optional[int] = Query(None, description="Limit to one broker's campaigns"),
    admin: User = Depends(require_admin),
    service: RecalculationService = Depends(get_recalculation_service)
) -> ResponseBase:
    request_id = request_id_from(request)
    logger.info("Bulk status correction requested", scope_user_id=user_id, admin_id=admin.id, request_id=request_id)
    try:
        summary = service.correct_all(user_id, request_id=request_id)
    except ProgressError as e:
        logger.error("Bulk status correction failed", error=e.message, request_id=request_id)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    return ResponseBase(
        success=not summary.errors,
        message=f"Corrected {summary.corrected_count} campaign(s)",
        data=summary.to_dict()
    )

@router.get(
    "/runs",
    response_model=List[RecalculationRunRead],
    summary="Recent recalculation runs"
)
async def list_runs(
    limit: int = Query(20, ge=1, le=200),
    admin: User = Depends(require_admin),
    service: RecalculationService = Depends(get_recalculation_service)
) -> List[RecalculationRunRead]:
    return [RecalculationRunRead.model_validate(run) for run in service.recent_runs(limit)]

@router.get(
    "/sweep",
    response_model=ResponseBase,
    summary="Periodic sweep status"
)
async def sweep_status(
    request: Request,
    admin: User = Depends(require_admin)
) -> ResponseBase:
    sweep = getattr(request.app.state, "recalculation_sweep", None)
    worker = getattr(request.app.state, "recalculation_worker", None)
    queue = getattr(request.app.state, "recalculation_queue", None)
    return ResponseBase(
        success=True,
        message="Sweep running" if sweep is not None and sweep.is_running() else "Sweep not running",
        data={
            "sweep": sweep.status() if sweep is not None else None,
            "worker": worker.snapshot() if worker is not None else None,
            "queue": queue.snapshot() if queue is not None else None,
        }
    )
