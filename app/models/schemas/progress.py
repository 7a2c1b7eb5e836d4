"""
Pydantic schemas for campaign progress and recalculation history.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict
from ..db.enums import RecalculationTrigger

class CriterionProgressRead(BaseModel):
    index: int
    target_type: Optional[str] = None
    target_value: float
    current_progress: float
    percentage: float
    is_satisfied: bool
    policy_type: Optional[str] = None
    contract_type: Optional[str] = None
    description: Optional[str] = None
    matching_policy_ids: List[int] = []
    error: Optional[str] = None

class CampaignProgressRead(BaseModel):
    campaign_id: int
    status: Optional[str] = None
    current_value: float
    progress_percentage: float
    is_completed: bool
    total_policies: Optional[int] = None
    accepted: bool
    aggregation: Optional[str] = None
    criteria: List[CriterionProgressRead] = []
    stale: bool = False
    cached: bool = False
    warning: Optional[str] = None

class RecalculationRunRead(BaseModel):
    id: int
    trigger: RecalculationTrigger
    user_id: Optional[int]
    started_at: datetime
    finished_at: Optional[datetime]
    success: bool
    total: int
    succeeded: int
    changed: int
    errors: Optional[List[Dict[str, Any]]]
    details: Optional[List[Dict[str, Any]]]

    model_config = ConfigDict(from_attributes=True)
