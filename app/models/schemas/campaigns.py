"""
Pydantic schemas for campaign management.
"""
from datetime import date, datetime
from typing import Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from ..db.enums import (
    AcceptanceStatus,
    CampaignStatus,
    CampaignType,
    ContractType,
    PolicyType,
    TargetType,
)

class CriterionSchema(BaseModel):
    """One campaign criterion. Legacy labels (e.g. 'Seguro Auto', 'ambos') are accepted."""
    target_type: TargetType
    target_value: float = Field(gt=0)
    policy_type: Optional[PolicyType] = None
    contract_type: Optional[ContractType] = None
    min_value_per_policy: Optional[float] = Field(None, ge=0)
    description: Optional[str] = Field(None, max_length=300)

    @field_validator("target_type", mode="before")
    @classmethod
    def parse_target_type(cls, v):
        return TargetType.parse(v)

    @field_validator("policy_type", mode="before")
    @classmethod
    def parse_policy_type(cls, v):
        return PolicyType.parse_filter(v)

    @field_validator("contract_type", mode="before")
    @classmethod
    def parse_contract_type(cls, v):
        return ContractType.parse_filter(v)

class CampaignCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    description: Optional[str] = None
    user_id: int = Field(gt=0, description="Broker the campaign is assigned to")
    type: CampaignType = CampaignType.QUANTITY
    target: float = Field(gt=0)
    criteria: List[CriterionSchema] = Field(default_factory=list)
    start_date: date
    end_date: date

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, v):
        return CampaignType.parse(v)

    @model_validator(mode="after")
    def check_window(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    def criteria_payload(self) -> List[dict]:
        return [c.model_dump(mode="json", exclude_none=True) for c in self.criteria]

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "title": "Auto + Residencial Q3",
            "user_id": 2,
            "type": "quantity",
            "target": 3,
            "criteria": [
                {"policy_type": "auto", "target_type": "quantity", "target_value": 2},
                {"policy_type": "residential", "target_type": "quantity", "target_value": 1}
            ],
            "start_date": "2025-07-01",
            "end_date": "2025-09-30"
        }
    })

class CampaignRead(BaseModel):
    id: int
    title: str
    description: Optional[str]
    user_id: int
    created_by: Optional[int]
    type: CampaignType
    target: float
    criteria: Optional[Any]
    start_date: date
    end_date: date
    acceptance_status: AcceptanceStatus
    accepted_at: Optional[datetime]
    status: CampaignStatus
    is_active: bool
    current_value: float
    progress_percentage: float
    achieved_at: Optional[datetime]
    achieved_value: Optional[float]
    last_updated: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
