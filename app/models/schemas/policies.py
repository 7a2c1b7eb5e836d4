"""
Pydantic schemas for policy registration.
"""
from datetime import datetime
from typing import Any, Dict, List
from pydantic import BaseModel, Field, ConfigDict, field_validator
from ..db.enums import ContractType, PolicyStatus, PolicyType

class PolicyCreate(BaseModel):
    policy_number: str = Field(min_length=1, max_length=100)
    policy_type: PolicyType
    contract_type: ContractType
    premium_value: float = Field(gt=0)

    @field_validator("policy_type", mode="before")
    @classmethod
    def parse_policy_type(cls, v):
        return PolicyType.parse(v)

    @field_validator("contract_type", mode="before")
    @classmethod
    def parse_contract_type(cls, v):
        return ContractType.parse(v)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "policy_number": "AUTO-000123",
            "policy_type": "auto",
            "contract_type": "new",
            "premium_value": 2500.00
        }
    })

class PolicyRead(BaseModel):
    id: int
    user_id: int
    policy_number: str
    policy_type: PolicyType
    contract_type: ContractType
    premium_value: float
    status: PolicyStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class PolicyRegistrationRead(BaseModel):
    policy: PolicyRead
    linked_campaign_ids: List[int]
    recalculation: Dict[str, Any]
