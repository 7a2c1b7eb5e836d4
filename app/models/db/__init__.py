from .users import User
from .campaigns import Campaign
from .policies import Policy
from .policy_links import PolicyCampaignLink
from .recalculation_runs import RecalculationRun
from .enums import (
    UserRole,
    CampaignType,
    TargetType,
    AcceptanceStatus,
    CampaignStatus,
    PolicyType,
    ContractType,
    PolicyStatus,
    RecalculationTrigger,
)

__all__ = [
    "User",
    "Campaign",
    "Policy",
    "PolicyCampaignLink",
    "RecalculationRun",
    "UserRole",
    "CampaignType",
    "TargetType",
    "AcceptanceStatus",
    "CampaignStatus",
    "PolicyType",
    "ContractType",
    "PolicyStatus",
    "RecalculationTrigger",
]
