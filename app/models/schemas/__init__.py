from .base import ResponseBase
from .users import UserCreate, UserRead
from .campaigns import CriterionSchema, CampaignCreate, CampaignRead
from .policies import PolicyCreate, PolicyRead, PolicyRegistrationRead
from .progress import CriterionProgressRead, CampaignProgressRead, RecalculationRunRead

__all__ = [
    # Base
    "ResponseBase",

    # Users
    "UserCreate",
    "UserRead",

    # Campaigns
    "CriterionSchema",
    "CampaignCreate",
    "CampaignRead",

    # Policies
    "PolicyCreate",
    "PolicyRead",
    "PolicyRegistrationRead",

    # Progress / recalculation
    "CriterionProgressRead",
    "CampaignProgressRead",
    "RecalculationRunRead",
]
