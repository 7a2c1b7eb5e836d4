"""Error hierarchy for progress calculation and recalculation."""
from __future__ import annotations

from typing import Any, Dict, Optional


class ProgressError(Exception):
    """Base class for failures surfaced by the progress engine."""

    def __init__(self, message: str, *, campaign_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.campaign_id = campaign_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "error_type": type(self).__name__,
            "message": self.message,
        }


class CampaignNotFound(ProgressError):
    def __init__(self, campaign_id: int) -> None:
        super().__init__(f"Campaign {campaign_id} not found", campaign_id=campaign_id)


class RepositoryReadFailure(ProgressError):
    """Campaign or link data could not be loaded. Persisted state is left untouched."""


class RepositoryWriteFailure(ProgressError):
    """Computed progress could not be persisted."""


class InvalidCriterionConfiguration(ProgressError):
    """A stored criterion is missing fields or carries unknown values."""


__all__ = [
    "ProgressError",
    "CampaignNotFound",
    "RepositoryReadFailure",
    "RepositoryWriteFailure",
    "InvalidCriterionConfiguration",
]
