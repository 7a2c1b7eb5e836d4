from __future__ import annotations
"""SQLAlchemy model attributing a policy to a campaign for progress credit."""
from typing import TYPE_CHECKING
from datetime import datetime
from sqlalchemy import Integer, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .campaigns import Campaign
    from .policies import Policy
from app.database import Base
from app.utils.time import utc_now

class PolicyCampaignLink(Base):
    __tablename__ = "policy_campaign_links"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    policy_id: Mapped[int] = mapped_column(Integer, ForeignKey("policies.id"), nullable=False, index=True)
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Only links made at or after Campaign.accepted_at count toward progress
    linked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    linked_automatically: Mapped[bool] = mapped_column(Boolean, default=True)

    campaign: Mapped["Campaign"] = relationship("Campaign", back_populates="policy_links")
    policy: Mapped["Policy"] = relationship("Policy", back_populates="campaign_links")

    __table_args__ = (
        UniqueConstraint("policy_id", "campaign_id", name="unique_policy_per_campaign"),
    )
