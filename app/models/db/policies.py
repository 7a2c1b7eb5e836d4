from __future__ import annotations
"""SQLAlchemy model for insurance policies registered by brokers."""
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Numeric, Enum, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .users import User
    from .policy_links import PolicyCampaignLink
from sqlalchemy.sql import func
from app.database import Base
from .enums import PolicyType, ContractType, PolicyStatus

class Policy(Base):
    __tablename__ = "policies"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    policy_number: Mapped[str] = mapped_column(String, unique=True, index=True)
    policy_type: Mapped[PolicyType] = mapped_column(Enum(PolicyType), nullable=False)
    contract_type: Mapped[ContractType] = mapped_column(Enum(ContractType), nullable=False)
    premium_value: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False)
    status: Mapped[PolicyStatus] = mapped_column(Enum(PolicyStatus), default=PolicyStatus.ACTIVE, index=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    user: Mapped["User"] = relationship("User", back_populates="policies")
    campaign_links: Mapped[list["PolicyCampaignLink"]] = relationship("PolicyCampaignLink", back_populates="policy")
