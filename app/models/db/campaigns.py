from __future__ import annotations
"""SQLAlchemy model for broker incentive campaigns.

``criteria`` is stored as raw JSON (list of criterion dicts, legacy rows may hold
a dict keyed by position) and parsed into typed criteria by the repository.
``current_value`` / ``progress_percentage`` are cached display values, always
recomputable from the active policy links.
"""
from typing import TYPE_CHECKING, Any
from datetime import date, datetime
from sqlalchemy import Integer, String, Text, Date, DateTime, Numeric, Enum, ForeignKey, Boolean, JSON
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .users import User
    from .policy_links import PolicyCampaignLink
from sqlalchemy.sql import func
from app.database import Base
from .enums import CampaignType, AcceptanceStatus, CampaignStatus

class Campaign(Base):
    __tablename__ = "campaigns"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    type: Mapped[CampaignType] = mapped_column(Enum(CampaignType), default=CampaignType.QUANTITY)
    target: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False)
    criteria: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    acceptance_status: Mapped[AcceptanceStatus] = mapped_column(
        Enum(AcceptanceStatus), default=AcceptanceStatus.PENDING, index=True
    )
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[CampaignStatus] = mapped_column(Enum(CampaignStatus), default=CampaignStatus.ACTIVE, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    current_value: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), default=0)
    progress_percentage: Mapped[float] = mapped_column(Numeric(7, 2, asdecimal=False), default=0)
    achieved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    achieved_value: Mapped[float | None] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=True)
    last_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    broker: Mapped["User"] = relationship("User", back_populates="campaigns", foreign_keys=[user_id])
    policy_links: Mapped[list["PolicyCampaignLink"]] = relationship("PolicyCampaignLink", back_populates="campaign")
