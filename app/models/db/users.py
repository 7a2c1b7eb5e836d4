from __future__ import annotations
"""SQLAlchemy model for users (brokers and admins)."""
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Boolean, Enum
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .campaigns import Campaign
    from .policies import Policy
from sqlalchemy.sql import func
from app.database import Base
from .enums import UserRole

class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, index=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    api_key: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), default=UserRole.BROKER, index=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    # Campaigns assigned to this broker (not the ones an admin created)
    campaigns: Mapped[list["Campaign"]] = relationship(
        "Campaign", back_populates="broker", foreign_keys="Campaign.user_id"
    )
    policies: Mapped[list["Policy"]] = relationship("Policy", back_populates="user")
