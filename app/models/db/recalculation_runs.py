from __future__ import annotations
"""SQLAlchemy model for the batch recalculation audit trail (sweeps, corrections)."""
from datetime import datetime
from sqlalchemy import Integer, DateTime, Boolean, Enum, JSON
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from .enums import RecalculationTrigger

class RecalculationRun(Base):
    __tablename__ = "recalculation_runs"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    trigger: Mapped[RecalculationTrigger] = mapped_column(Enum(RecalculationTrigger), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, default=True)
    total: Mapped[int] = mapped_column(Integer, default=0)
    succeeded: Mapped[int] = mapped_column(Integer, default=0)
    changed: Mapped[int] = mapped_column(Integer, default=0)
    errors: Mapped[list | None] = mapped_column(JSON, nullable=True)
    details: Mapped[list | None] = mapped_column(JSON, nullable=True)
