from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.agritrace.models import Base


class Activity(Base):
    """
    One ledger row. Append-only: the service layer never updates or deletes.
    """

    __tablename__ = "activities"
    __table_args__ = (
        Index("idx_activities_trace_ts", "trace_id", "timestamp"),
        Index("idx_activities_actor", "actor_id"),
        Index("idx_activities_type", "activity_type"),
        Index("idx_activities_submission", "submission_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    trace_id: Mapped[str] = mapped_column(ForeignKey("batches.trace_id", ondelete="RESTRICT"), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(32), nullable=False)  # broker, mnc, retailer
    actor_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    extra_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Rows written by one composite submission share this id
    submission_id: Mapped[str] = mapped_column(String(32), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
