from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.agritrace.models import Base


class Media(Base):
    __tablename__ = "media"
    __table_args__ = (
        Index("idx_media_trace", "trace_id"),
        Index("idx_media_type", "media_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    trace_id: Mapped[str] = mapped_column(ForeignKey("batches.trace_id", ondelete="RESTRICT"), nullable=False)
    media_type: Mapped[str] = mapped_column(String(32), nullable=False)  # product_photo, weighing_photo, ...

    # Blob location
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    original_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)

    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
