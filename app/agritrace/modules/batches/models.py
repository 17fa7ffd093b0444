from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.agritrace.models import Base

if TYPE_CHECKING:
    from app.agritrace.modules.media.models import Media


class Batch(Base):
    __tablename__ = "batches"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_batches_quantity_positive"),
        Index("idx_batches_producer", "producer_id"),
        Index("idx_batches_production_timestamp", "production_timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Identifiers (immutable once written)
    trace_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "TR-20261018-7KQ9X2MDA4"
    batch_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "BT-20261018-N3F8WQ0ZKT"

    # Product
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    quantity_unit: Mapped[str] = mapped_column(String(16), nullable=False)  # kg, tonnes, quintals, bags

    # Provenance
    producer_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    production_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    location_state: Mapped[str] = mapped_column(String(128), nullable=False)
    location_district: Mapped[str] = mapped_column(String(128), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # Read-only view; the ledger never cascades deletes
    media: Mapped[list["Media"]] = relationship(
        "Media",
        order_by="Media.id",
        lazy="selectin",
        viewonly=True,
    )
