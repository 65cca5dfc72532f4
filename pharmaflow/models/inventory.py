from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from pharmaflow.db.base import Base


class StockMovement(Base):
    """
    One row per batch quantity change. Positive = stock in. Negative = stock out
    (sale/disposal). Audit trail only; `batches.quantity` is the source of truth.
    """
    __tablename__ = "stock_movements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    medicine_id: Mapped[str] = mapped_column(String(36), ForeignKey("medicines.id"), index=True)
    batch_id: Mapped[str] = mapped_column(String(36), ForeignKey("batches.id"), index=True)

    qty_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)  # "receipt", "import", "sale", "disposal"
    reference_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)  # e.g., sale_id
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_stock_movements_batch_created_at", "batch_id", "created_at"),
        Index("ix_stock_movements_medicine_created_at", "medicine_id", "created_at"),
    )
