from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from pharmaflow.db.base import Base

BATCH_STATUS_ACTIVE = "active"
BATCH_STATUS_DISPOSED = "disposed"


class Batch(Base):
    """
    One received lot of a medicine. Quantity only goes down through sales and
    disposal and only goes up through receipt/import.
    """
    __tablename__ = "batches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    medicine_id: Mapped[str] = mapped_column(String(36), ForeignKey("medicines.id"), index=True)
    batch_number: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    initial_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    manufacturing_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)

    cost_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    selling_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    supplier_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("suppliers.id"), nullable=True, index=True
    )
    received_date: Mapped[date] = mapped_column(Date, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BATCH_STATUS_ACTIVE, server_default=BATCH_STATUS_ACTIVE
    )
    disposed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Insertion order; FEFO tie-breaker.
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("medicine_id", "batch_number", name="uq_batches_medicine_batch_number"),
        CheckConstraint("quantity >= 0", name="ck_batches_quantity_non_negative"),
        CheckConstraint("status IN ('active', 'disposed')", name="ck_batches_status"),
        Index("ix_batches_medicine_status_expiry", "medicine_id", "status", "expiry_date"),
        Index("ix_batches_status_expiry", "status", "expiry_date"),
    )
