from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from pharmaflow.db.base import Base


class Alert(Base):
    """
    Materialized classifier output for notification dispatchers. Rows can be
    regenerated from ledger state at any time.
    """
    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # out_of_stock/low_stock/expired/expiry_critical/expiry_warning/expiry_info
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    medicine_id: Mapped[str] = mapped_column(String(36), ForeignKey("medicines.id"), index=True)
    batch_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("batches.id"), nullable=True, index=True
    )
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_alerts_resolved_created_at", "is_resolved", "created_at"),
        Index("ix_alerts_type_medicine_batch", "type", "medicine_id", "batch_id"),
    )
