from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel


AlertKindIn = Literal["stock", "expiry"]
AlertSeverityIn = Literal["out-of-stock", "expired", "critical", "warning", "info"]


class AlertOut(BaseModel):
    kind: AlertKindIn
    type: str
    severity: str
    title: str
    message: str
    suggested_action: str
    medicine_id: str
    medicine_name: str
    sku: str
    batch_id: Optional[str] = None
    batch_number: Optional[str] = None
    current_stock: Optional[int] = None
    reorder_level: Optional[int] = None
    quantity: Optional[int] = None
    expiry_date: Optional[date] = None
    days_until_expiry: Optional[int] = None
    value_at_risk: Optional[float] = None


class AlertSummaryOut(BaseModel):
    total: int
    by_severity: dict[str, int]


class AlertListOut(BaseModel):
    date: date
    summary: AlertSummaryOut
    items: list[AlertOut]


class MaterializeOut(BaseModel):
    created: int
    updated: int
    unchanged: int
    resolved: int


class DigestOut(BaseModel):
    date: date
    subject: str
    has_alerts: bool
    low_stock: list[AlertOut]
    expiring: list[AlertOut]
