from datetime import datetime, date
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pharmaflow.schemas.common import PaginationMeta


PaymentMethod = Literal["cash", "card", "upi", "credit"]


class SaleItemIn(BaseModel):
    medicine_id: Optional[str] = None
    batch_id: Optional[str] = None
    quantity: int = Field(gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def require_target(self) -> "SaleItemIn":
        if not self.medicine_id and not self.batch_id:
            raise ValueError("Either medicine_id or batch_id is required")
        return self


class SaleCreate(BaseModel):
    payment_method: PaymentMethod
    customer_name: Optional[str] = Field(default=None, max_length=255)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    note: Optional[str] = Field(default=None, max_length=255)
    items: List[SaleItemIn] = Field(min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "payment_method": "cash",
                "customer_name": "Walk-in",
                "items": [
                    {"medicine_id": "medicine-id-here", "quantity": 2},
                    {"batch_id": "batch-id-here", "quantity": 1, "unit_price": 4.5},
                ],
            }
        }
    )


class SaleItemOut(BaseModel):
    id: str
    medicine_id: str
    batch_id: str
    quantity: int
    unit_price: float
    line_total: float


class SaleCreateOut(BaseModel):
    id: str
    invoice_number: str
    subtotal: float
    discount: float
    total: float
    items: list[SaleItemOut]


class SaleOut(BaseModel):
    id: str
    invoice_number: str
    customer_name: Optional[str] = None
    payment_method: str
    subtotal: float
    discount: float
    total: float
    status: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime


class SaleListOut(BaseModel):
    pagination: PaginationMeta
    start_date: date | None = None
    end_date: date | None = None
    items: list[SaleOut]
