from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pharmaflow.schemas.common import PaginationMeta


BatchStatus = Literal["active", "disposed"]


class ReceiveIn(BaseModel):
    medicine_id: str
    batch_number: str = Field(min_length=1, max_length=100)
    quantity: int = Field(gt=0)
    expiry_date: date
    manufacturing_date: date
    cost_price: Decimal = Field(ge=0)
    selling_price: Decimal = Field(ge=0)
    supplier_id: str | None = None
    location: str | None = Field(default=None, max_length=100)
    notes: str | None = Field(default=None, max_length=500)

    @field_validator("batch_number", mode="before")
    @classmethod
    def strip_batch_number(cls, value):
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def validate_dates(self) -> "ReceiveIn":
        if self.manufacturing_date >= self.expiry_date:
            raise ValueError("manufacturing_date must be before expiry_date")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "medicine_id": "medicine-id-here",
                "batch_number": "BT-2026-014",
                "quantity": 120,
                "expiry_date": "2027-09-30",
                "manufacturing_date": "2025-10-01",
                "cost_price": 1.8,
                "selling_price": 2.5,
                "location": "Shelf A1",
            }
        }
    )


class ReceiveOut(BaseModel):
    batch_id: str
    created: bool
    quantity: int


class ConsumeIn(BaseModel):
    quantity: int = Field(gt=0)
    note: str | None = Field(default=None, max_length=255)


class ConsumeFefoIn(BaseModel):
    medicine_id: str
    quantity: int = Field(gt=0)
    note: str | None = Field(default=None, max_length=255)

    model_config = ConfigDict(
        json_schema_extra={"example": {"medicine_id": "medicine-id-here", "quantity": 30}}
    )


class AllocationOut(BaseModel):
    batch_id: str
    batch_number: str
    quantity: int
    remaining: int


class ConsumeOut(BaseModel):
    medicine_id: str
    allocations: list[AllocationOut]
    total_stock: int


class DisposeIn(BaseModel):
    note: str | None = Field(default=None, max_length=255)


class BatchOut(BaseModel):
    id: str
    medicine_id: str
    batch_number: str
    quantity: int
    initial_quantity: int
    manufacturing_date: date
    expiry_date: date
    cost_price: float
    selling_price: float
    supplier_id: str | None = None
    received_date: date
    location: str | None = None
    status: BatchStatus
    disposed_at: datetime | None = None
    notes: str | None = None
    created_at: datetime


class BatchListOut(BaseModel):
    items: list[BatchOut]
    pagination: PaginationMeta


class StockLevelOut(BaseModel):
    medicine_id: str
    stock: int


class StockMovementOut(BaseModel):
    id: str
    medicine_id: str
    batch_id: str
    qty_delta: int
    reason: str
    reference_id: str | None = None
    note: str | None = None
    created_at: datetime


class StockMovementListOut(BaseModel):
    items: list[StockMovementOut]
    pagination: PaginationMeta
