from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pharmaflow.schemas.common import PaginationMeta


DosageForm = Literal["tablet", "capsule", "syrup", "injection", "cream", "drops", "inhaler", "other"]
StockSeverityOut = Literal["out-of-stock", "critical", "warning"]


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=255)
    color: Optional[str] = Field(default=None, max_length=20)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be blank")
        return cleaned


class CategoryOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    created_at: datetime


class SupplierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    contact_person: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)


class SupplierOut(BaseModel):
    id: str
    name: str
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool
    created_at: datetime


class MedicineCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category_id: str
    sku: Optional[str] = Field(default=None, max_length=100)
    generic_name: Optional[str] = Field(default=None, max_length=255)
    supplier_id: Optional[str] = None
    dosage_form: DosageForm = "tablet"
    strength: Optional[str] = Field(default=None, max_length=50)
    manufacturer: Optional[str] = Field(default=None, max_length=255)
    barcode: Optional[str] = Field(default=None, max_length=64)
    hsn_code: Optional[str] = Field(default=None, max_length=20)
    reorder_level: Optional[int] = Field(default=None, ge=0)
    max_stock_level: Optional[int] = Field(default=None, ge=0)
    requires_prescription: bool = False
    notes: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Amoxicillin 250mg",
                "category_id": "category-id-here",
                "sku": "AMOX-250",
                "generic_name": "Amoxicillin",
                "dosage_form": "capsule",
                "strength": "250mg",
                "reorder_level": 40,
                "requires_prescription": True,
            }
        }
    )


class MedicineUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category_id: Optional[str] = None
    supplier_id: Optional[str] = None
    generic_name: Optional[str] = Field(default=None, max_length=255)
    dosage_form: Optional[DosageForm] = None
    strength: Optional[str] = Field(default=None, max_length=50)
    manufacturer: Optional[str] = Field(default=None, max_length=255)
    barcode: Optional[str] = Field(default=None, max_length=64)
    reorder_level: Optional[int] = Field(default=None, ge=0)
    max_stock_level: Optional[int] = Field(default=None, ge=0)
    requires_prescription: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None


class MedicineOut(BaseModel):
    id: str
    sku: str
    name: str
    generic_name: Optional[str] = None
    category_id: str
    supplier_id: Optional[str] = None
    dosage_form: str
    strength: Optional[str] = None
    manufacturer: Optional[str] = None
    barcode: Optional[str] = None
    hsn_code: Optional[str] = None
    reorder_level: int
    max_stock_level: int
    requires_prescription: bool
    notes: Optional[str] = None
    is_active: bool
    created_at: datetime


class MedicineStockOut(MedicineOut):
    current_stock: int
    stock_severity: Optional[StockSeverityOut] = None


class MedicineBatchOut(BaseModel):
    id: str
    batch_number: str
    quantity: int
    expiry_date: date
    days_until_expiry: int
    expiry_severity: Optional[str] = None
    selling_price: float
    status: str


class MedicineDetailOut(MedicineStockOut):
    batches: list[MedicineBatchOut]


class MedicineListOut(BaseModel):
    pagination: PaginationMeta
    items: list[MedicineStockOut]
