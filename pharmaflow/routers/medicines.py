import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pharmaflow.core.api_docs import error_responses
from pharmaflow.core.clock import reporting_today
from pharmaflow.core.config import settings
from pharmaflow.core.deps import get_db
from pharmaflow.core.id_utils import generate_sku
from pharmaflow.core.money import money_float
from pharmaflow.models.catalog import Category, Medicine, Supplier
from pharmaflow.schemas.catalog import (
    MedicineBatchOut,
    MedicineCreate,
    MedicineDetailOut,
    MedicineListOut,
    MedicineOut,
    MedicineStockOut,
    MedicineUpdate,
)
from pharmaflow.schemas.common import PaginationMeta
from pharmaflow.services.alert_service import batch_expiry_severity, days_until_expiry, stock_severity
from pharmaflow.services.ledger_service import list_batches_fefo, stock_by_medicine, total_stock

router = APIRouter(prefix="/medicines", tags=["medicines"])


def _get_medicine(db: Session, medicine_id: str) -> Medicine:
    medicine = db.get(Medicine, medicine_id)
    if not medicine:
        raise HTTPException(status_code=404, detail="Medicine not found")
    return medicine


def _require_category(db: Session, category_id: str) -> None:
    if db.get(Category, category_id) is None:
        raise HTTPException(status_code=404, detail="Category not found")


def _require_supplier(db: Session, supplier_id: str | None) -> None:
    if supplier_id and db.get(Supplier, supplier_id) is None:
        raise HTTPException(status_code=404, detail="Supplier not found")


def _medicine_fields(m: Medicine) -> dict:
    return MedicineOut(
        id=m.id,
        sku=m.sku,
        name=m.name,
        generic_name=m.generic_name,
        category_id=m.category_id,
        supplier_id=m.supplier_id,
        dosage_form=m.dosage_form,
        strength=m.strength,
        manufacturer=m.manufacturer,
        barcode=m.barcode,
        hsn_code=m.hsn_code,
        reorder_level=m.reorder_level,
        max_stock_level=m.max_stock_level,
        requires_prescription=m.requires_prescription,
        notes=m.notes,
        is_active=m.is_active,
        created_at=m.created_at,
    ).model_dump()


def _medicine_stock_out(m: Medicine, current_stock: int) -> MedicineStockOut:
    return MedicineStockOut(
        **_medicine_fields(m),
        current_stock=current_stock,
        stock_severity=stock_severity(current_stock, m.reorder_level),
    )


@router.post(
    "",
    response_model=MedicineStockOut,
    status_code=201,
    summary="Create medicine",
    responses=error_responses(404, 409, 422, 500),
)
def create_medicine(payload: MedicineCreate, db: Session = Depends(get_db)):
    _require_category(db, payload.category_id)
    _require_supplier(db, payload.supplier_id)

    sku = (payload.sku or "").strip() or generate_sku()
    if db.execute(select(Medicine.id).where(Medicine.sku == sku)).scalar_one_or_none():
        raise HTTPException(status_code=409, detail=f"SKU '{sku}' already exists")

    medicine = Medicine(
        id=str(uuid.uuid4()),
        sku=sku,
        name=payload.name.strip(),
        generic_name=payload.generic_name,
        category_id=payload.category_id,
        supplier_id=payload.supplier_id,
        dosage_form=payload.dosage_form,
        strength=payload.strength,
        manufacturer=payload.manufacturer,
        barcode=payload.barcode,
        hsn_code=payload.hsn_code,
        reorder_level=(
            payload.reorder_level if payload.reorder_level is not None else settings.default_reorder_level
        ),
        max_stock_level=(
            payload.max_stock_level
            if payload.max_stock_level is not None
            else settings.default_max_stock_level
        ),
        requires_prescription=payload.requires_prescription,
        notes=payload.notes,
        is_active=True,
    )
    db.add(medicine)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=f"SKU '{sku}' already exists")
    db.refresh(medicine)
    return _medicine_stock_out(medicine, 0)


@router.get(
    "",
    response_model=MedicineListOut,
    summary="List medicines with current stock",
    responses=error_responses(422, 500),
)
def list_medicines(
    q: str | None = Query(default=None, description="Search name, generic name, SKU or barcode"),
    category_id: str | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    count_stmt = select(func.count(Medicine.id))
    stmt = select(Medicine)
    filters = []
    if not include_inactive:
        filters.append(Medicine.is_active.is_(True))
    if category_id:
        filters.append(Medicine.category_id == category_id)
    if q and q.strip():
        pattern = f"%{q.strip().lower()}%"
        filters.append(
            or_(
                func.lower(Medicine.name).like(pattern),
                func.lower(Medicine.generic_name).like(pattern),
                func.lower(Medicine.sku).like(pattern),
                Medicine.barcode == q.strip(),
            )
        )
    if filters:
        count_stmt = count_stmt.where(*filters)
        stmt = stmt.where(*filters)

    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        stmt.order_by(Medicine.name.asc(), Medicine.id.asc()).offset(offset).limit(limit)
    ).scalars().all()
    stock = stock_by_medicine(db, [m.id for m in rows])
    items = [_medicine_stock_out(m, stock.get(m.id, 0)) for m in rows]
    count = len(items)
    return MedicineListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.get(
    "/{medicine_id}",
    response_model=MedicineDetailOut,
    summary="Get medicine with batches in FEFO order",
    responses=error_responses(404, 500),
)
def get_medicine(
    medicine_id: str,
    include_disposed: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    medicine = _get_medicine(db, medicine_id)
    today = reporting_today()
    batches = [
        MedicineBatchOut(
            id=b.id,
            batch_number=b.batch_number,
            quantity=b.quantity,
            expiry_date=b.expiry_date,
            days_until_expiry=days_until_expiry(b.expiry_date, today),
            expiry_severity=(
                batch_expiry_severity(b.quantity, b.expiry_date, today) if b.status == "active" else None
            ),
            selling_price=money_float(b.selling_price),
            status=b.status,
        )
        for b in list_batches_fefo(db, medicine.id, include_inactive=include_disposed)
    ]
    current = total_stock(db, medicine.id)
    return MedicineDetailOut(
        **_medicine_stock_out(medicine, current).model_dump(),
        batches=batches,
    )


@router.patch(
    "/{medicine_id}",
    response_model=MedicineStockOut,
    summary="Update medicine",
    responses=error_responses(400, 404, 422, 500),
)
def update_medicine(medicine_id: str, payload: MedicineUpdate, db: Session = Depends(get_db)):
    medicine = _get_medicine(db, medicine_id)
    changes = payload.model_dump(exclude_unset=True)
    if "category_id" in changes:
        if changes["category_id"] is None:
            raise HTTPException(status_code=400, detail="category_id cannot be cleared")
        _require_category(db, changes["category_id"])
    if changes.get("supplier_id"):
        _require_supplier(db, changes["supplier_id"])
    for field in ("name", "dosage_form", "reorder_level", "max_stock_level", "requires_prescription", "is_active"):
        if field in changes and changes[field] is None:
            raise HTTPException(status_code=400, detail=f"{field} cannot be null")
    if "name" in changes:
        changes["name"] = changes["name"].strip()

    for field, value in changes.items():
        setattr(medicine, field, value)
    db.commit()
    db.refresh(medicine)
    return _medicine_stock_out(medicine, total_stock(db, medicine.id))


@router.delete(
    "/{medicine_id}",
    status_code=204,
    summary="Deactivate medicine",
    description="Soft delete. Batches and sales history stay intact.",
    responses=error_responses(404, 500),
)
def delete_medicine(medicine_id: str, db: Session = Depends(get_db)):
    medicine = _get_medicine(db, medicine_id)
    medicine.is_active = False
    db.commit()
