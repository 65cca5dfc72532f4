import csv
import io
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from pharmaflow.core.api_docs import error_responses
from pharmaflow.core.clock import reporting_today
from pharmaflow.core.deps import get_db
from pharmaflow.core.money import money_float
from pharmaflow.models.batch import Batch
from pharmaflow.models.catalog import Category, Medicine, Supplier
from pharmaflow.models.inventory import StockMovement
from pharmaflow.schemas.common import PaginationMeta
from pharmaflow.schemas.inventory import (
    AllocationOut,
    BatchListOut,
    BatchOut,
    ConsumeFefoIn,
    ConsumeIn,
    ConsumeOut,
    DisposeIn,
    ReceiveIn,
    ReceiveOut,
    StockLevelOut,
    StockMovementListOut,
    StockMovementOut,
)
from pharmaflow.services.alert_service import batch_expiry_severity, days_until_expiry
from pharmaflow.services.ledger_service import consume, consume_fefo, dispose, receive, total_stock

router = APIRouter(prefix="/inventory", tags=["inventory"])

EXPORT_HEADERS = [
    "Medicine Name",
    "SKU",
    "Category",
    "Supplier",
    "Batch Number",
    "Quantity",
    "Expiry Date",
    "Days Until Expiry",
    "Expiry Status",
    "Cost Price",
    "Selling Price",
    "Location",
    "Status",
]


def _get_medicine(db: Session, medicine_id: str) -> Medicine:
    medicine = db.get(Medicine, medicine_id)
    if not medicine:
        raise HTTPException(status_code=404, detail="Medicine not found")
    return medicine


def _batch_out(row: Batch) -> BatchOut:
    return BatchOut(
        id=row.id,
        medicine_id=row.medicine_id,
        batch_number=row.batch_number,
        quantity=row.quantity,
        initial_quantity=row.initial_quantity,
        manufacturing_date=row.manufacturing_date,
        expiry_date=row.expiry_date,
        cost_price=money_float(row.cost_price),
        selling_price=money_float(row.selling_price),
        supplier_id=row.supplier_id,
        received_date=row.received_date,
        location=row.location,
        status=row.status,
        disposed_at=row.disposed_at,
        notes=row.notes,
        created_at=row.created_at,
    )


@router.get(
    "/stock/{medicine_id}",
    response_model=StockLevelOut,
    summary="Get total stock for a medicine",
    responses=error_responses(404, 422, 500),
)
def get_stock(medicine_id: str, db: Session = Depends(get_db)):
    _get_medicine(db, medicine_id)
    return StockLevelOut(medicine_id=medicine_id, stock=total_stock(db, medicine_id))


@router.get(
    "/batches",
    response_model=BatchListOut,
    summary="List batches",
    description="Batches in FEFO order: earliest expiry first, then insertion order.",
    responses=error_responses(422, 500),
)
def list_batches(
    medicine_id: str | None = Query(default=None, description="Optional medicine filter"),
    status: Literal["active", "disposed", "all"] = Query(default="active", description="Batch status filter"),
    in_stock: bool = Query(default=False, description="Only batches with quantity > 0"),
    limit: int = Query(default=50, ge=1, le=200, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    filters = []
    if medicine_id:
        filters.append(Batch.medicine_id == medicine_id)
    if status != "all":
        filters.append(Batch.status == status)
    if in_stock:
        filters.append(Batch.quantity > 0)

    total = int(db.execute(select(func.count(Batch.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Batch)
        .where(*filters)
        .order_by(Batch.expiry_date.asc(), Batch.created_at.asc(), Batch.id.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_batch_out(row) for row in rows]
    count = len(items)
    return BatchListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.post(
    "/receive",
    response_model=ReceiveOut,
    summary="Receive stock",
    description="Creates the batch, or adds to it when the medicine already has this batch number.",
    responses=error_responses(400, 404, 409, 422, 500),
)
def receive_stock(payload: ReceiveIn, db: Session = Depends(get_db)):
    medicine = _get_medicine(db, payload.medicine_id)
    if not medicine.is_active:
        raise HTTPException(status_code=400, detail="Medicine is inactive")
    if payload.supplier_id and db.get(Supplier, payload.supplier_id) is None:
        raise HTTPException(status_code=404, detail="Supplier not found")

    batch, created = receive(
        db,
        medicine_id=medicine.id,
        batch_number=payload.batch_number,
        quantity=payload.quantity,
        expiry_date=payload.expiry_date,
        manufacturing_date=payload.manufacturing_date,
        cost_price=payload.cost_price,
        selling_price=payload.selling_price,
        supplier_id=payload.supplier_id or medicine.supplier_id,
        location=payload.location,
        notes=payload.notes,
    )
    db.commit()
    return ReceiveOut(batch_id=batch.id, created=created, quantity=batch.quantity)


@router.post(
    "/batches/{batch_id}/consume",
    response_model=ConsumeOut,
    summary="Consume from a specific batch",
    responses=error_responses(404, 409, 422, 500),
)
def consume_batch(batch_id: str, payload: ConsumeIn, db: Session = Depends(get_db)):
    batch = consume(db, batch_id, payload.quantity, reason="sale", note=payload.note)
    db.commit()
    return ConsumeOut(
        medicine_id=batch.medicine_id,
        allocations=[
            AllocationOut(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                quantity=payload.quantity,
                remaining=batch.quantity,
            )
        ],
        total_stock=total_stock(db, batch.medicine_id),
    )


@router.post(
    "/consume",
    response_model=ConsumeOut,
    summary="Consume by medicine using FEFO",
    description="Takes stock from the earliest-expiring batches first, spanning batches when needed.",
    responses=error_responses(404, 409, 422, 500),
)
def consume_medicine(payload: ConsumeFefoIn, db: Session = Depends(get_db)):
    _get_medicine(db, payload.medicine_id)
    consumed = consume_fefo(db, payload.medicine_id, payload.quantity, reason="sale", note=payload.note)
    db.commit()
    return ConsumeOut(
        medicine_id=payload.medicine_id,
        allocations=[
            AllocationOut(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                quantity=qty,
                remaining=batch.quantity,
            )
            for batch, qty in consumed
        ],
        total_stock=total_stock(db, payload.medicine_id),
    )


@router.post(
    "/batches/{batch_id}/dispose",
    response_model=BatchOut,
    summary="Dispose a batch",
    description="Writes off the remaining quantity. Irreversible.",
    responses=error_responses(404, 422, 500),
)
def dispose_batch(batch_id: str, payload: DisposeIn | None = None, db: Session = Depends(get_db)):
    batch = dispose(db, batch_id, note=payload.note if payload else None)
    db.commit()
    db.refresh(batch)
    return _batch_out(batch)


@router.get(
    "/movements",
    response_model=StockMovementListOut,
    summary="List stock movements",
    responses={
        200: {
            "description": "Paginated stock movement audit trail",
            "content": {
                "application/json": {
                    "example": {
                        "items": [
                            {
                                "id": "movement-id",
                                "medicine_id": "medicine-id",
                                "batch_id": "batch-id",
                                "qty_delta": -2,
                                "reason": "sale",
                                "reference_id": "sale-id",
                                "note": None,
                                "created_at": "2026-02-16T10:00:00Z",
                            }
                        ],
                        "pagination": {
                            "total": 12,
                            "limit": 50,
                            "offset": 0,
                            "count": 1,
                            "has_next": True,
                        },
                    }
                }
            },
        },
        **error_responses(422, 500),
    },
)
def list_movements(
    medicine_id: str | None = Query(default=None, description="Optional medicine filter"),
    batch_id: str | None = Query(default=None, description="Optional batch filter"),
    limit: int = Query(default=50, ge=1, le=200, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    count_stmt = select(func.count(StockMovement.id))
    stmt = select(StockMovement)
    if medicine_id:
        count_stmt = count_stmt.where(StockMovement.medicine_id == medicine_id)
        stmt = stmt.where(StockMovement.medicine_id == medicine_id)
    if batch_id:
        count_stmt = count_stmt.where(StockMovement.batch_id == batch_id)
        stmt = stmt.where(StockMovement.batch_id == batch_id)

    total = int(db.execute(count_stmt).scalar_one())
    stmt = stmt.order_by(StockMovement.created_at.desc(), StockMovement.id.asc()).offset(offset).limit(limit)
    rows = db.execute(stmt).scalars().all()
    items = [
        StockMovementOut(
            id=row.id,
            medicine_id=row.medicine_id,
            batch_id=row.batch_id,
            qty_delta=row.qty_delta,
            reason=row.reason,
            reference_id=row.reference_id,
            note=row.note,
            created_at=row.created_at,
        )
        for row in rows
    ]
    count = len(items)
    return StockMovementListOut(
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
    "/export",
    summary="Export inventory as CSV",
    description="One row per medicine batch; medicines without batches get a single empty row.",
    responses=error_responses(500),
)
def export_inventory(
    include_disposed: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    batch_join = Batch.medicine_id == Medicine.id
    if not include_disposed:
        batch_join = and_(batch_join, Batch.status == "active")
    rows = db.execute(
        select(Medicine, Category.name, Supplier.name, Batch)
        .join(Category, Category.id == Medicine.category_id)
        .outerjoin(Supplier, Supplier.id == Medicine.supplier_id)
        .outerjoin(Batch, batch_join)
        .where(Medicine.is_active.is_(True))
        .order_by(Medicine.name.asc(), Batch.expiry_date.asc(), Batch.created_at.asc())
    ).all()

    today = reporting_today()
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_HEADERS)
    for medicine, category_name, supplier_name, batch in rows:
        if batch is None:
            writer.writerow([medicine.name, medicine.sku, category_name, supplier_name or "", "", 0] + [""] * 7)
            continue
        days = days_until_expiry(batch.expiry_date, today)
        writer.writerow(
            [
                medicine.name,
                medicine.sku,
                category_name,
                supplier_name or "",
                batch.batch_number,
                batch.quantity,
                batch.expiry_date.isoformat(),
                days,
                batch_expiry_severity(batch.quantity, batch.expiry_date, today) or "ok",
                f"{money_float(batch.cost_price):.2f}",
                f"{money_float(batch.selling_price):.2f}",
                batch.location or "",
                batch.status,
            ]
        )

    filename = f"inventory-{today.isoformat()}.csv"
    return Response(
        content=buf.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
