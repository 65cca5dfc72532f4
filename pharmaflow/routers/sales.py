from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pharmaflow.core.api_docs import error_responses
from pharmaflow.core.clock import local_midnight_utc, reporting_today
from pharmaflow.core.deps import get_db
from pharmaflow.core.money import money_float
from pharmaflow.models.sales import Sale
from pharmaflow.schemas.common import PaginationMeta
from pharmaflow.schemas.sales import SaleCreate, SaleCreateOut, SaleItemOut, SaleListOut, SaleOut
from pharmaflow.services.ledger_service import LedgerError
from pharmaflow.services.sales_service import MedicineNotFoundError, SaleLine, create_sale

router = APIRouter(prefix="/sales", tags=["sales"])


@router.post(
    "",
    response_model=SaleCreateOut,
    status_code=201,
    summary="Create sale",
    description=(
        "Records a completed sale. Lines naming a batch consume that batch; lines naming a "
        "medicine are filled FEFO and may split across batches."
    ),
    responses=error_responses(400, 404, 409, 422, 500),
)
def record_sale(payload: SaleCreate, db: Session = Depends(get_db)):
    lines = [
        SaleLine(
            quantity=item.quantity,
            medicine_id=item.medicine_id,
            batch_id=item.batch_id,
            unit_price=item.unit_price,
        )
        for item in payload.items
    ]
    try:
        sale, items = create_sale(
            db,
            lines=lines,
            payment_method=payload.payment_method,
            discount=payload.discount,
            customer_name=payload.customer_name,
            note=payload.note,
            today=reporting_today(),
        )
    except MedicineNotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc))
    except LedgerError:
        db.rollback()
        raise
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc))
    db.commit()

    return SaleCreateOut(
        id=sale.id,
        invoice_number=sale.invoice_number,
        subtotal=money_float(sale.subtotal),
        discount=money_float(sale.discount),
        total=money_float(sale.total),
        items=[
            SaleItemOut(
                id=item.id,
                medicine_id=item.medicine_id,
                batch_id=item.batch_id,
                quantity=item.quantity,
                unit_price=money_float(item.unit_price),
                line_total=money_float(item.line_total),
            )
            for item in items
        ],
    )


@router.get(
    "",
    response_model=SaleListOut,
    summary="List sales",
    responses=error_responses(400, 422, 500),
)
def list_sales(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date cannot be before start_date")

    count_stmt = select(func.count(Sale.id))
    stmt = select(Sale)
    # Dates are reporting-calendar days.
    if start_date:
        start = local_midnight_utc(start_date)
        count_stmt = count_stmt.where(Sale.created_at >= start)
        stmt = stmt.where(Sale.created_at >= start)
    if end_date:
        end = local_midnight_utc(end_date + timedelta(days=1))
        count_stmt = count_stmt.where(Sale.created_at < end)
        stmt = stmt.where(Sale.created_at < end)

    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        stmt.order_by(Sale.created_at.desc(), Sale.id.asc()).offset(offset).limit(limit)
    ).scalars().all()
    items = [
        SaleOut(
            id=row.id,
            invoice_number=row.invoice_number,
            customer_name=row.customer_name,
            payment_method=row.payment_method,
            subtotal=money_float(row.subtotal),
            discount=money_float(row.discount),
            total=money_float(row.total),
            status=row.status,
            note=row.note,
            created_at=row.created_at,
        )
        for row in rows
    ]
    count = len(items)
    return SaleListOut(
        items=items,
        start_date=start_date,
        end_date=end_date,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )
