import json
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from pharmaflow.core.clock import utc_now
from pharmaflow.core.config import settings
from pharmaflow.core.id_utils import generate_invoice_number
from pharmaflow.core.money import ZERO_MONEY, to_money
from pharmaflow.models.batch import Batch
from pharmaflow.models.catalog import Medicine
from pharmaflow.models.sales import Sale, SaleItem
from pharmaflow.services.ledger_service import consume, consume_fefo, get_batch

logger = logging.getLogger("pharmaflow.sales")

SALE_STATUS_COMPLETED = "completed"


class MedicineNotFoundError(ValueError):
    def __init__(self, medicine_id: str):
        self.medicine_id = medicine_id
        super().__init__(f"Medicine not found: {medicine_id}")


@dataclass
class SaleLine:
    quantity: int
    medicine_id: str | None = None
    batch_id: str | None = None
    unit_price: Decimal | None = None


def _active_medicine(db: Session, medicine_id: str) -> Medicine:
    medicine = db.execute(
        select(Medicine).where(Medicine.id == medicine_id, Medicine.is_active.is_(True))
    ).scalar_one_or_none()
    if medicine is None:
        raise MedicineNotFoundError(medicine_id)
    return medicine


def _line_items(
    db: Session,
    sale_id: str,
    line: SaleLine,
    *,
    today: date,
    note: str | None,
) -> list[SaleItem]:
    """Consume stock for one payload line; FEFO lines may split across batches."""
    consumed: list[tuple[Batch, int]]
    if line.batch_id:
        batch = get_batch(db, line.batch_id)
        if line.medicine_id and batch.medicine_id != line.medicine_id:
            raise ValueError(f"Batch {line.batch_id} does not belong to medicine {line.medicine_id}")
        batch = consume(db, batch.id, line.quantity, reason="sale", reference_id=sale_id, note=note)
        consumed = [(batch, line.quantity)]
    else:
        _active_medicine(db, line.medicine_id)
        skip_before = today if settings.sales_skip_expired_batches else None
        consumed = consume_fefo(
            db,
            line.medicine_id,
            line.quantity,
            skip_expired_before=skip_before,
            reason="sale",
            reference_id=sale_id,
            note=note,
        )

    items = []
    for batch, qty in consumed:
        unit_price = to_money(line.unit_price if line.unit_price is not None else batch.selling_price)
        items.append(
            SaleItem(
                id=str(uuid.uuid4()),
                sale_id=sale_id,
                batch_id=batch.id,
                medicine_id=batch.medicine_id,
                quantity=qty,
                unit_price=unit_price,
                line_total=to_money(unit_price * qty),
            )
        )
    return items


def create_sale(
    db: Session,
    *,
    lines: list[SaleLine],
    payment_method: str,
    discount: Decimal | float | str | None = None,
    customer_name: str | None = None,
    note: str | None = None,
    today: date,
    now: datetime | None = None,
) -> tuple[Sale, list[SaleItem]]:
    """
    Record a completed sale. Every line either pins a batch or names a
    medicine and is filled FEFO. Any shortfall raises InsufficientStockError
    and the caller rolls back the whole sale.
    """
    if not lines:
        raise ValueError("No items")

    sale_id = str(uuid.uuid4())
    items: list[SaleItem] = []
    for line in lines:
        items.extend(_line_items(db, sale_id, line, today=today, note=note))

    subtotal = to_money(sum((item.line_total for item in items), ZERO_MONEY))
    discount_amount = to_money(discount)
    if discount_amount < 0 or discount_amount > subtotal:
        raise ValueError("Discount must be between 0 and the subtotal")

    sale = Sale(
        id=sale_id,
        invoice_number=generate_invoice_number(),
        customer_name=customer_name,
        payment_method=payment_method,
        subtotal=subtotal,
        discount=discount_amount,
        total=to_money(subtotal - discount_amount),
        status=SALE_STATUS_COMPLETED,
        note=note,
        created_at=now or utc_now(),
    )
    db.add(sale)
    db.add_all(items)
    db.flush()

    logger.info(
        json.dumps(
            {
                "event": "sale.create",
                "sale_id": sale_id,
                "invoice_number": sale.invoice_number,
                "items_count": len(items),
                "total": float(sale.total),
            }
        )
    )
    return sale, items
