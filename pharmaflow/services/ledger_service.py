import json
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import Select, func, select, update
from sqlalchemy.orm import Session

from pharmaflow.core.clock import as_utc
from pharmaflow.core.money import to_money
from pharmaflow.models.batch import BATCH_STATUS_ACTIVE, BATCH_STATUS_DISPOSED, Batch
from pharmaflow.models.inventory import StockMovement

logger = logging.getLogger("pharmaflow.ledger")


class LedgerError(ValueError):
    def as_details(self) -> dict | None:
        return None


class BatchNotFoundError(LedgerError):
    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Batch not found: {batch_id}")

    def as_details(self) -> dict:
        return {"batch_id": self.batch_id}


class BatchDisposedError(LedgerError):
    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Batch {batch_id} is disposed")

    def as_details(self) -> dict:
        return {"batch_id": self.batch_id}


class InsufficientStockError(LedgerError):
    def __init__(
        self,
        *,
        requested: int,
        available: int,
        batch_id: str | None = None,
        medicine_id: str | None = None,
    ):
        self.requested = requested
        self.available = available
        self.batch_id = batch_id
        self.medicine_id = medicine_id
        target = f"batch {batch_id}" if batch_id else f"medicine {medicine_id}"
        super().__init__(
            f"Insufficient stock for {target}: requested {requested}, available {available}"
        )

    def as_details(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "medicine_id": self.medicine_id,
            "requested": self.requested,
            "available": self.available,
        }


def _log_event(event: str, **fields) -> None:
    logger.info(json.dumps({"event": event, **fields}, default=str))


def add_stock_movement(
    db: Session,
    *,
    medicine_id: str,
    batch_id: str,
    qty_delta: int,
    reason: str,
    reference_id: str | None = None,
    note: str | None = None,
) -> StockMovement:
    entry = StockMovement(
        id=str(uuid.uuid4()),
        medicine_id=medicine_id,
        batch_id=batch_id,
        qty_delta=qty_delta,
        reason=reason,
        reference_id=reference_id,
        note=note,
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    # Sessions run with autoflush off; later reads in the same unit of work must see it.
    db.flush()
    return entry


def total_stock(db: Session, medicine_id: str) -> int:
    q = select(func.coalesce(func.sum(Batch.quantity), 0)).where(
        Batch.medicine_id == medicine_id,
        Batch.status == BATCH_STATUS_ACTIVE,
    )
    return int(db.execute(q).scalar_one())


def stock_by_medicine(db: Session, medicine_ids: list[str] | None = None) -> dict[str, int]:
    q = (
        select(Batch.medicine_id, func.coalesce(func.sum(Batch.quantity), 0))
        .where(Batch.status == BATCH_STATUS_ACTIVE)
        .group_by(Batch.medicine_id)
    )
    if medicine_ids is not None:
        if not medicine_ids:
            return {}
        q = q.where(Batch.medicine_id.in_(medicine_ids))
    return {medicine_id: int(stock) for medicine_id, stock in db.execute(q).all()}


def get_batch(db: Session, batch_id: str) -> Batch:
    batch = db.get(Batch, batch_id)
    if batch is None:
        raise BatchNotFoundError(batch_id)
    return batch


def find_batch(db: Session, *, medicine_id: str, batch_number: str) -> Batch | None:
    return db.execute(
        select(Batch).where(
            Batch.medicine_id == medicine_id,
            Batch.batch_number == batch_number,
        )
    ).scalar_one_or_none()


def _fefo_order(stmt: Select) -> Select:
    return stmt.order_by(Batch.expiry_date.asc(), Batch.created_at.asc(), Batch.id.asc())


def fefo_candidates_stmt(medicine_id: str, *, skip_expired_before: date | None = None) -> Select:
    stmt = select(Batch).where(
        Batch.medicine_id == medicine_id,
        Batch.status == BATCH_STATUS_ACTIVE,
        Batch.quantity > 0,
    )
    if skip_expired_before is not None:
        stmt = stmt.where(Batch.expiry_date >= skip_expired_before)
    return _fefo_order(stmt)


def list_batches_fefo(db: Session, medicine_id: str, *, include_inactive: bool = False) -> list[Batch]:
    stmt = select(Batch).where(Batch.medicine_id == medicine_id)
    if not include_inactive:
        stmt = stmt.where(Batch.status == BATCH_STATUS_ACTIVE)
    return list(db.execute(_fefo_order(stmt)).scalars().all())


def select_fefo_batch(
    db: Session,
    medicine_id: str,
    *,
    skip_expired_before: date | None = None,
) -> Batch | None:
    """Next batch to sell: earliest expiry among active batches that still hold stock."""
    stmt = fefo_candidates_stmt(medicine_id, skip_expired_before=skip_expired_before).limit(1)
    return db.execute(stmt).scalars().first()


def consume(
    db: Session,
    batch_id: str,
    quantity: int,
    *,
    reason: str = "sale",
    reference_id: str | None = None,
    note: str | None = None,
) -> Batch:
    """
    Decrement a batch with a single conditional UPDATE so concurrent consumers
    can never drive the quantity below zero. Raises InsufficientStockError when
    the batch cannot cover the request.
    """
    if quantity <= 0:
        raise ValueError("Quantity must be > 0")

    db.flush()
    result = db.execute(
        update(Batch)
        .where(
            Batch.id == batch_id,
            Batch.status == BATCH_STATUS_ACTIVE,
            Batch.quantity >= quantity,
        )
        .values(quantity=Batch.quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    batch = db.get(Batch, batch_id, populate_existing=True)
    if batch is None:
        raise BatchNotFoundError(batch_id)
    if result.rowcount != 1:
        available = batch.quantity if batch.status == BATCH_STATUS_ACTIVE else 0
        raise InsufficientStockError(
            requested=quantity,
            available=available,
            batch_id=batch_id,
            medicine_id=batch.medicine_id,
        )

    add_stock_movement(
        db,
        medicine_id=batch.medicine_id,
        batch_id=batch.id,
        qty_delta=-quantity,
        reason=reason,
        reference_id=reference_id,
        note=note,
    )
    _log_event(
        "batch.consume",
        batch_id=batch.id,
        medicine_id=batch.medicine_id,
        quantity=quantity,
        remaining=batch.quantity,
        reason=reason,
    )
    return batch


def allocate_fefo(
    db: Session,
    medicine_id: str,
    quantity: int,
    *,
    skip_expired_before: date | None = None,
) -> list[tuple[Batch, int]]:
    """
    Plan a FEFO allocation without mutating anything.

    - Only active batches with stock are candidates
    - Earliest expiry first, insertion order as tie-breaker
    - Candidate rows are locked FOR UPDATE where the database supports it
    - Raises InsufficientStockError if combined stock is short
    """
    if quantity <= 0:
        raise ValueError("Quantity must be > 0")

    candidates = db.execute(
        fefo_candidates_stmt(medicine_id, skip_expired_before=skip_expired_before).with_for_update()
    ).scalars().all()

    remaining = quantity
    allocations: list[tuple[Batch, int]] = []
    for batch in candidates:
        if remaining <= 0:
            break
        use_qty = min(batch.quantity, remaining)
        if use_qty <= 0:
            continue
        allocations.append((batch, use_qty))
        remaining -= use_qty

    if remaining > 0:
        raise InsufficientStockError(
            requested=quantity,
            available=quantity - remaining,
            medicine_id=medicine_id,
        )
    return allocations


def consume_fefo(
    db: Session,
    medicine_id: str,
    quantity: int,
    *,
    skip_expired_before: date | None = None,
    reason: str = "sale",
    reference_id: str | None = None,
    note: str | None = None,
) -> list[tuple[Batch, int]]:
    allocations = allocate_fefo(
        db, medicine_id, quantity, skip_expired_before=skip_expired_before
    )
    consumed: list[tuple[Batch, int]] = []
    for batch, use_qty in allocations:
        updated = consume(
            db,
            batch.id,
            use_qty,
            reason=reason,
            reference_id=reference_id,
            note=note,
        )
        consumed.append((updated, use_qty))
    return consumed


def _next_created_at(db: Session, medicine_id: str) -> datetime:
    # Strictly after the medicine's newest batch, so created_at alone orders FEFO ties.
    now = datetime.now(timezone.utc)
    latest = db.execute(
        select(func.max(Batch.created_at)).where(Batch.medicine_id == medicine_id)
    ).scalar_one_or_none()
    if latest is not None and as_utc(latest) >= now:
        return as_utc(latest) + timedelta(microseconds=1)
    return now


def create_batch(
    db: Session,
    *,
    medicine_id: str,
    batch_number: str,
    quantity: int,
    expiry_date: date,
    manufacturing_date: date,
    cost_price: Decimal | float | str,
    selling_price: Decimal | float | str,
    supplier_id: str | None = None,
    location: str | None = None,
    notes: str | None = None,
    received_date: date | None = None,
    reason: str = "receipt",
    reference_id: str | None = None,
) -> Batch:
    if quantity < 0:
        raise ValueError("Quantity cannot be negative")
    if manufacturing_date >= expiry_date:
        raise ValueError("manufacturing_date must be before expiry_date")

    now = _next_created_at(db, medicine_id)
    batch = Batch(
        id=str(uuid.uuid4()),
        medicine_id=medicine_id,
        batch_number=batch_number,
        quantity=quantity,
        initial_quantity=quantity,
        manufacturing_date=manufacturing_date,
        expiry_date=expiry_date,
        cost_price=to_money(cost_price),
        selling_price=to_money(selling_price),
        supplier_id=supplier_id,
        received_date=received_date or now.date(),
        location=location,
        status=BATCH_STATUS_ACTIVE,
        notes=notes,
        created_at=now,
    )
    db.add(batch)
    db.flush()
    if quantity > 0:
        add_stock_movement(
            db,
            medicine_id=medicine_id,
            batch_id=batch.id,
            qty_delta=quantity,
            reason=reason,
            reference_id=reference_id,
        )
    return batch


def receive(
    db: Session,
    *,
    medicine_id: str,
    batch_number: str,
    quantity: int,
    expiry_date: date,
    manufacturing_date: date,
    cost_price: Decimal | float | str,
    selling_price: Decimal | float | str,
    supplier_id: str | None = None,
    location: str | None = None,
    notes: str | None = None,
) -> tuple[Batch, bool]:
    """
    Insert a new batch or add stock to the existing (medicine, batch number)
    row. Returns (batch, created).
    """
    if quantity <= 0:
        raise ValueError("Quantity must be > 0")

    existing = find_batch(db, medicine_id=medicine_id, batch_number=batch_number)
    if existing is None:
        batch = create_batch(
            db,
            medicine_id=medicine_id,
            batch_number=batch_number,
            quantity=quantity,
            expiry_date=expiry_date,
            manufacturing_date=manufacturing_date,
            cost_price=cost_price,
            selling_price=selling_price,
            supplier_id=supplier_id,
            location=location,
            notes=notes,
        )
        _log_event("batch.receive", batch_id=batch.id, medicine_id=medicine_id, quantity=quantity, created=True)
        return batch, True

    if existing.status == BATCH_STATUS_DISPOSED:
        raise BatchDisposedError(existing.id)

    result = db.execute(
        update(Batch)
        .where(Batch.id == existing.id, Batch.status == BATCH_STATUS_ACTIVE)
        .values(
            quantity=Batch.quantity + quantity,
            initial_quantity=Batch.initial_quantity + quantity,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # disposed after it was read above
        raise BatchDisposedError(existing.id)
    batch = db.get(Batch, existing.id, populate_existing=True)
    add_stock_movement(
        db,
        medicine_id=medicine_id,
        batch_id=batch.id,
        qty_delta=quantity,
        reason="receipt",
    )
    _log_event("batch.receive", batch_id=batch.id, medicine_id=medicine_id, quantity=quantity, created=False)
    return batch, False


def dispose(db: Session, batch_id: str, *, note: str | None = None) -> Batch:
    """
    Write off a batch. Irreversible; disposing twice is a no-op.

    The status flip is a conditional UPDATE, so it holds the row lock before
    the remaining quantity is read. Consumers and receipts only touch active
    rows, which keeps the written-off quantity equal to what was on hand.
    """
    db.flush()
    claimed = db.execute(
        update(Batch)
        .where(Batch.id == batch_id, Batch.status == BATCH_STATUS_ACTIVE)
        .values(status=BATCH_STATUS_DISPOSED, disposed_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    batch = db.get(Batch, batch_id, populate_existing=True)
    if batch is None:
        raise BatchNotFoundError(batch_id)
    if claimed.rowcount != 1:
        return batch

    written_off = batch.quantity
    batch.quantity = 0
    if written_off > 0:
        add_stock_movement(
            db,
            medicine_id=batch.medicine_id,
            batch_id=batch.id,
            qty_delta=-written_off,
            reason="disposal",
            note=note,
        )
    db.flush()
    _log_event(
        "batch.dispose",
        batch_id=batch.id,
        medicine_id=batch.medicine_id,
        written_off=written_off,
    )
    return batch
