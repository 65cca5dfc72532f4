import uuid
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from pharmaflow.models.batch import Batch
from pharmaflow.models.catalog import Category, Medicine
from pharmaflow.models.inventory import StockMovement
from pharmaflow.services import ledger_service
from pharmaflow.services.ledger_service import (
    BatchDisposedError,
    BatchNotFoundError,
    InsufficientStockError,
    consume,
    consume_fefo,
    create_batch,
    dispose,
    list_batches_fefo,
    receive,
    select_fefo_batch,
    total_stock,
)


def _medicine(db, *, name: str = "Paracetamol 500mg", reorder_level: int = 50) -> Medicine:
    category = Category(id=str(uuid.uuid4()), name=f"Analgesics-{uuid.uuid4().hex[:6]}")
    db.add(category)
    medicine = Medicine(
        id=str(uuid.uuid4()),
        sku=f"SKU-{uuid.uuid4().hex[:8]}",
        name=name,
        category_id=category.id,
        reorder_level=reorder_level,
    )
    db.add(medicine)
    db.flush()
    return medicine


def _batch(db, medicine: Medicine, batch_number: str, quantity: int, expiry: date) -> Batch:
    return create_batch(
        db,
        medicine_id=medicine.id,
        batch_number=batch_number,
        quantity=quantity,
        expiry_date=expiry,
        manufacturing_date=date(2024, 1, 1),
        cost_price="1.80",
        selling_price="2.50",
    )


def test_fefo_picks_earliest_expiry_first(db):
    medicine = _medicine(db)
    _batch(db, medicine, "B-JUN", 10, date(2025, 6, 1))
    _batch(db, medicine, "B-JAN", 10, date(2025, 1, 1))
    _batch(db, medicine, "B-MAR", 10, date(2025, 3, 1))

    picked = []
    for _ in range(3):
        batch = select_fefo_batch(db, medicine.id)
        picked.append(batch.batch_number)
        consume(db, batch.id, batch.quantity)

    assert picked == ["B-JAN", "B-MAR", "B-JUN"]
    assert select_fefo_batch(db, medicine.id) is None
    assert total_stock(db, medicine.id) == 0


def test_fefo_tie_breaks_on_insertion_order(db):
    medicine = _medicine(db)
    first = _batch(db, medicine, "B-1", 5, date(2025, 1, 1))
    second = _batch(db, medicine, "B-2", 5, date(2025, 1, 1))
    third = _batch(db, medicine, "B-3", 5, date(2025, 1, 1))

    assert first.created_at < second.created_at < third.created_at
    picked = []
    for _ in range(3):
        chosen = select_fefo_batch(db, medicine.id)
        picked.append(chosen.batch_number)
        consume(db, chosen.id, 5)
    assert picked == ["B-1", "B-2", "B-3"]


def test_batches_received_in_the_same_instant_keep_insertion_order(db, monkeypatch):
    frozen = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

    class _FrozenDatetime(datetime):
        @classmethod
        def now(cls, tz=None):
            return frozen

    monkeypatch.setattr(ledger_service, "datetime", _FrozenDatetime)
    medicine = _medicine(db)
    numbers = [f"B-{i}" for i in range(5)]
    for number in numbers:
        _batch(db, medicine, number, 1, date(2025, 1, 1))

    picked = [b.batch_number for b in list_batches_fefo(db, medicine.id)]
    assert picked == numbers


def test_consume_fefo_spans_batches(db):
    medicine = _medicine(db)
    _batch(db, medicine, "B-LATE", 20, date(2026, 1, 1))
    early = _batch(db, medicine, "B-EARLY", 8, date(2025, 1, 1))

    consumed = consume_fefo(db, medicine.id, 12)

    assert [(b.batch_number, qty) for b, qty in consumed] == [("B-EARLY", 8), ("B-LATE", 4)]
    db.refresh(early)
    assert early.quantity == 0
    assert total_stock(db, medicine.id) == 16


def test_consume_fefo_can_skip_expired_batches(db):
    medicine = _medicine(db)
    _batch(db, medicine, "B-OLD", 5, date(2024, 12, 1))
    _batch(db, medicine, "B-NEW", 5, date(2026, 12, 1))

    consumed = consume_fefo(db, medicine.id, 3, skip_expired_before=date(2025, 1, 1))

    assert [b.batch_number for b, _ in consumed] == ["B-NEW"]


def test_consume_never_drives_quantity_negative(db):
    medicine = _medicine(db)
    batch = _batch(db, medicine, "B-1", 5, date(2025, 6, 1))

    with pytest.raises(InsufficientStockError) as exc_info:
        consume(db, batch.id, 6)

    assert exc_info.value.as_details() == {
        "batch_id": batch.id,
        "medicine_id": medicine.id,
        "requested": 6,
        "available": 5,
    }
    db.refresh(batch)
    assert batch.quantity == 5

    consume(db, batch.id, 5)
    db.refresh(batch)
    assert batch.quantity == 0
    with pytest.raises(InsufficientStockError):
        consume(db, batch.id, 1)


def test_consume_fefo_shortfall_leaves_batches_untouched(db):
    medicine = _medicine(db)
    _batch(db, medicine, "B-1", 3, date(2025, 1, 1))
    _batch(db, medicine, "B-2", 3, date(2025, 2, 1))

    with pytest.raises(InsufficientStockError) as exc_info:
        consume_fefo(db, medicine.id, 10)

    assert exc_info.value.available == 6
    assert total_stock(db, medicine.id) == 6


def test_quantity_check_constraint_rejects_negative_rows(db):
    medicine = _medicine(db)
    batch = _batch(db, medicine, "B-1", 2, date(2025, 1, 1))
    db.commit()

    with pytest.raises(IntegrityError):
        db.execute(update(Batch).where(Batch.id == batch.id).values(quantity=-1))
        db.flush()
    db.rollback()


def test_consume_unknown_batch_raises_not_found(db):
    with pytest.raises(BatchNotFoundError):
        consume(db, "missing-batch", 1)


def test_receive_increments_existing_batch(db):
    medicine = _medicine(db)
    batch, created = receive(
        db,
        medicine_id=medicine.id,
        batch_number="B-100",
        quantity=40,
        expiry_date=date(2027, 1, 1),
        manufacturing_date=date(2025, 1, 1),
        cost_price="1.00",
        selling_price="1.50",
    )
    assert created is True

    again, created_again = receive(
        db,
        medicine_id=medicine.id,
        batch_number="B-100",
        quantity=10,
        expiry_date=date(2027, 1, 1),
        manufacturing_date=date(2025, 1, 1),
        cost_price="1.00",
        selling_price="1.50",
    )

    assert created_again is False
    assert again.id == batch.id
    assert again.quantity == 50
    assert again.initial_quantity == 50
    deltas = db.execute(
        select(StockMovement.qty_delta).where(StockMovement.batch_id == batch.id)
    ).scalars().all()
    assert sorted(deltas) == [10, 40]


def test_create_batch_rejects_inverted_dates(db):
    medicine = _medicine(db)
    with pytest.raises(ValueError):
        create_batch(
            db,
            medicine_id=medicine.id,
            batch_number="B-BAD",
            quantity=1,
            expiry_date=date(2024, 1, 1),
            manufacturing_date=date(2024, 6, 1),
            cost_price=1,
            selling_price=2,
        )


def test_dispose_removes_batch_from_fefo(db):
    medicine = _medicine(db)
    early = _batch(db, medicine, "B-EARLY", 7, date(2025, 1, 1))
    late = _batch(db, medicine, "B-LATE", 3, date(2025, 9, 1))

    disposed = dispose(db, early.id, note="water damage")

    assert disposed.status == "disposed"
    assert disposed.quantity == 0
    assert disposed.disposed_at is not None
    assert select_fefo_batch(db, medicine.id).id == late.id
    assert total_stock(db, medicine.id) == 3

    movement = db.execute(
        select(StockMovement).where(
            StockMovement.batch_id == early.id,
            StockMovement.reason == "disposal",
        )
    ).scalar_one()
    assert movement.qty_delta == -7
    assert movement.note == "water damage"


def test_dispose_is_idempotent_and_blocks_receipts(db):
    medicine = _medicine(db)
    batch = _batch(db, medicine, "B-1", 4, date(2025, 1, 1))
    dispose(db, batch.id)
    dispose(db, batch.id)

    disposals = db.execute(
        select(StockMovement).where(
            StockMovement.batch_id == batch.id,
            StockMovement.reason == "disposal",
        )
    ).scalars().all()
    assert len(disposals) == 1

    with pytest.raises(InsufficientStockError):
        consume(db, batch.id, 1)
    with pytest.raises(BatchDisposedError):
        receive(
            db,
            medicine_id=medicine.id,
            batch_number="B-1",
            quantity=5,
            expiry_date=date(2025, 1, 1),
            manufacturing_date=date(2024, 1, 1),
            cost_price=1,
            selling_price=2,
        )
