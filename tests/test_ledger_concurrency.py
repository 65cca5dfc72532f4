import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest
from sqlalchemy import func, select

from pharmaflow.models.batch import Batch
from pharmaflow.models.catalog import Category, Medicine
from pharmaflow.models.inventory import StockMovement
from pharmaflow.services import ledger_service
from pharmaflow.services.ledger_service import (
    BatchDisposedError,
    InsufficientStockError,
    consume,
    consume_fefo,
    create_batch,
    dispose,
    receive,
)


def _seed_batch(session_local, *, quantity: int = 10, batch_number: str = "C-1") -> tuple[str, str]:
    with session_local() as db:
        category = Category(id=str(uuid.uuid4()), name=f"Concurrency {uuid.uuid4().hex[:6]}")
        db.add(category)
        medicine = Medicine(
            id=str(uuid.uuid4()),
            sku=f"CONC-{uuid.uuid4().hex[:8]}",
            name="Concurrency",
            category_id=category.id,
        )
        db.add(medicine)
        db.flush()
        batch = create_batch(
            db,
            medicine_id=medicine.id,
            batch_number=batch_number,
            quantity=quantity,
            expiry_date=date(2030, 1, 1),
            manufacturing_date=date(2025, 1, 1),
            cost_price=1,
            selling_price=2,
        )
        db.commit()
        return medicine.id, batch.id


def _movements(session_local, batch_id: str) -> list[tuple[int, str]]:
    with session_local() as db:
        rows = db.execute(
            select(StockMovement.qty_delta, StockMovement.reason)
            .where(StockMovement.batch_id == batch_id)
            .order_by(StockMovement.created_at)
        ).all()
    return [(int(qty), reason) for qty, reason in rows]


def test_dispose_writes_off_what_is_on_hand_after_a_concurrent_sale(file_session_local):
    _, batch_id = _seed_batch(file_session_local)

    stale = file_session_local()
    try:
        assert stale.get(Batch, batch_id).quantity == 10

        with file_session_local() as other:
            consume(other, batch_id, 4)
            other.commit()

        disposed = dispose(stale, batch_id)
        stale.commit()
        assert disposed.quantity == 0
    finally:
        stale.close()

    movements = _movements(file_session_local, batch_id)
    assert movements == [(10, "receipt"), (-4, "sale"), (-6, "disposal")]
    assert sum(qty for qty, _ in movements) == 0


def test_receive_rejects_a_batch_disposed_after_lookup(file_session_local, monkeypatch):
    medicine_id, batch_id = _seed_batch(file_session_local)
    original_find_batch = ledger_service.find_batch

    def find_then_dispose_elsewhere(db, **kwargs):
        found = original_find_batch(db, **kwargs)
        with file_session_local() as other:
            dispose(other, batch_id)
            other.commit()
        return found

    monkeypatch.setattr(ledger_service, "find_batch", find_then_dispose_elsewhere)

    with file_session_local() as db:
        with pytest.raises(BatchDisposedError):
            receive(
                db,
                medicine_id=medicine_id,
                batch_number="C-1",
                quantity=5,
                expiry_date=date(2030, 1, 1),
                manufacturing_date=date(2025, 1, 1),
                cost_price=1,
                selling_price=2,
            )
        db.rollback()

    assert _movements(file_session_local, batch_id) == [(10, "receipt"), (-10, "disposal")]
    with file_session_local() as db:
        batch = db.get(Batch, batch_id)
        assert batch.status == "disposed"
        assert batch.quantity == 0


def test_concurrent_pinned_consumers_never_oversell(threaded_session_local):
    _, batch_id = _seed_batch(threaded_session_local)

    def take_three() -> bool:
        with threaded_session_local() as db:
            try:
                consume(db, batch_id, 3)
                db.commit()
                return True
            except InsufficientStockError:
                db.rollback()
                return False

    with ThreadPoolExecutor(max_workers=8) as executor:
        outcomes = list(executor.map(lambda _: take_three(), range(8)))

    assert outcomes.count(True) == 3
    with threaded_session_local() as db:
        assert db.get(Batch, batch_id).quantity == 1
        ledger_total = db.execute(
            select(func.sum(StockMovement.qty_delta)).where(StockMovement.batch_id == batch_id)
        ).scalar_one()
        assert ledger_total == 1


def test_concurrent_fefo_consumers_never_oversell(threaded_session_local):
    medicine_id, _ = _seed_batch(threaded_session_local, quantity=5, batch_number="C-EARLY")
    with threaded_session_local() as db:
        create_batch(
            db,
            medicine_id=medicine_id,
            batch_number="C-LATE",
            quantity=7,
            expiry_date=date(2031, 1, 1),
            manufacturing_date=date(2025, 1, 1),
            cost_price=1,
            selling_price=2,
        )
        db.commit()

    def take_two() -> bool:
        with threaded_session_local() as db:
            try:
                consume_fefo(db, medicine_id, 2)
                db.commit()
                return True
            except InsufficientStockError:
                db.rollback()
                return False

    with ThreadPoolExecutor(max_workers=8) as executor:
        outcomes = list(executor.map(lambda _: take_two(), range(10)))

    assert outcomes.count(True) == 6
    with threaded_session_local() as db:
        remaining = db.execute(
            select(func.sum(Batch.quantity)).where(Batch.medicine_id == medicine_id)
        ).scalar_one()
        assert remaining == 0
        quantities = db.execute(select(Batch.quantity).where(Batch.medicine_id == medicine_id)).scalars().all()
        assert min(quantities) >= 0
