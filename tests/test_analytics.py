import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from pharmaflow.models.catalog import Category, Medicine
from pharmaflow.models.sales import Sale
from pharmaflow.services.analytics_service import aggregate, aggregate_to_csv
from pharmaflow.services.ledger_service import create_batch
from pharmaflow.services.sales_service import SaleLine, create_sale

# Wednesday
NOW = datetime(2026, 10, 21, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def _medicine(db, category: Category, name: str, reorder_level: int = 0) -> Medicine:
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


def _stock(db, medicine: Medicine, quantity: int, cost: str, price: str, expiry: date) -> None:
    create_batch(
        db,
        medicine_id=medicine.id,
        batch_number=f"B-{uuid.uuid4().hex[:6]}",
        quantity=quantity,
        expiry_date=expiry,
        manufacturing_date=date(2025, 1, 1),
        cost_price=cost,
        selling_price=price,
    )


def _sell(db, medicine: Medicine, quantity: int, unit_price: str, at: datetime) -> None:
    create_sale(
        db,
        lines=[SaleLine(quantity=quantity, medicine_id=medicine.id, unit_price=Decimal(unit_price))],
        payment_method="cash",
        today=TODAY,
        now=at,
    )


@pytest.fixture()
def store(db):
    category = Category(id=str(uuid.uuid4()), name="Analgesics", color="#f97316")
    db.add(category)
    db.flush()
    para = _medicine(db, category, "Paracetamol 500mg", reorder_level=10)
    ibu = _medicine(db, category, "Ibuprofen 400mg")
    _medicine(db, category, "Aspirin 75mg", reorder_level=5)
    _stock(db, para, 100, "2.00", "5.00", date(2027, 6, 30))
    _stock(db, ibu, 50, "4.00", "10.00", date(2027, 6, 30))

    _sell(db, para, 10, "5.00", datetime(2026, 10, 19, 0, 30, tzinfo=timezone.utc))
    _sell(db, para, 5, "5.00", datetime(2026, 10, 18, 23, 30, tzinfo=timezone.utc))
    _sell(db, ibu, 2, "10.00", datetime(2026, 10, 21, 9, 0, tzinfo=timezone.utc))
    _sell(db, para, 5, "5.00", datetime(2026, 9, 10, 12, 0, tzinfo=timezone.utc))
    db.commit()
    return {"para": para, "ibu": ibu}


def test_empty_store_reports_zeros(session_local):
    payload = aggregate(session_local, 7, now=NOW)

    revenue = payload["revenue"]
    assert revenue["today"] == 0.0
    assert revenue["this_month"] == 0.0
    assert len(revenue["daily_trend"]) == 7
    assert all(point["revenue"] == 0.0 for point in revenue["daily_trend"])
    assert payload["sales"] == {
        "today_transactions": 0,
        "this_month_transactions": 0,
        "avg_transaction_value": 0.0,
    }
    inventory = payload["inventory"]
    assert inventory["total_value"] == 0.0
    assert inventory["turnover_rate"] == 0.0
    assert inventory["stock_availability"] == 100.0
    assert inventory["fulfillment_rate"] == 100.0
    assert payload["top_sellers"] == []
    assert payload["category_breakdown"] == []
    assert payload["expiry"]["expired"] == {"count": 0, "value": 0.0}


def test_revenue_windows_use_monday_weeks(store, session_local):
    revenue = aggregate(session_local, 30, now=NOW)["revenue"]

    assert revenue["today"] == pytest.approx(20.0)
    assert revenue["yesterday"] == pytest.approx(0.0)
    # Monday 00:30 belongs to this week, Sunday 23:30 to last week.
    assert revenue["this_week"] == pytest.approx(70.0)
    assert revenue["last_week"] == pytest.approx(25.0)
    assert revenue["this_month"] == pytest.approx(95.0)
    assert revenue["last_month"] == pytest.approx(25.0)

    trend = revenue["daily_trend"]
    assert len(trend) == 30
    assert trend[-1] == {"date": TODAY, "revenue": 20.0}
    assert trend[-3] == {"date": date(2026, 10, 19), "revenue": 50.0}


def test_sales_counts_and_average(store, session_local):
    sales = aggregate(session_local, 30, now=NOW)["sales"]

    assert sales["today_transactions"] == 1
    assert sales["this_month_transactions"] == 3
    assert sales["avg_transaction_value"] == pytest.approx(31.67)


def test_inventory_turnover_and_availability(store, session_local):
    inventory = aggregate(session_local, 30, now=NOW)["inventory"]

    # 80 x 2.00 + 48 x 4.00
    assert inventory["total_value"] == pytest.approx(352.0)
    assert inventory["total_medicines"] == 3
    assert inventory["out_of_stock"] == 1
    assert inventory["low_stock"] == 0
    # 38.00 trailing COGS x 12 / 352.00
    assert inventory["turnover_rate"] == pytest.approx(1.3)
    assert inventory["stock_availability"] == pytest.approx(66.7)
    assert inventory["fulfillment_rate"] == 100.0


def test_delisted_medicine_stock_still_counts_toward_value(store, db, session_local):
    ibu = db.get(Medicine, store["ibu"].id)
    ibu.is_active = False
    db.commit()

    inventory = aggregate(session_local, 30, now=NOW)["inventory"]

    assert inventory["total_value"] == pytest.approx(352.0)
    assert inventory["total_medicines"] == 2
    assert inventory["out_of_stock"] == 1


def test_fulfillment_counts_non_completed_sales(store, db, session_local):
    for status in ("cancelled", None):
        db.add(
            Sale(
                id=str(uuid.uuid4()),
                invoice_number=f"INV-{uuid.uuid4().hex[:8]}",
                payment_method="cash",
                subtotal=Decimal("0.00"),
                discount=Decimal("0.00"),
                total=Decimal("0.00"),
                status=status,
                created_at=NOW - timedelta(days=1),
            )
        )
    db.commit()

    inventory = aggregate(session_local, 30, now=NOW)["inventory"]

    assert inventory["fulfillment_rate"] == pytest.approx(66.7)


def test_top_sellers_rank_by_revenue_with_growth(store, session_local):
    top = aggregate(session_local, 30, now=NOW)["top_sellers"]

    assert [(row["name"], row["units"], row["revenue"]) for row in top] == [
        ("Paracetamol 500mg", 15, 75.0),
        ("Ibuprofen 400mg", 2, 20.0),
    ]
    assert top[0]["growth"] == pytest.approx(200.0)
    assert top[1]["growth"] == pytest.approx(100.0)


def test_category_breakdown_shares(store, session_local):
    breakdown = aggregate(session_local, 30, now=NOW)["category_breakdown"]

    assert breakdown == [
        {"name": "Analgesics", "value": 100, "revenue": 95.0, "units": 17, "color": "#f97316"}
    ]


def test_expiry_buckets_value_at_selling_price(db, session_local):
    category = Category(id=str(uuid.uuid4()), name="Antibiotics")
    db.add(category)
    db.flush()
    amox = _medicine(db, category, "Amoxicillin 250mg")
    _stock(db, amox, 10, "1.00", "2.00", TODAY + timedelta(days=10))
    _stock(db, amox, 5, "1.00", "2.00", TODAY + timedelta(days=45))
    _stock(db, amox, 4, "1.00", "2.00", TODAY + timedelta(days=80))
    _stock(db, amox, 3, "1.00", "2.00", TODAY - timedelta(days=5))
    _stock(db, amox, 9, "1.00", "2.00", TODAY + timedelta(days=200))
    db.commit()

    expiry = aggregate(session_local, 30, now=NOW)["expiry"]

    assert expiry == {
        "expiring_30_days": {"count": 1, "value": 20.0},
        "expiring_60_days": {"count": 1, "value": 10.0},
        "expiring_90_days": {"count": 1, "value": 8.0},
        "expired": {"count": 1, "value": 6.0},
    }


def test_unknown_window_is_rejected(session_local):
    with pytest.raises(ValueError):
        aggregate(session_local, 14, now=NOW)


def test_csv_export_flattens_sections(store, session_local):
    text = aggregate_to_csv(aggregate(session_local, 7, now=NOW))
    lines = text.splitlines()

    assert lines[0] == "metric,value"
    assert "revenue.today,20.0" in lines
    assert "top_sellers.0.name,Paracetamol 500mg" in lines
    assert "window_days,7" in lines
