import uuid
from datetime import date, datetime
from io import BytesIO

import pytest
from openpyxl import Workbook
from sqlalchemy import func, select
from sqlalchemy.exc import DataError

from pharmaflow.models.batch import Batch
from pharmaflow.models.catalog import Category, Medicine
from pharmaflow.services import import_service
from pharmaflow.services.import_service import (
    ImportRowError,
    import_upload,
    normalize_barcode,
    parse_flexible_date,
    parse_upload_to_rows,
    template_csv,
)

TODAY = date(2026, 10, 19)

SHEET = (
    "Medicine Name,SKU,Category,Batch Number,Quantity,Mfg Date,Expiry Date,Selling Price,Cost Price,Barcode\n"
    "Paracetamol 500mg,PARA-500,Analgesics,BT-001,200,01-01-2025,31-12-2027,2.50,1.80,8901234567890\n"
    "Paracetamol 500mg,PARA-500,Analgesics,BT-002,50,2025-02-01,2028-01-31,2.50,1.80,\n"
    "Cetirizine 10mg,CET-10,Antihistamines,CT-01,120,15-03-2025,15-03-2027,2.60,,8.90123E+12\n"
)


def _upload(db, text: str, filename: str = "stock.csv"):
    return import_upload(
        db,
        filename=filename,
        content_type="text/csv",
        raw=text.encode("utf-8"),
        today=TODAY,
    )


@pytest.mark.parametrize("value", ["15-01-2024", "15/01/2024", "2024-01-15", "2024/01/15", 45306, "45306"])
def test_flexible_dates_agree(value):
    assert parse_flexible_date(value, TODAY) == date(2024, 1, 15)


def test_flexible_date_passthrough_and_fallbacks():
    assert parse_flexible_date(datetime(2024, 1, 15, 9, 30), TODAY) == date(2024, 1, 15)
    assert parse_flexible_date(date(2024, 1, 15), TODAY) == date(2024, 1, 15)
    assert parse_flexible_date("not a date", TODAY) == TODAY
    assert parse_flexible_date(5, TODAY) == TODAY
    assert parse_flexible_date("31-02-2024", TODAY) == TODAY


def test_normalize_barcode():
    assert normalize_barcode("8.90123E+12") is None
    assert normalize_barcode(8901234567890.0) == "8901234567890"
    assert normalize_barcode("8901234567890.0") == "8901234567890"
    assert normalize_barcode("  0012345 ") == "0012345"
    assert normalize_barcode("n/a") is None


def test_import_creates_medicines_batches_and_categories(db):
    result = _upload(db, SHEET)

    assert result.total_rows == 3
    assert result.medicines_created == 2
    assert result.batches_created == 3
    assert result.errors == []
    assert sorted(result.categories_auto_created) == ["Analgesics", "Antihistamines"]
    assert result.summary == "3 created, 0 skipped, 0 errors"

    para = db.execute(select(Medicine).where(Medicine.sku == "PARA-500")).scalar_one()
    assert para.barcode == "8901234567890"
    cet = db.execute(select(Medicine).where(Medicine.sku == "CET-10")).scalar_one()
    assert cet.barcode is None

    cet_batch = db.execute(select(Batch).where(Batch.medicine_id == cet.id)).scalar_one()
    assert cet_batch.manufacturing_date == date(2025, 3, 15)
    assert cet_batch.expiry_date == date(2027, 3, 15)
    assert float(cet_batch.cost_price) == pytest.approx(2.0)
    assert cet_batch.location == "Main Storage"


def test_reimport_is_idempotent(db):
    _upload(db, SHEET)
    second = _upload(db, SHEET)

    assert second.medicines_created == 0
    assert second.batches_created == 0
    assert second.batches_skipped == 3
    assert second.categories_auto_created == []
    assert second.summary == "0 created, 3 skipped, 0 errors"
    assert db.execute(select(func.count(Batch.id))).scalar_one() == 3
    assert db.execute(select(func.sum(Batch.quantity))).scalar_one() == 370


def test_inverted_dates_reset_to_today(db):
    text = (
        "Medicine Name,SKU,Category,Batch Number,Quantity,Mfg Date,Expiry Date,Selling Price\n"
        "Ibuprofen 400mg,IBU-400,Analgesics,IB-1,30,01-06-2025,01-01-2025,3.00\n"
    )
    result = _upload(db, text)

    assert result.batches_created == 1
    batch = db.execute(select(Batch).where(Batch.batch_number == "IB-1")).scalar_one()
    assert batch.manufacturing_date == TODAY
    assert batch.expiry_date == date(2028, 10, 19)


def test_bad_rows_are_reported_and_skipped(db):
    text = (
        "Medicine Name,SKU,Category,Batch Number,Quantity,Expiry Date,Selling Price\n"
        "Good One,GOOD-1,Analgesics,G-1,10,31-12-2027,1.00\n"
        "Bad Qty,BAD-1,Analgesics,B-1,lots,31-12-2027,1.00\n"
        ",NONAME-1,Analgesics,N-1,5,31-12-2027,1.00\n"
        "Negative,NEG-1,Analgesics,NG-1,-4,31-12-2027,1.00\n"
    )
    result = _upload(db, text)

    assert result.total_rows == 4
    assert result.batches_created == 1
    assert result.rows_skipped == 3
    assert sorted(e.row for e in result.errors) == [3, 4, 5]
    assert {e.sku for e in result.errors} == {"BAD-1", "NONAME-1", "NEG-1"}
    assert result.summary == "1 created, 3 skipped, 3 errors"


def test_blank_category_falls_back_to_default(db):
    text = (
        "Medicine Name,SKU,Batch Number,Quantity,Expiry Date,Selling Price\n"
        "Zinc Tablets,ZN-1,Z-1,40,31-12-2027,1.20\n"
    )
    missing = _upload(db, text)
    assert missing.batches_created == 0
    assert missing.errors[0].message == "Category 'General' does not exist"

    db.add(Category(id=str(uuid.uuid4()), name="General"))
    db.commit()
    found = _upload(db, text)
    assert found.batches_created == 1
    assert found.medicines_created == 1


def test_missing_batch_number_and_sku_are_generated(db):
    text = (
        "Medicine Name,Category,Quantity,Expiry Date,Selling Price\n"
        "Vitamin C 500mg,Supplements,60,31-12-2027,0.80\n"
    )
    result = _upload(db, text)

    assert result.batches_created == 1
    medicine = db.execute(select(Medicine).where(Medicine.name == "Vitamin C 500mg")).scalar_one()
    batch = db.execute(select(Batch).where(Batch.medicine_id == medicine.id)).scalar_one()
    assert medicine.sku.startswith("SKU-")
    assert batch.batch_number.startswith("BT-")
    assert medicine.reorder_level == 50


def test_xlsx_upload_with_header_aliases(db):
    wb = Workbook()
    ws = wb.active
    ws.append(["Name", "SKU", "Category", "Batch", "Stock", "Expiry", "MRP"])
    ws.append(["Insulin Glargine", "INS-100", "Diabetes", "IN-1", 12, date(2027, 5, 31), 18.5])
    ws.append([None, None, None, None, None, None, None])
    buf = BytesIO()
    wb.save(buf)

    result = import_upload(
        db,
        filename="stock.xlsx",
        content_type="",
        raw=buf.getvalue(),
        today=TODAY,
    )

    assert result.total_rows == 1
    assert result.batches_created == 1
    batch = db.execute(select(Batch).where(Batch.batch_number == "IN-1")).scalar_one()
    assert batch.quantity == 12
    assert batch.expiry_date == date(2027, 5, 31)


def test_unreadable_workbook_raises():
    with pytest.raises(ImportRowError):
        parse_upload_to_rows("broken.xlsx", "", b"not a zip file")

def test_template_round_trips_through_parser():
    _, rows = parse_upload_to_rows("template.csv", "text/csv", template_csv().encode("utf-8"))

    assert len(rows) == 1
    row_number, data = rows[0]
    assert row_number == 2
    assert data["medicine_name"] == "Paracetamol 500mg"
    assert data["quantity"] == "200"


def test_row_numbers_count_blank_lines(db):
    text = (
        "Medicine Name,SKU,Category,Batch Number,Quantity,Expiry Date,Selling Price\n"
        "Good One,GOOD-1,Analgesics,G-1,10,31-12-2027,1.00\n"
        "\n"
        ",,,,,,\n"
        "Bad Qty,BAD-1,Analgesics,B-1,lots,31-12-2027,1.00\n"
        ",NONAME-1,Analgesics,N-1,5,31-12-2027,1.00\n"
    )
    result = _upload(db, text)

    assert result.total_rows == 3
    assert sorted((e.row, e.sku) for e in result.errors) == [(5, "BAD-1"), (6, "NONAME-1")]


def test_xlsx_row_numbers_count_blank_rows(db):
    wb = Workbook()
    ws = wb.active
    ws.append(["Medicine Name", "SKU", "Category", "Batch Number", "Quantity", "Expiry Date", "Selling Price"])
    ws.append(["Good One", "GOOD-1", "Analgesics", "G-1", 10, date(2027, 12, 31), 1.0])
    ws.append([None, None, None, None, None, None, None])
    ws.append(["Bad Qty", "BAD-1", "Analgesics", "B-1", "lots", date(2027, 12, 31), 1.0])
    buf = BytesIO()
    wb.save(buf)

    result = import_upload(db, filename="stock.xlsx", content_type="", raw=buf.getvalue(), today=TODAY)

    assert [(e.row, e.sku) for e in result.errors] == [(4, "BAD-1")]


def test_over_long_values_are_row_errors(db):
    long_name = "A" * 300
    text = (
        "Medicine Name,SKU,Category,Batch Number,Quantity,Expiry Date,Selling Price,Notes\n"
        f"{long_name},LONG-1,Analgesics,L-1,10,31-12-2027,1.00,\n"
        f"Short Name,LONG-2,Analgesics,{'B' * 101},10,31-12-2027,1.00,\n"
        f"Notes Too Long,LONG-3,Analgesics,L-3,10,31-12-2027,1.00,{'n' * 501}\n"
        "Fine,FINE-1,Analgesics,F-1,10,31-12-2027,1.00,\n"
    )
    result = _upload(db, text)

    assert result.batches_created == 1
    assert result.rows_skipped == 3
    assert [(e.row, e.sku) for e in result.errors] == [(2, "LONG-1"), (3, "LONG-2"), (4, "LONG-3")]
    assert result.errors[0].message == "Medicine name is longer than 255 characters"
    assert result.errors[1].message == "Batch number is longer than 100 characters"
    assert db.execute(select(func.count(Medicine.id))).scalar_one() == 1


def test_rejected_values_skip_only_that_row(db, monkeypatch):
    text = (
        "Medicine Name,SKU,Category,Batch Number,Quantity,Expiry Date,Selling Price\n"
        "Huge,HUGE-1,Analgesics,H-1,10,31-12-2027,1.00\n"
        "Fine,FINE-1,Analgesics,F-1,10,31-12-2027,1.00\n"
    )
    real_create_batch = import_service.create_batch

    def rejecting_create_batch(session, **kwargs):
        if kwargs["batch_number"] == "H-1":
            raise DataError("INSERT INTO batches", {}, Exception("integer out of range"))
        return real_create_batch(session, **kwargs)

    monkeypatch.setattr(import_service, "create_batch", rejecting_create_batch)
    result = _upload(db, text)

    assert result.batches_created == 1
    assert result.medicines_created == 1
    assert [(e.row, e.sku) for e in result.errors] == [(2, "HUGE-1")]
    assert result.errors[0].message == "Rejected value: integer out of range"
    assert db.execute(select(Medicine.sku)).scalars().all() == ["FINE-1"]
