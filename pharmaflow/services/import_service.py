"""
Bulk stock import: spreadsheet/CSV rows reconciled against the catalog and the
batch ledger.

Rows are parsed once into `ImportRow` records; `reconcile` then walks them in
order, committing per row so a crash mid-file leaves every earlier row in
place. Bad rows are collected as errors and never abort the import.
"""
from __future__ import annotations

import csv
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from io import BytesIO, StringIO
from typing import Any, Dict, List, Optional, Tuple

from openpyxl import load_workbook
from sqlalchemy import func, select
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.orm import Session

from pharmaflow.core.config import settings
from pharmaflow.core.id_utils import generate_batch_number, generate_sku
from pharmaflow.core.money import to_money
from pharmaflow.models.batch import Batch
from pharmaflow.models.catalog import Category, Medicine, Supplier
from pharmaflow.services.ledger_service import create_batch, find_batch

logger = logging.getLogger("pharmaflow.imports")

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

TEMPLATE_HEADERS = [
    "Medicine Name",
    "SKU",
    "Category",
    "Batch Number",
    "Quantity",
    "Expiry Date",
    "Selling Price",
    "Generic Name",
    "Manufacturer",
    "Cost Price",
    "Supplier",
    "Location",
    "Barcode",
    "Requires Prescription",
    "Notes",
    "Manufacturing Date",
    "Dosage Form",
    "Strength",
    "Reorder Level",
    "Max Stock Level",
    "HSN Code",
]

TEMPLATE_SAMPLE_ROW = [
    "Paracetamol 500mg",
    "PARA-500",
    "Analgesics",
    "BT-2024-001",
    "200",
    "31-12-2026",
    "2.50",
    "Paracetamol",
    "Acme Pharma",
    "1.80",
    "Acme Distributors",
    "Shelf A1",
    "8901234567890",
    "no",
    "",
    "01-01-2024",
    "tablet",
    "500mg",
    "50",
    "500",
    "3004",
]

HEADER_ALIASES = {
    "medicine": "medicine_name",
    "name": "medicine_name",
    "stock": "quantity",
    "units": "quantity",
    "qty": "quantity",
    "batch": "batch_number",
    "batch_no": "batch_number",
    "mfg_date": "manufacturing_date",
    "mfg": "manufacturing_date",
    "expiry": "expiry_date",
    "exp_date": "expiry_date",
    "cost": "cost_price",
    "purchase_price": "cost_price",
    "price": "selling_price",
    "mrp": "selling_price",
    "storage": "location",
    "generic": "generic_name",
    "rx": "requires_prescription",
    "prescription": "requires_prescription",
    "form": "dosage_form",
    "min_stock": "reorder_level",
    "max_stock": "max_stock_level",
    "max_level": "max_stock_level",
    "hsn": "hsn_code",
}

NA_SET = {"", "-", "na", "n/a", "null", "none", "nil"}

EXCEL_EPOCH = date(1899, 12, 30)
EXCEL_SERIAL_MIN = 1000
EXCEL_SERIAL_MAX = 100000
DEFAULT_SHELF_LIFE_YEARS = 2

_SCIENTIFIC_RE = re.compile(r"^[+-]?\d+(\.\d+)?[eE][+-]?\d+$")
_DAY_FIRST_RE = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})$")

# ImportRow text field -> column that bounds its length
_TEXT_COLUMNS = {
    "medicine_name": Medicine.__table__.c.name,
    "sku": Medicine.__table__.c.sku,
    "category": Category.__table__.c.name,
    "batch_number": Batch.__table__.c.batch_number,
    "generic_name": Medicine.__table__.c.generic_name,
    "manufacturer": Medicine.__table__.c.manufacturer,
    "supplier": Supplier.__table__.c.name,
    "location": Batch.__table__.c.location,
    "barcode": Medicine.__table__.c.barcode,
    "notes": Medicine.__table__.c.notes,
    "dosage_form": Medicine.__table__.c.dosage_form,
    "strength": Medicine.__table__.c.strength,
    "hsn_code": Medicine.__table__.c.hsn_code,
}


class ImportRowError(ValueError):
    pass


def _norm_header(h: Any) -> str:
    s = ("" if h is None else str(h)).strip().lower()
    s = s.replace("\ufeff", "")
    s = re.sub(r"[\s\-]+", "_", s)
    return HEADER_ALIASES.get(s, s)


def _safe_text(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    if s.lower() in NA_SET:
        return None
    return s


def _parse_bool(v: Any) -> bool:
    s = _safe_text(v)
    if s is None:
        return False
    return s.lower() in {"1", "true", "t", "yes", "y"}


def _parse_decimal(v: Any) -> Optional[Decimal]:
    """
    Safe Decimal parser:
    - accepts 1,234.50
    - strips a leading currency symbol
    - empty/NA -> None
    """
    if v is None:
        return None
    if isinstance(v, Decimal):
        return v
    if isinstance(v, (int, float)):
        return Decimal(str(v))

    s = _safe_text(v)
    if s is None:
        return None
    s = s.replace(",", "").lstrip("$₹€£").strip()
    try:
        return Decimal(s)
    except InvalidOperation as e:
        raise ImportRowError(f"Invalid number '{v}'") from e


def _parse_int(v: Any) -> Optional[int]:
    d = _parse_decimal(v)
    if d is None:
        return None
    if d != d.to_integral_value():
        raise ImportRowError(f"Expected a whole number, got '{v}'")
    return int(d)


def normalize_barcode(value: Any) -> Optional[str]:
    """
    Spreadsheets render long numeric barcodes as floats; `8.90123E+12` has
    already lost digits and is dropped, `8901234567890.0` is trimmed.
    """
    s = _safe_text(value)
    if s is None:
        return None
    if _SCIENTIFIC_RE.match(s):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if s.endswith(".0") and s[:-2].isdigit():
        return s[:-2]
    return s


def parse_flexible_date(value: Any, today: date) -> date:
    """
    Accepted, in order: date/datetime objects, spreadsheet serial days,
    DD-MM-YYYY or DD/MM/YYYY, ISO-like YYYY-MM-DD or YYYY/MM/DD. Anything
    else falls back to `today`.
    """
    if value is None:
        return today
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text or text.lower() in NA_SET:
        return today

    try:
        serial = float(text)
    except ValueError:
        serial = None
    if serial is not None:
        if EXCEL_SERIAL_MIN <= serial <= EXCEL_SERIAL_MAX:
            return EXCEL_EPOCH + timedelta(days=int(serial))
        return today

    m = _DAY_FIRST_RE.match(text)
    if m:
        day, month, year = (int(g) for g in m.groups())
        try:
            return date(year, month, day)
        except ValueError:
            pass

    head = text[:10]
    for fmt in ("%Y-%m-%d", "%Y/%m/%d"):
        try:
            return datetime.strptime(head, fmt).date()
        except ValueError:
            continue
    return today


def _add_years(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # 29 Feb into a non-leap year
        return value.replace(year=value.year + years, day=28)


@dataclass
class ImportRow:
    row_number: int
    medicine_name: Optional[str]
    sku: Optional[str]
    category: Optional[str]
    batch_number: Optional[str]
    quantity: Optional[int]
    expiry_date: Any = None
    selling_price: Optional[Decimal] = None
    generic_name: Optional[str] = None
    manufacturer: Optional[str] = None
    cost_price: Optional[Decimal] = None
    supplier: Optional[str] = None
    location: Optional[str] = None
    barcode: Optional[str] = None
    requires_prescription: bool = False
    notes: Optional[str] = None
    manufacturing_date: Any = None
    dosage_form: Optional[str] = None
    strength: Optional[str] = None
    reorder_level: Optional[int] = None
    max_stock_level: Optional[int] = None
    hsn_code: Optional[str] = None

    @classmethod
    def from_mapping(cls, row_number: int, data: Dict[str, Any]) -> "ImportRow":
        """Build from a header-normalized row. Raises ImportRowError on unparsable numbers or over-long text."""
        row = cls(
            row_number=row_number,
            medicine_name=_safe_text(data.get("medicine_name")),
            sku=_safe_text(data.get("sku")),
            category=_safe_text(data.get("category")),
            batch_number=_safe_text(data.get("batch_number")),
            quantity=_parse_int(data.get("quantity")),
            expiry_date=data.get("expiry_date"),
            selling_price=_parse_decimal(data.get("selling_price")),
            generic_name=_safe_text(data.get("generic_name")),
            manufacturer=_safe_text(data.get("manufacturer")),
            cost_price=_parse_decimal(data.get("cost_price")),
            supplier=_safe_text(data.get("supplier")),
            location=_safe_text(data.get("location")),
            barcode=normalize_barcode(data.get("barcode")),
            requires_prescription=_parse_bool(data.get("requires_prescription")),
            notes=_safe_text(data.get("notes")),
            manufacturing_date=data.get("manufacturing_date"),
            dosage_form=_safe_text(data.get("dosage_form")),
            strength=_safe_text(data.get("strength")),
            reorder_level=_parse_int(data.get("reorder_level")),
            max_stock_level=_parse_int(data.get("max_stock_level")),
            hsn_code=_safe_text(data.get("hsn_code")),
        )
        for name, column in _TEXT_COLUMNS.items():
            value = getattr(row, name)
            if value is not None and len(value) > column.type.length:
                label = name.replace("_", " ").capitalize()
                raise ImportRowError(f"{label} is longer than {column.type.length} characters")
        return row


@dataclass
class RowError:
    row: int
    sku: Optional[str]
    message: str


@dataclass
class ImportResult:
    total_rows: int = 0
    medicines_created: int = 0
    batches_created: int = 0
    batches_skipped: int = 0
    rows_skipped: int = 0
    errors: List[RowError] = field(default_factory=list)
    categories_auto_created: List[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        skipped = self.batches_skipped + self.rows_skipped
        return f"{self.batches_created} created, {skipped} skipped, {len(self.errors)} errors"


def parse_upload_to_rows(
    filename: str, content_type: str, raw: bytes
) -> Tuple[str, List[Tuple[int, Dict[str, Any]]]]:
    """
    Returns: (file_type, [(sheet_row_number, row_dict_with_normalized_headers)])
    Supports: CSV/TSV/TXT and XLSX

    Row numbers count the header as row 1 and include blank rows, so they
    match what the user sees in the spreadsheet.
    """
    name = (filename or "").lower()

    if name.endswith(".xlsx") or content_type == XLSX_CONTENT_TYPE:
        try:
            wb = load_workbook(BytesIO(raw), read_only=True, data_only=True)
        except Exception as e:
            raise ImportRowError("Could not read the Excel workbook") from e
        ws = wb.active

        rows = list(ws.iter_rows(values_only=True))
        wb.close()
        if not rows:
            return ("xlsx", [])

        headers = [_norm_header(h) for h in rows[0]]
        out: List[Tuple[int, Dict[str, Any]]] = []
        for row_number, r in enumerate(rows[1:], start=2):
            if all(v is None or str(v).strip() == "" for v in r):
                continue
            d = {}
            for j, h in enumerate(headers):
                if not h:
                    continue
                d[h] = r[j] if j < len(r) else None
            out.append((row_number, d))
        return ("xlsx", out)

    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = raw.decode("latin-1", errors="replace")

    sample = text[:2048]
    try:
        delim = csv.Sniffer().sniff(sample, delimiters=[",", "\t", ";", "|"]).delimiter
    except csv.Error:
        delim = ","

    reader = csv.DictReader(StringIO(text), delimiter=delim)
    out = []
    for row in reader:
        d = {_norm_header(k): v for k, v in (row or {}).items() if k is not None}
        if all(_safe_text(v) is None for v in d.values()):
            continue
        # physical line; DictReader silently skips empty lines
        out.append((reader.line_num, d))
    return ("csv", out)


def rows_from_mappings(
    mappings: List[Tuple[int, Dict[str, Any]]],
) -> Tuple[List[ImportRow], List[RowError]]:
    """Convert numbered parsed rows to ImportRow, collecting per-row parse errors."""
    rows: List[ImportRow] = []
    errors: List[RowError] = []
    for row_number, data in mappings:
        try:
            rows.append(ImportRow.from_mapping(row_number, data))
        except ImportRowError as exc:
            errors.append(RowError(row=row_number, sku=_safe_text(data.get("sku")), message=str(exc)))
    return rows, errors


def template_csv() -> str:
    buf = StringIO()
    writer = csv.writer(buf)
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerow(TEMPLATE_SAMPLE_ROW)
    return buf.getvalue()


class _Reconciler:
    def __init__(self, db: Session, today: date):
        self.db = db
        self.today = today
        self.categories: Dict[str, str] = {}
        self.suppliers: Dict[str, str] = {}
        self.default_supplier_id: Optional[str] = None

    def load_categories(self) -> None:
        for cid, name in self.db.execute(select(Category.id, Category.name)).all():
            self.categories[name.strip().lower()] = cid

    def create_missing_categories(self, rows: List[ImportRow]) -> List[str]:
        wanted: Dict[str, str] = {}
        for row in rows:
            if row.category and row.category.lower() not in self.categories:
                wanted.setdefault(row.category.lower(), row.category)
        if not wanted:
            return []

        created = []
        for key, name in wanted.items():
            category = Category(
                id=str(uuid.uuid4()),
                name=name,
                description="Auto-created during import",
                color=settings.auto_category_color,
            )
            self.db.add(category)
            self.categories[key] = category.id
            created.append(name)
        self.db.commit()
        return created

    def category_id(self, row: ImportRow) -> str:
        name = row.category or settings.import_default_category
        cid = self.categories.get(name.lower())
        if cid is None:
            raise ImportRowError(f"Category '{name}' does not exist")
        return cid

    def supplier_id(self, row: ImportRow) -> str:
        if row.supplier:
            key = row.supplier.lower()
            if key not in self.suppliers:
                found = self.db.execute(
                    select(Supplier.id).where(func.lower(Supplier.name) == key).limit(1)
                ).scalar_one_or_none()
                if found is not None:
                    self.suppliers[key] = found
            if key in self.suppliers:
                return self.suppliers[key]
        return self.default_supplier()

    def default_supplier(self) -> str:
        if self.default_supplier_id is not None:
            return self.default_supplier_id
        name = settings.import_default_supplier
        found = self.db.execute(
            select(Supplier.id).where(func.lower(Supplier.name) == name.lower()).limit(1)
        ).scalar_one_or_none()
        if found is None:
            supplier = Supplier(id=str(uuid.uuid4()), name=name, is_active=True)
            self.db.add(supplier)
            self.db.flush()
            found = supplier.id
        self.default_supplier_id = found
        return found

    def resolve_dates(self, row: ImportRow) -> Tuple[date, date]:
        if row.manufacturing_date is None or _safe_text(row.manufacturing_date) is None:
            mfg = self.today
        else:
            mfg = parse_flexible_date(row.manufacturing_date, self.today)
        if row.expiry_date is None or _safe_text(row.expiry_date) is None:
            expiry = _add_years(mfg, DEFAULT_SHELF_LIFE_YEARS)
        else:
            expiry = parse_flexible_date(row.expiry_date, self.today)

        if mfg >= expiry:
            reset_expiry = _add_years(self.today, DEFAULT_SHELF_LIFE_YEARS)
            logger.warning(
                json.dumps(
                    {
                        "event": "import.date_reset",
                        "row": row.row_number,
                        "sku": row.sku,
                        "manufacturing_date": mfg.isoformat(),
                        "expiry_date": expiry.isoformat(),
                    }
                )
            )
            return self.today, reset_expiry
        return mfg, expiry

    def resolve_medicine(self, row: ImportRow, category_id: str, supplier_id: str) -> Tuple[Medicine, bool]:
        if row.sku:
            existing = self.db.execute(select(Medicine).where(Medicine.sku == row.sku)).scalar_one_or_none()
            if existing is not None:
                return existing, False

        medicine = Medicine(
            id=str(uuid.uuid4()),
            sku=row.sku or generate_sku(),
            name=row.medicine_name,
            generic_name=row.generic_name,
            category_id=category_id,
            supplier_id=supplier_id,
            dosage_form=(row.dosage_form or "tablet").lower(),
            strength=row.strength,
            manufacturer=row.manufacturer,
            barcode=row.barcode,
            hsn_code=row.hsn_code,
            reorder_level=row.reorder_level if row.reorder_level is not None else settings.default_reorder_level,
            max_stock_level=(
                row.max_stock_level if row.max_stock_level is not None else settings.default_max_stock_level
            ),
            requires_prescription=row.requires_prescription,
            notes=row.notes,
            is_active=True,
        )
        self.db.add(medicine)
        self.db.flush()
        return medicine, True

    def prices(self, row: ImportRow) -> Tuple[Decimal, Decimal]:
        cost = row.cost_price
        selling = row.selling_price
        if cost is None and selling is not None:
            cost = selling / Decimal(str(settings.import_selling_markup))
        if cost is None:
            cost = Decimal(str(settings.import_default_cost_price))
        if selling is None:
            selling = cost * Decimal(str(settings.import_selling_markup))
        if cost < 0 or selling < 0:
            raise ImportRowError("Prices cannot be negative")
        return to_money(cost), to_money(selling)

    def apply(self, row: ImportRow, result: ImportResult) -> None:
        if not row.medicine_name:
            raise ImportRowError("Medicine name is required")
        if row.quantity is not None and row.quantity < 0:
            raise ImportRowError("Quantity cannot be negative")

        category_id = self.category_id(row)
        supplier_id = self.supplier_id(row)
        cost, selling = self.prices(row)
        mfg, expiry = self.resolve_dates(row)
        medicine, medicine_created = self.resolve_medicine(row, category_id, supplier_id)

        batch_number = row.batch_number or generate_batch_number()
        if find_batch(self.db, medicine_id=medicine.id, batch_number=batch_number) is not None:
            result.batches_skipped += 1
        else:
            create_batch(
                self.db,
                medicine_id=medicine.id,
                batch_number=batch_number,
                quantity=row.quantity or 0,
                expiry_date=expiry,
                manufacturing_date=mfg,
                cost_price=cost,
                selling_price=selling,
                supplier_id=supplier_id,
                location=row.location or settings.import_default_location,
                reason="import",
            )
            result.batches_created += 1
        if medicine_created:
            result.medicines_created += 1


def reconcile(
    db: Session,
    rows: List[ImportRow],
    today: date,
    *,
    parse_errors: Optional[List[RowError]] = None,
) -> ImportResult:
    """
    Reconcile parsed rows against the store. Each row is committed on its own;
    a constraint violation or a value the database rejects rolls back that row
    only and is reported as an error. Connection-level errors propagate.
    """
    result = ImportResult(total_rows=len(rows) + len(parse_errors or []))
    result.errors.extend(parse_errors or [])
    result.rows_skipped += len(parse_errors or [])

    rec = _Reconciler(db, today)
    rec.load_categories()
    result.categories_auto_created = rec.create_missing_categories(rows)

    for row in rows:
        counts = (result.medicines_created, result.batches_created, result.batches_skipped)
        try:
            rec.apply(row, result)
            db.commit()
        except ImportRowError as exc:
            db.rollback()
            rec.default_supplier_id = None
            result.rows_skipped += 1
            result.errors.append(RowError(row=row.row_number, sku=row.sku, message=str(exc)))
        except IntegrityError as exc:
            db.rollback()
            rec.default_supplier_id = None
            result.medicines_created, result.batches_created, result.batches_skipped = counts
            result.rows_skipped += 1
            result.errors.append(
                RowError(row=row.row_number, sku=row.sku, message=f"Conflicting record: {exc.orig}")
            )
        except DataError as exc:
            # out-of-range numbers and the like, rejected by the database for this row only
            db.rollback()
            rec.default_supplier_id = None
            result.medicines_created, result.batches_created, result.batches_skipped = counts
            result.rows_skipped += 1
            result.errors.append(
                RowError(row=row.row_number, sku=row.sku, message=f"Rejected value: {exc.orig}")
            )

    logger.info(
        json.dumps(
            {
                "event": "import.completed",
                "rows": result.total_rows,
                "medicines_created": result.medicines_created,
                "batches_created": result.batches_created,
                "batches_skipped": result.batches_skipped,
                "rows_skipped": result.rows_skipped,
                "errors": len(result.errors),
                "categories_auto_created": result.categories_auto_created,
            }
        )
    )
    return result


def import_upload(db: Session, *, filename: str, content_type: str, raw: bytes, today: date) -> ImportResult:
    _, mappings = parse_upload_to_rows(filename, content_type, raw)
    if len(mappings) > settings.import_max_rows:
        raise ImportRowError(f"File has {len(mappings)} rows; the limit is {settings.import_max_rows}")
    rows, parse_errors = rows_from_mappings(mappings)
    return reconcile(db, rows, today, parse_errors=parse_errors)
