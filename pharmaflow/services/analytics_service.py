"""
Time-windowed business metrics over the batch ledger and the sales log.

Each section is computed by its own function against its own session so the
sections can run side by side on a thread pool. Everything here is read-only.
"""
import csv
import json
import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from decimal import Decimal
from io import StringIO

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, sessionmaker

from pharmaflow.core.clock import as_utc, local_midnight_utc, reporting_today, reporting_tz, utc_now
from pharmaflow.core.config import settings
from pharmaflow.core.money import ZERO_MONEY, money_float, to_money
from pharmaflow.db.session import is_single_connection_sqlite
from pharmaflow.models.batch import BATCH_STATUS_ACTIVE, Batch
from pharmaflow.models.catalog import Category, Medicine
from pharmaflow.models.sales import Sale, SaleItem
from pharmaflow.services.alert_service import days_until_expiry, expiry_severity, stock_severity

logger = logging.getLogger("pharmaflow.analytics")

WINDOW_CHOICES = (7, 30, 90, 365)
SALE_STATUS_COMPLETED = "completed"
# Trailing COGS is annualised from a 30-day month.
MONTHS_PER_YEAR = 12
EXPIRY_BUCKETS = (("expiring_30_days", 30), ("expiring_60_days", 60), ("expiring_90_days", 90))


class ReportContext:
    """Calendar boundaries shared by every section, all expressed in UTC."""

    def __init__(self, now: datetime, window_days: int):
        self.now = as_utc(now)
        self.window_days = window_days
        self.today = reporting_today(self.now)

        self.today_start = local_midnight_utc(self.today)
        self.yesterday_start = local_midnight_utc(self.today - timedelta(days=1))
        week_start = self.today - timedelta(days=self.today.weekday())
        self.week_start = local_midnight_utc(week_start)
        self.last_week_start = local_midnight_utc(week_start - timedelta(days=7))
        month_start = self.today.replace(day=1)
        self.month_start = local_midnight_utc(month_start)
        last_month_first = (month_start - timedelta(days=1)).replace(day=1)
        self.last_month_start = local_midnight_utc(last_month_first)

        self.window_start = self.now - timedelta(days=window_days)
        self.previous_window_start = self.now - timedelta(days=2 * window_days)
        self.trend_start_day = self.today - timedelta(days=window_days - 1)


def _sum_between(rows: list[tuple[Decimal, datetime]], start: datetime, end: datetime | None = None) -> Decimal:
    total = ZERO_MONEY
    for amount, created_at in rows:
        ts = as_utc(created_at)
        if ts >= start and (end is None or ts < end):
            total += to_money(amount)
    return total


def revenue_section(db: Session, ctx: ReportContext) -> dict:
    earliest = min(ctx.last_month_start, local_midnight_utc(ctx.trend_start_day))
    rows = db.execute(
        select(Sale.total, Sale.created_at).where(Sale.created_at >= earliest)
    ).all()

    tz = reporting_tz()
    daily: dict[date, Decimal] = {}
    for amount, created_at in rows:
        day = as_utc(created_at).astimezone(tz).date()
        if ctx.trend_start_day <= day <= ctx.today:
            daily[day] = daily.get(day, ZERO_MONEY) + to_money(amount)

    trend = []
    day = ctx.trend_start_day
    while day <= ctx.today:
        trend.append({"date": day, "revenue": money_float(daily.get(day, ZERO_MONEY))})
        day += timedelta(days=1)

    return {
        "today": money_float(_sum_between(rows, ctx.today_start)),
        "yesterday": money_float(_sum_between(rows, ctx.yesterday_start, ctx.today_start)),
        "this_week": money_float(_sum_between(rows, ctx.week_start)),
        "last_week": money_float(_sum_between(rows, ctx.last_week_start, ctx.week_start)),
        "this_month": money_float(_sum_between(rows, ctx.month_start)),
        "last_month": money_float(_sum_between(rows, ctx.last_month_start, ctx.month_start)),
        "daily_trend": trend,
    }


def sales_section(db: Session, ctx: ReportContext) -> dict:
    today_count = int(
        db.execute(select(func.count(Sale.id)).where(Sale.created_at >= ctx.today_start)).scalar_one()
    )
    month_count, month_total = db.execute(
        select(func.count(Sale.id), func.coalesce(func.sum(Sale.total), 0)).where(
            Sale.created_at >= ctx.month_start
        )
    ).one()
    month_count = int(month_count)
    month_total = to_money(month_total)
    average = to_money(month_total / month_count) if month_count else ZERO_MONEY
    return {
        "today_transactions": today_count,
        "this_month_transactions": month_count,
        "avg_transaction_value": float(average),
    }


def _fulfillment_rate(db: Session) -> float:
    total, with_status, completed = db.execute(
        select(
            func.count(Sale.id),
            func.count(Sale.status),
            func.coalesce(func.sum(case((Sale.status == SALE_STATUS_COMPLETED, 1), else_=0)), 0),
        )
    ).one()
    if not total or not with_status:
        return 100.0
    return round(int(completed) / int(total) * 100, 1)


def inventory_section(db: Session, ctx: ReportContext) -> dict:
    medicines = db.execute(
        select(Medicine.id, Medicine.reorder_level).where(Medicine.is_active.is_(True))
    ).all()
    stock_rows = db.execute(
        select(
            Batch.medicine_id,
            func.coalesce(func.sum(Batch.quantity), 0),
            func.coalesce(func.sum(Batch.quantity * Batch.cost_price), 0),
        )
        .where(Batch.status == BATCH_STATUS_ACTIVE)
        .group_by(Batch.medicine_id)
    ).all()
    stock = {mid: (int(qty), to_money(value)) for mid, qty, value in stock_rows}

    # Stock still on the shelf counts even if its medicine was delisted.
    total_value = sum((value for _, value in stock.values()), ZERO_MONEY)
    out_of_stock = 0
    low_stock = 0
    for medicine_id, reorder_level in medicines:
        qty, _ = stock.get(medicine_id, (0, ZERO_MONEY))
        severity = stock_severity(qty, reorder_level)
        if severity == "out-of-stock":
            out_of_stock += 1
        elif severity is not None:
            low_stock += 1

    cogs_start = ctx.now - timedelta(days=settings.turnover_cogs_days)
    cogs = db.execute(
        select(func.coalesce(func.sum(SaleItem.quantity * Batch.cost_price), 0))
        .select_from(SaleItem)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .join(Batch, Batch.id == SaleItem.batch_id)
        .where(Sale.created_at >= cogs_start)
    ).scalar_one()
    cogs = to_money(cogs)

    # Current stock value stands in for average inventory; an estimate.
    turnover = round(float(cogs) * MONTHS_PER_YEAR / float(total_value), 1) if total_value > 0 else 0.0

    total_medicines = len(medicines)
    stockout_rate = out_of_stock / total_medicines * 100 if total_medicines else 0.0
    return {
        "total_value": float(to_money(total_value)),
        "total_medicines": total_medicines,
        "out_of_stock": out_of_stock,
        "low_stock": low_stock,
        "turnover_rate": turnover,
        "stock_availability": round(100 - stockout_rate, 1),
        "fulfillment_rate": _fulfillment_rate(db),
    }


def expiry_section(db: Session, ctx: ReportContext) -> dict:
    horizon = ctx.today + timedelta(days=EXPIRY_BUCKETS[-1][1])
    rows = db.execute(
        select(Batch.quantity, Batch.selling_price, Batch.expiry_date).where(
            Batch.status == BATCH_STATUS_ACTIVE,
            Batch.quantity > 0,
            Batch.expiry_date <= horizon,
        )
    ).all()

    buckets = {name: {"count": 0, "value": ZERO_MONEY} for name, _ in EXPIRY_BUCKETS}
    buckets["expired"] = {"count": 0, "value": ZERO_MONEY}
    for quantity, selling_price, expiry_date in rows:
        days = days_until_expiry(expiry_date, ctx.today)
        value = to_money(Decimal(quantity) * to_money(selling_price))
        if expiry_severity(days) == "expired":
            name = "expired"
        else:
            name = next(n for n, limit in EXPIRY_BUCKETS if days <= limit)
        buckets[name]["count"] += 1
        buckets[name]["value"] += value

    return {
        name: {"count": bucket["count"], "value": money_float(bucket["value"])}
        for name, bucket in buckets.items()
    }


def _medicine_totals(db: Session, start: datetime, end: datetime) -> dict[str, tuple[str, int, Decimal]]:
    rows = db.execute(
        select(
            Medicine.id,
            Medicine.name,
            func.coalesce(func.sum(SaleItem.quantity), 0),
            func.coalesce(func.sum(SaleItem.line_total), 0),
        )
        .select_from(SaleItem)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .join(Batch, Batch.id == SaleItem.batch_id)
        .join(Medicine, Medicine.id == Batch.medicine_id)
        .where(Sale.created_at >= start, Sale.created_at < end)
        .group_by(Medicine.id, Medicine.name)
    ).all()
    return {mid: (name, int(units), to_money(revenue)) for mid, name, units, revenue in rows}


def _growth(current: Decimal, previous: Decimal) -> float:
    if previous > 0:
        return round(float((current - previous) / previous * 100), 1)
    return 100.0 if current > 0 else 0.0


def top_sellers_section(db: Session, ctx: ReportContext) -> list[dict]:
    current = _medicine_totals(db, ctx.window_start, ctx.now)
    if not current:
        return []
    previous = _medicine_totals(db, ctx.previous_window_start, ctx.window_start)

    ranked = sorted(current.items(), key=lambda kv: (-kv[1][2], -kv[1][1], kv[1][0].lower()))
    out = []
    for medicine_id, (name, units, revenue) in ranked[: settings.analytics_top_sellers_limit]:
        prev_revenue = previous.get(medicine_id, (name, 0, ZERO_MONEY))[2]
        out.append(
            {
                "medicine_id": medicine_id,
                "name": name,
                "units": units,
                "revenue": float(revenue),
                "growth": _growth(revenue, prev_revenue),
            }
        )
    return out


def category_breakdown_section(db: Session, ctx: ReportContext) -> list[dict]:
    rows = db.execute(
        select(
            Category.id,
            Category.name,
            Category.color,
            func.coalesce(func.sum(SaleItem.quantity), 0),
            func.coalesce(func.sum(SaleItem.line_total), 0),
        )
        .select_from(SaleItem)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .join(Batch, Batch.id == SaleItem.batch_id)
        .join(Medicine, Medicine.id == Batch.medicine_id)
        .join(Category, Category.id == Medicine.category_id)
        .where(Sale.created_at >= ctx.window_start, Sale.created_at < ctx.now)
        .group_by(Category.id, Category.name, Category.color)
    ).all()
    if not rows:
        return []

    totals = [
        (name, color or settings.auto_category_color, int(units), to_money(revenue))
        for _, name, color, units, revenue in rows
    ]
    grand_total = sum((revenue for *_, revenue in totals), ZERO_MONEY)
    totals.sort(key=lambda t: (-t[3], t[0].lower()))

    out = []
    for name, color, units, revenue in totals[: settings.analytics_top_categories_limit]:
        share = round(float(revenue / grand_total * 100)) if grand_total > 0 else 0
        out.append(
            {
                "name": name,
                "value": share,
                "revenue": float(revenue),
                "units": units,
                "color": color,
            }
        )
    return out


SECTIONS: dict[str, Callable[[Session, ReportContext], object]] = {
    "revenue": revenue_section,
    "sales": sales_section,
    "inventory": inventory_section,
    "expiry": expiry_section,
    "top_sellers": top_sellers_section,
    "category_breakdown": category_breakdown_section,
}


def _run_section(session_factory: sessionmaker, fn: Callable[[Session, ReportContext], object], ctx: ReportContext):
    with session_factory() as db:
        return fn(db, ctx)


def aggregate(
    session_factory: sessionmaker,
    window_days: int = 30,
    *,
    now: datetime | None = None,
    max_workers: int | None = None,
) -> dict:
    """
    Build the full analytics payload. Sections run in parallel, one session
    each, unless the bound engine is a single-connection in-memory SQLite
    database.
    """
    if window_days not in WINDOW_CHOICES:
        raise ValueError(f"window_days must be one of {WINDOW_CHOICES}")

    ctx = ReportContext(now or utc_now(), window_days)
    started = time.perf_counter()
    workers = max_workers or settings.analytics_max_workers
    parallel = workers > 1 and not is_single_connection_sqlite(session_factory.kw.get("bind"))

    if parallel:
        with ThreadPoolExecutor(max_workers=min(workers, len(SECTIONS))) as executor:
            futures = {
                name: executor.submit(_run_section, session_factory, fn, ctx)
                for name, fn in SECTIONS.items()
            }
            results = {name: future.result() for name, future in futures.items()}
    else:
        results = {name: _run_section(session_factory, fn, ctx) for name, fn in SECTIONS.items()}

    logger.info(
        json.dumps(
            {
                "event": "analytics.aggregate",
                "window_days": window_days,
                "parallel": parallel,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            }
        )
    )
    return {
        **results,
        "window_days": window_days,
        "generated_at": ctx.now,
    }


def _flatten(prefix: str, value, out: list[tuple[str, object]]) -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            _flatten(f"{prefix}.{key}" if prefix else key, item, out)
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _flatten(f"{prefix}.{index}", item, out)
    elif isinstance(value, (date, datetime)):
        out.append((prefix, value.isoformat()))
    else:
        out.append((prefix, value))


def aggregate_to_csv(payload: dict) -> str:
    rows: list[tuple[str, object]] = []
    _flatten("", payload, rows)
    buf = StringIO()
    writer = csv.writer(buf)
    writer.writerow(["metric", "value"])
    writer.writerows(rows)
    return buf.getvalue()
