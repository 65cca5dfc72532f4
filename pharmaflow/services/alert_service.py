"""
Alert classification over ledger snapshots.

`stock_severity` and `expiry_severity` are the only place severity thresholds
live; analytics, the digest and the HTTP layer all call them.
"""
import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Literal

from sqlalchemy import select
from sqlalchemy.orm import Session

from pharmaflow.core.clock import utc_now
from pharmaflow.core.money import money_float
from pharmaflow.models.alert import Alert
from pharmaflow.models.batch import BATCH_STATUS_ACTIVE, Batch
from pharmaflow.models.catalog import Medicine
from pharmaflow.services.ledger_service import stock_by_medicine

logger = logging.getLogger("pharmaflow.alerts")

StockSeverity = Literal["out-of-stock", "critical", "warning"]
ExpirySeverity = Literal["expired", "critical", "warning", "info"]
AlertKind = Literal["stock", "expiry"]

EXPIRY_CRITICAL_DAYS = 7
EXPIRY_WARNING_DAYS = 30
EXPIRY_INFO_DAYS = 90
DIGEST_EXPIRY_SEVERITIES = {"critical", "warning"}

_SEVERITY_RANK = {"out-of-stock": 0, "expired": 0, "critical": 1, "warning": 2, "info": 3}

_STOCK_ALERT_TYPES = {
    "out-of-stock": "out_of_stock",
    "critical": "low_stock",
    "warning": "low_stock",
}
_EXPIRY_ALERT_TYPES = {
    "expired": "expired",
    "critical": "expiry_critical",
    "warning": "expiry_warning",
    "info": "expiry_info",
}
_SUGGESTED_ACTIONS = {
    "out_of_stock": "Reorder from supplier",
    "low_stock": "Reorder before stock runs out",
    "expired": "Dispose of the batch",
    "expiry_critical": "Dispense first or return to supplier",
    "expiry_warning": "Prioritise in FEFO dispensing",
    "expiry_info": "Monitor",
}


def stock_severity(current_stock: int, reorder_level: int) -> StockSeverity | None:
    if current_stock == 0:
        return "out-of-stock"
    if current_stock < reorder_level * 0.5:
        return "critical"
    if current_stock < reorder_level:
        return "warning"
    return None


def days_until_expiry(expiry_date: date, today: date) -> int:
    return (expiry_date - today).days


def expiry_severity(days: int) -> ExpirySeverity | None:
    if days < 0:
        return "expired"
    if days <= EXPIRY_CRITICAL_DAYS:
        return "critical"
    if days <= EXPIRY_WARNING_DAYS:
        return "warning"
    if days <= EXPIRY_INFO_DAYS:
        return "info"
    return None


def batch_expiry_severity(quantity: int, expiry_date: date, today: date) -> ExpirySeverity | None:
    # Empty batches carry no value at risk.
    if quantity <= 0:
        return None
    return expiry_severity(days_until_expiry(expiry_date, today))


@dataclass(frozen=True)
class ClassifiedAlert:
    kind: AlertKind
    type: str
    severity: str
    title: str
    message: str
    suggested_action: str
    medicine_id: str
    medicine_name: str
    sku: str
    batch_id: str | None = None
    batch_number: str | None = None
    current_stock: int | None = None
    reorder_level: int | None = None
    quantity: int | None = None
    expiry_date: date | None = None
    days_until_expiry: int | None = None
    value_at_risk: float | None = None

    @property
    def key(self) -> tuple[str, str, str | None]:
        return (self.kind, self.medicine_id, self.batch_id)

    def data(self) -> dict:
        payload = asdict(self)
        if self.expiry_date is not None:
            payload["expiry_date"] = self.expiry_date.isoformat()
        return payload


def _stock_alert(medicine: Medicine, current_stock: int) -> ClassifiedAlert | None:
    severity = stock_severity(current_stock, medicine.reorder_level)
    if severity is None:
        return None
    alert_type = _STOCK_ALERT_TYPES[severity]
    if severity == "out-of-stock":
        title = f"{medicine.name} is out of stock"
        message = f"Out of stock (reorder level {medicine.reorder_level})"
    else:
        title = f"{medicine.name} is running low"
        message = f"Only {current_stock} units left (reorder level {medicine.reorder_level})"
    return ClassifiedAlert(
        kind="stock",
        type=alert_type,
        severity=severity,
        title=title,
        message=message,
        suggested_action=_SUGGESTED_ACTIONS[alert_type],
        medicine_id=medicine.id,
        medicine_name=medicine.name,
        sku=medicine.sku,
        current_stock=current_stock,
        reorder_level=medicine.reorder_level,
    )


def _expiry_alert(batch: Batch, medicine: Medicine, today: date) -> ClassifiedAlert | None:
    severity = batch_expiry_severity(batch.quantity, batch.expiry_date, today)
    if severity is None:
        return None
    days = days_until_expiry(batch.expiry_date, today)
    alert_type = _EXPIRY_ALERT_TYPES[severity]
    if days < 0:
        message = f"Batch {batch.batch_number} expired {abs(days)} days ago"
    else:
        message = f"Batch {batch.batch_number} expires in {days} days"
    return ClassifiedAlert(
        kind="expiry",
        type=alert_type,
        severity=severity,
        title=f"{medicine.name} batch {batch.batch_number}",
        message=message,
        suggested_action=_SUGGESTED_ACTIONS[alert_type],
        medicine_id=medicine.id,
        medicine_name=medicine.name,
        sku=medicine.sku,
        batch_id=batch.id,
        batch_number=batch.batch_number,
        quantity=batch.quantity,
        expiry_date=batch.expiry_date,
        days_until_expiry=days,
        value_at_risk=money_float(Decimal(batch.quantity) * (batch.cost_price or Decimal("0"))),
    )


def classify_stock_alerts(db: Session) -> list[ClassifiedAlert]:
    medicines = db.execute(
        select(Medicine).where(Medicine.is_active.is_(True)).order_by(Medicine.name.asc())
    ).scalars().all()
    if not medicines:
        return []
    stock = stock_by_medicine(db, [m.id for m in medicines])
    alerts = [_stock_alert(m, stock.get(m.id, 0)) for m in medicines]
    return [a for a in alerts if a is not None]


def classify_expiry_alerts(db: Session, today: date) -> list[ClassifiedAlert]:
    horizon = today + timedelta(days=EXPIRY_INFO_DAYS)
    rows = db.execute(
        select(Batch, Medicine)
        .join(Medicine, Medicine.id == Batch.medicine_id)
        .where(
            Batch.status == BATCH_STATUS_ACTIVE,
            Batch.quantity > 0,
            Batch.expiry_date <= horizon,
        )
        .order_by(Batch.expiry_date.asc(), Batch.created_at.asc())
    ).all()
    alerts = [_expiry_alert(batch, medicine, today) for batch, medicine in rows]
    return [a for a in alerts if a is not None]


def classify_alerts(
    db: Session,
    today: date,
    *,
    kind: AlertKind | None = None,
    severity: str | None = None,
) -> list[ClassifiedAlert]:
    alerts: list[ClassifiedAlert] = []
    if kind in (None, "stock"):
        alerts.extend(classify_stock_alerts(db))
    if kind in (None, "expiry"):
        alerts.extend(classify_expiry_alerts(db, today))
    if severity is not None:
        alerts = [a for a in alerts if a.severity == severity]
    alerts.sort(
        key=lambda a: (
            _SEVERITY_RANK.get(a.severity, 9),
            a.days_until_expiry if a.days_until_expiry is not None else 0,
            a.medicine_name.lower(),
        )
    )
    return alerts


@dataclass
class MaterializeResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    resolved: int = 0


def _alert_kind(alert_type: str) -> AlertKind:
    return "stock" if alert_type in _STOCK_ALERT_TYPES.values() else "expiry"


def materialize_alerts(db: Session, today: date, *, now: datetime | None = None) -> MaterializeResult:
    """
    Sync the `alerts` table with the current classification. Open rows are
    matched on (kind, medicine, batch): changed ones are updated in place,
    vanished conditions are resolved, new ones are inserted.
    """
    now = now or utc_now()
    current = {alert.key: alert for alert in classify_alerts(db, today)}
    open_rows = db.execute(select(Alert).where(Alert.is_resolved.is_(False))).scalars().all()

    result = MaterializeResult()
    seen: set[tuple[str, str, str | None]] = set()
    for row in open_rows:
        key = (_alert_kind(row.type), row.medicine_id, row.batch_id)
        alert = current.get(key)
        if alert is None or key in seen:
            row.is_resolved = True
            row.resolved_at = now
            result.resolved += 1
            continue
        seen.add(key)
        if (row.type, row.severity, row.message) == (alert.type, alert.severity, alert.message):
            result.unchanged += 1
            continue
        if row.severity != alert.severity:
            row.is_read = False
        row.type = alert.type
        row.severity = alert.severity
        row.title = alert.title
        row.message = alert.message
        row.data = alert.data()
        row.updated_at = now
        result.updated += 1

    for key, alert in current.items():
        if key in seen:
            continue
        db.add(
            Alert(
                id=str(uuid.uuid4()),
                type=alert.type,
                severity=alert.severity,
                title=alert.title,
                message=alert.message,
                medicine_id=alert.medicine_id,
                batch_id=alert.batch_id,
                data=alert.data(),
                created_at=now,
            )
        )
        result.created += 1

    db.flush()
    logger.info(json.dumps({"event": "alerts.materialize", **asdict(result)}))
    return result


def build_daily_digest(db: Session, today: date) -> dict:
    """Payload for the notification dispatcher: low stock plus stock expiring within 30 days."""
    low_stock = classify_alerts(db, today, kind="stock")
    expiring = [
        alert
        for alert in classify_alerts(db, today, kind="expiry")
        if alert.severity in DIGEST_EXPIRY_SEVERITIES
    ]
    return {
        "date": today,
        "subject": f"Daily Alert: {len(low_stock)} Low Stock & {len(expiring)} Expiring Items",
        "has_alerts": bool(low_stock or expiring),
        "low_stock": low_stock,
        "expiring": expiring,
    }
