from collections import Counter
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pharmaflow.core.api_docs import error_responses
from pharmaflow.core.clock import reporting_today
from pharmaflow.core.deps import get_db
from pharmaflow.schemas.alerts import (
    AlertKindIn,
    AlertListOut,
    AlertOut,
    AlertSeverityIn,
    AlertSummaryOut,
    DigestOut,
    MaterializeOut,
)
from pharmaflow.services.alert_service import (
    ClassifiedAlert,
    build_daily_digest,
    classify_alerts,
    materialize_alerts,
)

router = APIRouter(prefix="/alerts", tags=["alerts"])


def _alert_out(alert: ClassifiedAlert) -> AlertOut:
    return AlertOut(**asdict(alert))


@router.get(
    "",
    response_model=AlertListOut,
    summary="List current stock and expiry alerts",
    description="Computed from the ledger on every call; nothing is persisted.",
    responses=error_responses(422, 500),
)
def list_alerts(
    kind: AlertKindIn | None = Query(default=None),
    severity: AlertSeverityIn | None = Query(default=None),
    db: Session = Depends(get_db),
):
    today = reporting_today()
    alerts = classify_alerts(db, today, kind=kind, severity=severity)
    return AlertListOut(
        date=today,
        summary=AlertSummaryOut(
            total=len(alerts),
            by_severity=dict(Counter(a.severity for a in alerts)),
        ),
        items=[_alert_out(a) for a in alerts],
    )


@router.post(
    "/materialize",
    response_model=MaterializeOut,
    summary="Persist alert rows",
    description="Upserts open alert rows and resolves the ones whose condition cleared. Safe to re-run.",
    responses=error_responses(500),
)
def materialize(db: Session = Depends(get_db)):
    result = materialize_alerts(db, reporting_today())
    db.commit()
    return MaterializeOut(**asdict(result))


@router.get(
    "/digest",
    response_model=DigestOut,
    summary="Daily alert digest",
    description="Payload for the external notification dispatcher: low stock plus stock expiring within 30 days.",
    responses=error_responses(500),
)
def digest(db: Session = Depends(get_db)):
    payload = build_daily_digest(db, reporting_today())
    return DigestOut(
        date=payload["date"],
        subject=payload["subject"],
        has_alerts=payload["has_alerts"],
        low_stock=[_alert_out(a) for a in payload["low_stock"]],
        expiring=[_alert_out(a) for a in payload["expiring"]],
    )
