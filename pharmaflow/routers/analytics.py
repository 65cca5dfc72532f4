from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import sessionmaker

from pharmaflow.core.api_docs import error_responses
from pharmaflow.core.deps import get_session_factory
from pharmaflow.schemas.analytics import AnalyticsOut
from pharmaflow.services.analytics_service import WINDOW_CHOICES, aggregate, aggregate_to_csv

router = APIRouter(prefix="/analytics", tags=["analytics"])


def _window_days(
    window_days: int = Query(default=30, description="Trailing window for trend and rankings: 7, 30, 90 or 365"),
) -> int:
    if window_days not in WINDOW_CHOICES:
        raise HTTPException(status_code=422, detail=f"window_days must be one of {list(WINDOW_CHOICES)}")
    return window_days


@router.get(
    "",
    response_model=AnalyticsOut,
    summary="Business analytics",
    description=(
        "Revenue windows, sales counts, inventory valuation, expiry buckets, top sellers and "
        "category mix. `turnover_rate` annualises trailing COGS against current stock value "
        "and is an estimate."
    ),
    responses=error_responses(422, 500),
)
def get_analytics(
    window_days: int = Depends(_window_days),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return aggregate(session_factory, window_days)


@router.get(
    "/export",
    summary="Export analytics as CSV",
    responses=error_responses(422, 500),
)
def export_analytics(
    window_days: int = Depends(_window_days),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    payload = aggregate(session_factory, window_days)
    filename = f"analytics-{window_days}d-{payload['generated_at']:%Y%m%d}.csv"
    return Response(
        content=aggregate_to_csv(payload),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
