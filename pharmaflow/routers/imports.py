from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from pharmaflow.core.api_docs import error_responses
from pharmaflow.core.clock import reporting_today
from pharmaflow.core.deps import get_db
from pharmaflow.schemas.imports import ImportErrorOut, ImportResultOut
from pharmaflow.services.import_service import ImportRowError, import_upload, template_csv

router = APIRouter(prefix="/imports", tags=["imports"])

ALLOWED_EXTENSIONS = (".xlsx", ".csv", ".tsv", ".txt")


@router.post(
    "/medicines",
    response_model=ImportResultOut,
    summary="Import medicines and batches",
    description=(
        "Upload an .xlsx or .csv stock sheet. Rows are reconciled one by one; bad rows are "
        "reported and skipped, existing (medicine, batch number) pairs are left untouched."
    ),
    responses=error_responses(400, 422, 500),
)
def import_medicines(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    filename = file.filename or ""
    if not filename.lower().endswith(ALLOWED_EXTENSIONS):
        raise HTTPException(status_code=400, detail="Upload an .xlsx or .csv file")
    raw = file.file.read()
    if not raw:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        result = import_upload(
            db,
            filename=filename,
            content_type=file.content_type or "",
            raw=raw,
            today=reporting_today(),
        )
    except ImportRowError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return ImportResultOut(
        message=result.summary,
        total_rows=result.total_rows,
        medicines_created=result.medicines_created,
        batches_created=result.batches_created,
        batches_skipped=result.batches_skipped,
        rows_skipped=result.rows_skipped,
        categories_auto_created=result.categories_auto_created,
        errors=[ImportErrorOut(row=e.row, sku=e.sku, message=e.message) for e in result.errors],
    )


@router.get(
    "/template",
    summary="Download import template",
    responses=error_responses(500),
)
def download_template():
    return Response(
        content=template_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="medicine-import-template.csv"'},
    )
