from pydantic import BaseModel, ConfigDict


class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int
    count: int
    has_next: bool

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "total": 42,
                "limit": 10,
                "offset": 0,
                "count": 10,
                "has_next": True,
            }
        }
    )


class ValidationIssueOut(BaseModel):
    field: str
    message: str
    type: str | None = None


class LedgerIssueOut(BaseModel):
    """Details attached to 404/409 ledger errors; which keys are set depends on the error."""

    batch_id: str | None = None
    medicine_id: str | None = None
    requested: int | None = None
    available: int | None = None


class ErrorDetailOut(BaseModel):
    code: str
    message: str
    request_id: str
    path: str
    details: list[ValidationIssueOut] | LedgerIssueOut | None = None


class ErrorOut(BaseModel):
    error: ErrorDetailOut

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "insufficient_stock",
                    "message": "Insufficient stock for batch 3f0c...: requested 30, available 12",
                    "request_id": "8d8f2b00-6c79-4a45-8ff4-b0a5f2bc4bc2",
                    "path": "/inventory/batches/3f0c.../consume",
                    "details": {
                        "batch_id": "3f0c...",
                        "medicine_id": "9b21...",
                        "requested": 30,
                        "available": 12,
                    },
                }
            }
        }
    )
