from typing import Any

from pharmaflow.schemas.common import ErrorOut

# status -> (error code, description, example details)
_ERROR_DOCS: dict[int, tuple[str, str, Any]] = {
    400: ("bad_request", "Request could not be applied", None),
    404: ("not_found", "Medicine, batch or category not found", {"batch_id": "batch-id"}),
    409: (
        "insufficient_stock",
        "Stock conflict: not enough stock, disposed batch or duplicate record",
        {"batch_id": "batch-id", "medicine_id": "medicine-id", "requested": 30, "available": 12},
    ),
    422: (
        "validation_error",
        "Validation failed",
        [{"field": "quantity", "message": "Input should be greater than 0", "type": "greater_than"}],
    ),
    500: ("internal_error", "Internal server error", None),
}


def _example(status_code: int) -> dict:
    code, description, details = _ERROR_DOCS.get(status_code, ("http_error", "HTTP error", None))
    return {
        "model": ErrorOut,
        "description": description,
        "content": {
            "application/json": {
                "example": {
                    "error": {
                        "code": code,
                        "message": description,
                        "request_id": "request-id",
                        "path": "/example",
                        "details": details,
                    }
                }
            }
        },
    }


def error_responses(*status_codes: int) -> dict[int, dict]:
    """OpenAPI `responses` entries for the shared error envelope."""
    return {status_code: _example(status_code) for status_code in status_codes}
