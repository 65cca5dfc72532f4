from typing import Optional

from pydantic import BaseModel, ConfigDict


class ImportErrorOut(BaseModel):
    row: int
    sku: Optional[str] = None
    message: str


class ImportResultOut(BaseModel):
    message: str
    total_rows: int
    medicines_created: int
    batches_created: int
    batches_skipped: int
    rows_skipped: int
    categories_auto_created: list[str]
    errors: list[ImportErrorOut]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "message": "48 created, 2 skipped, 1 errors",
                "total_rows": 51,
                "medicines_created": 12,
                "batches_created": 48,
                "batches_skipped": 1,
                "rows_skipped": 1,
                "categories_auto_created": ["Antibiotics"],
                "errors": [{"row": 7, "sku": None, "message": "Medicine name is required"}],
            }
        }
    )
