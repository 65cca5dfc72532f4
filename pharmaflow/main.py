import json

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from pharmaflow.core.observability import (
    http_exception_handler,
    ledger_exception_handler,
    logger,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from pharmaflow.core.config import settings
from pharmaflow.db.session import engine
from pharmaflow.routers import alerts, analytics, catalog, imports, inventory, medicines, sales
from pharmaflow.services.ledger_service import LedgerError

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Pharmacy inventory ledger and expiry-aware analytics.\n\n"
        "Swagger quick test flow:\n"
        "1. Create a category (`POST /categories`) and a medicine (`POST /medicines`).\n"
        "2. Receive stock with `POST /inventory/receive` or upload a sheet to `POST /imports/medicines`.\n"
        "3. Sell with `POST /sales`, then check `/alerts` and `/analytics`."
    ),
    swagger_ui_parameters={
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "catalog", "description": "Categories and suppliers."},
        {"name": "medicines", "description": "Medicine catalog with live stock levels."},
        {"name": "inventory", "description": "Batch ledger: receipts, FEFO consumption, disposal, audit trail."},
        {"name": "sales", "description": "Sale capture with FEFO batch selection and sales history."},
        {"name": "alerts", "description": "Low-stock and expiry alerts, materialized rows and daily digest."},
        {"name": "imports", "description": "Spreadsheet stock imports and template download."},
        {"name": "analytics", "description": "Revenue, turnover, expiry exposure, top sellers and category mix."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(LedgerError, ledger_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(catalog.categories_router)
app.include_router(catalog.suppliers_router)
app.include_router(medicines.router)
app.include_router(inventory.router)
app.include_router(sales.router)
app.include_router(alerts.router)
app.include_router(imports.router)
app.include_router(analytics.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning(json.dumps({"event": "ready_check_failed", "error": type(exc).__name__}))
        return {"ok": False}
    return {"ok": True}
