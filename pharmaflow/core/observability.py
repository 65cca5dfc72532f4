import json
import logging
import time
import traceback
from contextvars import ContextVar
from uuid import uuid4

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from pharmaflow.core.config import settings
from pharmaflow.services.ledger_service import (
    BatchDisposedError,
    BatchNotFoundError,
    InsufficientStockError,
    LedgerError,
)

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
# Service modules log under "pharmaflow.<area>" and share this handler.
package_logger = logging.getLogger("pharmaflow")
logger = logging.getLogger("pharmaflow.api")

# Most specific first; unknown LedgerError subclasses fall through to 400.
LEDGER_ERROR_STATUS: list[tuple[type[LedgerError], int, str]] = [
    (BatchNotFoundError, 404, "not_found"),
    (InsufficientStockError, 409, "insufficient_stock"),
    (BatchDisposedError, 409, "batch_disposed"),
]

HTTP_ERROR_CODES = {
    400: "bad_request",
    404: "not_found",
    409: "conflict",
    422: "validation_error",
}


def setup_observability() -> None:
    if package_logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.INFO)
    package_logger.propagate = False


def get_request_id() -> str:
    return request_id_ctx.get()


def _request_id(request: Request) -> str:
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get("x-request-id")
        or get_request_id()
    )


def _log(level: int, event: str, **fields) -> None:
    logger.log(level, json.dumps({"event": event, **fields}, default=str))


def error_envelope(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: list[dict] | dict | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = {
        "code": code,
        "message": message,
        "request_id": _request_id(request),
        "path": request.url.path,
        "details": details,
    }
    return JSONResponse(status_code=status_code, headers=headers, content={"error": body})


async def request_logging_middleware(request: Request, call_next):
    """Tag every request with an id, time it, and log one line when it finishes."""
    request_id = request.headers.get("x-request-id") or str(uuid4())
    request.state.request_id = request_id
    token = request_id_ctx.set(request_id)
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        slow = duration_ms >= settings.slow_request_ms
        _log(
            logging.WARNING if slow else logging.INFO,
            "request.slow" if slow else "request",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=duration_ms,
        )
        request_id_ctx.reset(token)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-API-Timeout-Hint-Ms"] = str(settings.api_timeout_hint_ms)
    return response


async def ledger_exception_handler(request: Request, exc: LedgerError):
    status_code, code = 400, "bad_request"
    for error_type, mapped_status, mapped_code in LEDGER_ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code, code = mapped_status, mapped_code
            break

    details = exc.as_details()
    _log(logging.INFO, "ledger_error", request_id=_request_id(request), code=code, **(details or {}))
    return error_envelope(request, status_code=status_code, code=code, message=str(exc), details=details)


async def http_exception_handler(request: Request, exc: HTTPException):
    if isinstance(exc.detail, str):
        message, details = exc.detail, None
    else:
        message, details = "HTTP error", exc.detail
    return error_envelope(
        request,
        status_code=exc.status_code,
        code=HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
        message=message,
        details=details,
        headers=exc.headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    issues = []
    for err in exc.errors():
        location = [str(part) for part in err.get("loc", []) if part != "body"]
        issues.append(
            {
                "field": ".".join(location) or "body",
                "message": err.get("msg", "Invalid value"),
                "type": err.get("type"),
            }
        )
    return error_envelope(
        request,
        status_code=422,
        code="validation_error",
        message="Validation failed",
        details=issues,
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    _log(
        logging.ERROR,
        "unhandled_exception",
        request_id=_request_id(request),
        path=request.url.path,
        error=str(exc),
        traceback=traceback.format_exc(limit=10),
    )
    return error_envelope(
        request,
        status_code=500,
        code="internal_error",
        message="Internal server error",
    )
