import json
import logging
import time
import traceback
from contextvars import ContextVar
from typing import Any
from uuid import uuid4

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bomledger.core.config import settings
from bomledger.core.errors import (
    BOMVersionLockedError,
    ExpiredLotBlockError,
    InsufficientInventoryError,
    InvalidLotOverrideError,
    InvalidTransitionError,
    InventoryError,
    InventoryValidationError,
    MissingOutputLocationError,
    NoBOMEffectiveError,
    NotFoundError,
    VersionConflictError,
)

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
company_id_ctx: ContextVar[str | None] = ContextVar("company_id", default=None)
logger = logging.getLogger("bomledger.api")


def setup_observability() -> None:
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(settings.log_level.upper())
    logger.propagate = False


def get_request_id() -> str:
    return request_id_ctx.get()


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one JSON line tagged with the current request and tenant."""
    payload: dict[str, Any] = {"event": event, "request_id": get_request_id()}
    company_id = company_id_ctx.get()
    if company_id:
        payload["company_id"] = company_id
    payload.update(fields)
    logger.log(level, json.dumps(payload, default=str))


def _request_id(request: Request) -> str:
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get("x-request-id")
        or get_request_id()
    )


def _error_response(
    *,
    status_code: int,
    request: Request,
    code: str,
    message: str,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content={
            "error": {
                "code": code,
                "message": message,
                "request_id": _request_id(request),
                "path": request.url.path,
                "details": details,
            }
        },
    )


async def request_logging_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())
    request.state.request_id = request_id
    request_token = request_id_ctx.set(request_id)
    company_token = company_id_ctx.set(request.headers.get("x-company-id"))
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        log_event(
            "request",
            level=logging.WARNING if status_code >= 500 else logging.INFO,
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            role=request.headers.get("x-user-role"),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        company_id_ctx.reset(company_token)
        request_id_ctx.reset(request_token)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-API-Timeout-Hint-Ms"] = str(settings.api_timeout_hint_ms)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    log_event(
        "unhandled_exception",
        level=logging.ERROR,
        request_id=_request_id(request),
        path=request.url.path,
        error=str(exc),
        traceback=traceback.format_exc(limit=10),
    )
    return _error_response(
        status_code=500,
        request=request,
        code="internal_error",
        message="Internal server error",
    )


_STATUS_CODE_MAP = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    422: "validation_error",
}

# Most specific class first; the first isinstance match wins.
_INVENTORY_ERROR_STATUS: list[tuple[type[InventoryError], int]] = [
    (NotFoundError, 404),
    (NoBOMEffectiveError, 422),
    (VersionConflictError, 409),
    (ExpiredLotBlockError, 409),
    (InvalidTransitionError, 409),
    (BOMVersionLockedError, 409),
    (InvalidLotOverrideError, 403),
    (InsufficientInventoryError, 400),
    (MissingOutputLocationError, 400),
    (InventoryValidationError, 400),
]


def inventory_error_status(exc: InventoryError) -> int:
    for error_type, status_code in _INVENTORY_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def http_exception_handler(request: Request, exc: HTTPException):
    code = _STATUS_CODE_MAP.get(exc.status_code, "http_error")
    message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    details = None if isinstance(exc.detail, str) else exc.detail
    return _error_response(
        status_code=exc.status_code,
        request=request,
        code=code,
        message=message,
        details=details,
        headers=exc.headers,
    )


async def inventory_exception_handler(request: Request, exc: InventoryError):
    status_code = inventory_error_status(exc)
    if status_code >= 409 or isinstance(exc, InvalidLotOverrideError):
        log_event(
            "inventory_error",
            level=logging.WARNING,
            path=request.url.path,
            code=exc.code,
            message=exc.message,
        )
    return _error_response(
        status_code=status_code,
        request=request,
        code=exc.code,
        message=exc.message,
        details=exc.details_payload(),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        location = [str(part) for part in err.get("loc", []) if part != "body"]
        details.append(
            {
                "field": ".".join(location) if location else "body",
                "message": err.get("msg", "Invalid value"),
                "type": err.get("type"),
            }
        )

    return _error_response(
        status_code=422,
        request=request,
        code="validation_error",
        message="Validation failed",
        details=details,
    )
