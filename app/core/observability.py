import json
import logging
import time
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.errors import AppError

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
logger = logging.getLogger("productivity.api")


def setup_observability(level: str | None = None) -> None:
    root = logging.getLogger("productivity")
    root.setLevel((level or settings.log_level).upper())
    if root.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.propagate = False


def log_event(log: logging.Logger, level: int, event: str, **fields: Any) -> None:
    payload = {"event": event, "request_id": get_request_id(), **fields}
    log.log(level, json.dumps(payload, default=str))


def get_request_id() -> str:
    return request_id_ctx.get()


def _request_id(request: Request) -> str:
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get("x-request-id")
        or get_request_id()
    )


def _development_mode(request: Request) -> bool:
    services = getattr(request.app.state, "services", None)
    if services is not None:
        return services.settings.is_development
    return settings.is_development


def _error_response(
    *,
    status_code: int,
    request: Request,
    error_type: str,
    message: str,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {
        "type": error_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": _request_id(request),
        "path": request.url.path,
    }
    if details is not None:
        error["details"] = details
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content={"success": False, "message": message, "error": error},
    )


async def request_logging_middleware(request: Request, call_next):
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
        logger.info(
            json.dumps(
                {
                    "event": "request",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                    "user_id": getattr(request.state, "user_id", None),
                }
            )
        )
        request_id_ctx.reset(token)

    response.headers["X-Request-ID"] = request_id
    return response


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(
            json.dumps(
                {
                    "event": "app_error",
                    "request_id": _request_id(request),
                    "method": request.method,
                    "path": request.url.path,
                    "user_id": getattr(request.state, "user_id", None),
                    "type": exc.error_type,
                    "error": exc.message,
                    "traceback": "".join(traceback.format_exception(exc, limit=10)),
                }
            )
        )
        details = exc.details if _development_mode(request) else None
    else:
        details = exc.details
    return _error_response(
        status_code=exc.status_code,
        request=request,
        error_type=exc.error_type,
        message=exc.message,
        details=details,
        headers=exc.headers,
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        json.dumps(
            {
                "event": "unhandled_exception",
                "request_id": _request_id(request),
                "method": request.method,
                "path": request.url.path,
                "user_id": getattr(request.state, "user_id", None),
                "error": str(exc),
                "traceback": "".join(traceback.format_exception(exc, limit=10)),
            }
        )
    )
    details = None
    if _development_mode(request):
        details = {
            "error": str(exc),
            "stack": traceback.format_exception(exc, limit=10),
        }
    return _error_response(
        status_code=500,
        request=request,
        error_type="AppError",
        message="Internal server error",
        details=details,
    )


_STATUS_TYPE_MAP = {
    400: "ValidationError",
    401: "UnauthorizedError",
    403: "ForbiddenError",
    404: "NotFoundError",
    405: "MethodNotAllowedError",
    409: "ConflictError",
    429: "TooManyRequestsError",
}


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    error_type = _STATUS_TYPE_MAP.get(exc.status_code, "HTTPError")
    message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    if exc.status_code == 404 and message == "Not Found":
        message = f"Route {request.method} {request.url.path} not found"
    details = None if isinstance(exc.detail, str) else exc.detail
    return _error_response(
        status_code=exc.status_code,
        request=request,
        error_type=error_type,
        message=message,
        details=details,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        location = [str(part) for part in err.get("loc", []) if part not in {"body", "query", "path"}]
        details.append(
            {
                "field": ".".join(location) if location else "body",
                "message": err.get("msg", "Invalid value"),
                "type": err.get("type"),
            }
        )

    return _error_response(
        status_code=400,
        request=request,
        error_type="ValidationError",
        message="Validation failed",
        details=details,
    )
