"""
Application errors and the handlers that render them.

Every failure leaves the API as
    {"error": {"code", "message", "request_id", "details"?}, "detail": message}
with the x-request-id header set, so the web client can show `detail`
and support can grep logs by request id.
"""

import logging
from typing import Any, List, Optional
from uuid import uuid4

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from nextstep.core.logging import LOGGER_NAME, get_request_id

logger = logging.getLogger(LOGGER_NAME)


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.request_id = request_id
        self.details = details


class UnauthorizedError(AppError):
    code = "unauthorized"
    status_code = 401


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class QuotaExceededError(AppError):
    code = "quota_exceeded"
    status_code = 403


class BillingError(AppError):
    code = "billing_error"
    status_code = 400


class ServiceUnavailableError(AppError):
    code = "service_unavailable"
    status_code = 503


class GenerationError(AppError):
    """The model never produced a schema-valid recommendation."""
    code = "generation_failed"
    status_code = 500


def field_violations(errors) -> List[dict]:
    """Flatten pydantic error dicts into {field, message, type} entries."""
    violations = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        violations.append(
            {
                "field": ".".join(loc) or "body",
                "message": err.get("msg", "Invalid value"),
                "type": err.get("type", "value_error"),
            }
        )
    return violations


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def _render(
    request_id: str,
    status_code: int,
    code: str,
    message: str,
    details: Optional[Any] = None,
) -> JSONResponse:
    error = {"code": code, "message": message, "request_id": request_id}
    if details is not None:
        error["details"] = details
    response = JSONResponse(status_code=status_code, content={"error": error, "detail": message})
    response.headers["x-request-id"] = request_id
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id_for(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={
            "request_id": rid,
            "error_code": exc.code,
            "error_message": exc.message,
            "status": exc.status_code,
        },
    )
    return _render(rid, exc.status_code, exc.code, exc.message, exc.details)


async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    # 400 rather than FastAPI's default 422
    rid = _request_id_for(request)
    logger.warning("validation.error", extra={"request_id": rid, "error_code": "validation_error", "status": 400})
    return _render(rid, 400, "validation_error", "Invalid input", field_violations(exc.errors()))


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id_for(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = _render(rid, exc.status_code, code, exc.detail or "HTTP error")
    # e.g. Allow on 405
    response.headers.update(exc.headers or {})
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id_for(request)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    return _render(rid, 500, "internal_error", "Unexpected error")
