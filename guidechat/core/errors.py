"""Error taxonomy, normalization and handlers."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from guidechat.core.logging import get_request_id


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
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id
        self.details = details

    def headers(self) -> Dict[str, str]:
        return {}


class ValidationError(AppError, ValueError):
    """Malformed or oversized input. Always caller-fixable."""
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class OwnershipError(NotFoundError):
    """Resource exists but belongs to someone else.

    Carries the same code and status as NotFoundError so callers cannot
    discover other users' resources.
    """


class AccessDeniedError(AppError):
    """The caller's plan does not include the requested model bucket."""
    code = "model_not_in_plan"
    status_code = 403


class QuotaExceededError(AppError):
    """Daily (or guest lifetime) cap reached."""
    code = "quota_exceeded"
    status_code = 429


class ProviderTransientError(AppError):
    """Upstream provider rate limit or timeout."""
    code = "provider_rate_limited"
    status_code = 429

    def __init__(self, message: str, *, retry_after: int, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.details = {**(self.details or {}), "retry_after": retry_after}

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class ProviderError(AppError):
    code = "provider_error"
    status_code = 502


class StorageTransientError(AppError):
    """Metering or session-store I/O failure. Retryable."""
    code = "storage_unavailable"
    status_code = 503


@contextmanager
def non_critical(name: str, **context):
    """Run a best-effort side effect.

    Exceptions are logged under ``[non-critical]`` and suppressed; nothing
    else in the codebase swallows errors.
    """
    try:
        yield
    except Exception as exc:
        logging.getLogger("guidechat").warning(
            f"[non-critical] {name} failed",
            extra={"side_effect": name, "error": str(exc), **context},
        )


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str, details: Optional[Dict[str, Any]] = None) -> dict:
    error = {"code": code, "message": message, "request_id": request_id}
    if details:
        error["details"] = details
    return {"error": error, "detail": message}


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid, exc.details)
    logger = logging.getLogger("guidechat")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    for name, value in exc.headers().items():
        response.headers[name] = value
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    if exc.status_code == 401:
        code = "unauthorized"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("guidechat")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("guidechat")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
