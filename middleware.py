"""
Request logging middleware and exception handlers.

Every failure leaves the API in the same shape:
{"success": false, "error": {"code", "message"}, "timestamp"}
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from errors import ApiError

logger = logging.getLogger("hostel.middleware")


def _error_response(status_code: int, error: dict) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "success": False,
            "error": error,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and elapsed time of every request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            # traceback is logged by the exception handler
            logger.error("%s %s failed after %.4fs: %s", request.method, request.url.path, time.perf_counter() - start_time, type(exc).__name__)
            raise
        process_time = time.perf_counter() - start_time
        logger.info("%s %s -> %d (%.4fs)", request.method, request.url.path, response.status_code, process_time)
        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        return response


# ===================== Exception handlers =====================

async def api_error_handler(request: Request, exc: ApiError):
    if exc.http_status >= 500:
        logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
    else:
        logger.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
    return _error_response(exc.http_status, exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors, reported as 400."""
    logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        {
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": exc.errors(),
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning("HTTP %d on %s: %s", exc.status_code, request.url.path, exc.detail)
    return _error_response(exc.status_code, {"code": f"HTTP_{exc.status_code}", "message": exc.detail})


async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s: %s", request.url.path, exc)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"code": "INTERNAL_ERROR", "message": "Internal server error"},
    )


def install(app: FastAPI) -> None:
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
