"""
FastAPI Middleware

Provides request/response middleware for:
- Correlation ID injection
- Request logging (with phone-number masking)
- Global error handling
- Security headers (HSTS, CSP upgrade-insecure-requests)
"""
import re
import time
from typing import Callable
from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging import (
    get_logger,
    set_correlation_id,
    get_correlation_id
)
from app.core.exceptions import AppException, ErrorCode

logger = get_logger(__name__)

# 10+ digit runs in a path or query value are treated as phone numbers
_PHONE_RE = re.compile(r"(\+?\d{3})\d{4,}(\d{3})")
# Client-supplied IDs end up in every log line of the request
_CORRELATION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation ID to requests"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        incoming = request.headers.get("X-Correlation-ID")
        if incoming and not _CORRELATION_ID_RE.match(incoming):
            incoming = None
        correlation_id = set_correlation_id(incoming)

        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id

        return response


def mask_pii(value: str) -> str:
    """Mask the middle digits of phone numbers"""
    return _PHONE_RE.sub(r"\1****\2", value)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests and responses"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        start_time = time.time()
        safe_path = mask_pii(request.url.path)

        logger.info(
            f"Request started: {request.method} {safe_path}",
            extra_data={
                "method": request.method,
                "path": safe_path,
                "query_params": {k: mask_pii(v) for k, v in request.query_params.items()},
                "client_host": request.client.host if request.client else None,
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Request failed: {request.method} {safe_path}",
                extra_data={
                    "method": request.method,
                    "path": safe_path,
                    "duration_seconds": round(duration, 4),
                    "error": str(e),
                },
                exc_info=True
            )
            raise

        duration = time.time() - start_time
        log_level = "info" if response.status_code < 400 else "warning"
        getattr(logger, log_level)(
            f"Request completed: {request.method} {safe_path}",
            extra_data={
                "method": request.method,
                "path": safe_path,
                "status_code": response.status_code,
                "duration_seconds": round(duration, 4),
            }
        )
        return response


async def app_exception_handler(
    request: Request,
    exc: AppException
) -> JSONResponse:
    """Handle application exceptions"""
    logger.warning(
        f"Application exception: {exc.error_code.value}",
        extra_data={
            "error_code": exc.error_code.value,
            "status_code": exc.status_code,
            "message": exc.message,
            "details": exc.details,
            "path": request.url.path,
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"X-Correlation-ID": get_correlation_id()}
    )


_HTTP_ERROR_CODES = {
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.VALIDATION_ERROR,
    409: ErrorCode.CONFLICT,
}


def _error_response(
    status_code: int,
    code: ErrorCode,
    message: str,
    details: dict | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    """The {"error": {...}} envelope every failure uses"""
    headers = dict(headers or {})
    headers["X-Correlation-ID"] = get_correlation_id()
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code.value, "message": message, "details": details or {}}},
        headers=headers,
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException
) -> JSONResponse:
    """Framework HTTP errors (auth dependencies, unknown routes) in the error envelope"""
    code = _HTTP_ERROR_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    return _error_response(exc.status_code, code, str(exc.detail), headers=exc.headers)


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies and parameters are a 400"""
    errors = jsonable_encoder(exc.errors())
    logger.warning(
        "Request validation failed",
        extra_data={
            "method": request.method,
            "path": request.url.path,
            "errors": errors,
        }
    )
    return _error_response(400, ErrorCode.VALIDATION_ERROR, "Invalid request", {"errors": errors})


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra_data={
            "exception_type": type(exc).__name__,
            "message": str(exc),
            "path": request.url.path,
        },
        exc_info=True
    )

    return _error_response(500, ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers to every response.

    HSTS and CSP are skipped in DEBUG so local HTTP development keeps working;
    X-Content-Type-Options is always set.
    """

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._debug = debug

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"

        if not self._debug:
            response.headers["Content-Security-Policy"] = "upgrade-insecure-requests"
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


def setup_middleware(app: FastAPI) -> None:
    """Setup all middleware for the application"""
    from app.core.config import settings

    # Last added is outermost.
    # Request order: SecurityHeaders -> CorrelationId -> RequestLogging -> app
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=settings.DEBUG)


def setup_exception_handlers(app: FastAPI) -> None:
    """Setup exception handlers"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
