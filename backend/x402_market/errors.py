"""
Centralized error handling and JSON error envelopes.

Every error leaves the API as ``{error, message, requestId, timestamp}``.
Internal detail is attached as ``details`` only when debug mode is on.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from x402_market.logging_utils import request_id_var
from x402_market.payment.codec import X_REQUEST_ID
from x402_market.payment.errors import X402Error

logger = logging.getLogger(__name__)

_STATUS_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    402: "Payment Required",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    429: "Rate Limited",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def get_request_id(request: Request) -> Optional[str]:
    """Return the correlation id assigned to ``request``."""
    request_id = getattr(request.state, "request_id", None)
    return request_id or request.headers.get(X_REQUEST_ID)


def error_envelope(
    error: str,
    message: str,
    request_id: Optional[str] = None,
    details: Any = None,
) -> Dict[str, Any]:
    envelope: Dict[str, Any] = {
        "error": error,
        "message": message,
        "requestId": request_id,
        "timestamp": utc_timestamp(),
    }
    if details is not None:
        envelope["details"] = details
    return envelope


def create_error_response(
    status_code: int,
    message: str,
    request_id: Optional[str] = None,
    error: Optional[str] = None,
    details: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Create a standardized JSON error response."""
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            error or _STATUS_TITLES.get(status_code, "Error"),
            message,
            request_id=request_id,
            details=details,
        ),
        headers=headers,
    )


def x402_error_response(
    exc: X402Error,
    request_id: Optional[str] = None,
    debug: bool = False,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return create_error_response(
        exc.status_code,
        exc.message,
        request_id=request_id,
        error=exc.error,
        details=exc.detail if debug else None,
        headers=headers,
    )


def register_exception_handlers(app: FastAPI, debug: bool = False) -> None:
    """Install the envelope handlers on ``app``."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return create_error_response(
            exc.status_code,
            str(exc.detail),
            request_id=get_request_id(request),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return create_error_response(
            400,
            "Invalid request format",
            request_id=get_request_id(request),
            error="Validation Error",
            details=jsonable_encoder(exc.errors()) if debug else None,
        )

    @app.exception_handler(X402Error)
    async def x402_exception_handler(request: Request, exc: X402Error) -> JSONResponse:
        logger.warning("%s: %s (%s)", exc.error, exc.message, exc.detail)
        return x402_error_response(exc, request_id=get_request_id(request), debug=debug)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = get_request_id(request) or request_id_var.get()
        logger.exception(
            "Unhandled error: %s %s", request.method, request.url.path
        )
        if isinstance(exc, X402Error):
            return x402_error_response(exc, request_id=request_id, debug=debug)
        return create_error_response(
            500,
            str(exc) if debug else "An unexpected error occurred",
            request_id=request_id,
        )
