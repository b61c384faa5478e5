"""
Request context middleware.

Assigns every request a correlation id (taken from ``X-Request-ID`` when the
client sends one), echoes it on the response, and logs request start and
completion.
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from x402_market.logging_utils import redact, request_id_var
from x402_market.payment.codec import X_REQUEST_ID

logger = logging.getLogger(__name__)


def generate_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Correlation ids and access logging."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(X_REQUEST_ID) or generate_request_id()
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        start_time = time.perf_counter()

        logger.info("Request started: %s %s", request.method, request.url.path)
        logger.debug("Request headers: %s", redact(dict(request.headers)))

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "Request failed: %s %s after %.1fms",
                request.method,
                request.url.path,
                (time.perf_counter() - start_time) * 1000,
            )
            raise
        finally:
            request_id_var.reset(token)

        duration_ms = (time.perf_counter() - start_time) * 1000
        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level,
            "Request completed: %s %s %d in %.1fms [%s]",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )

        response.headers[X_REQUEST_ID] = request_id
        return response
