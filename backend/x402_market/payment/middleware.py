"""
x402 Payment Gate Middleware.

Intercepts requests to priced routes and negotiates payment before allowing
access. Per request the gate moves through:

    UNCHALLENGED -> CHALLENGED                    (no proof: 402 + requirement)
    UNCHALLENGED -> VERIFYING -> ADMITTED         (proof accepted)
    UNCHALLENGED -> VERIFYING -> REJECTED         (proof refused: fresh 402)

Ordering is verify -> handler -> settle. A handler that raises or answers with
an error status is never settled and never receives a receipt. The gate keeps
no state between requests; replay protection belongs to the facilitator.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from x402_market.errors import create_error_response, get_request_id, x402_error_response
from x402_market.payment.codec import (
    X_PAYER_ADDRESS,
    X_PAYMENT,
    X_PAYMENT_REQUIRED,
    X_PAYMENT_RESPONSE,
    decode_proof,
    encode_receipt,
    encode_requirement,
)
from x402_market.payment.errors import (
    FacilitatorUnavailable,
    HandlerError,
    MalformedPaymentHeader,
    PaymentVerificationFailed,
)
from x402_market.payment.facilitator import Facilitator
from x402_market.payment.pricing import OverrideProvider, PricingResolver
from x402_market.payment.types import PaymentRequirement

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SKIP_PATHS = ("/health", "/ready")


class GateState(str, Enum):
    """Payment state of a single request."""
    UNCHALLENGED = "unchallenged"
    CHALLENGED = "challenged"
    VERIFYING = "verifying"
    ADMITTED = "admitted"
    REJECTED = "rejected"


class X402PaymentGate(BaseHTTPMiddleware):
    """Middleware that enforces x402 payment on priced routes."""

    def __init__(
        self,
        app,
        resolver: PricingResolver,
        facilitator: Facilitator,
        override_provider: Optional[OverrideProvider] = None,
        facilitator_timeout: float = 10.0,
        skip_paths: Iterable[str] = DEFAULT_SKIP_PATHS,
        debug: bool = False,
    ):
        """Initialize the payment gate.

        Args:
            app: The ASGI application
            resolver: PricingResolver mapping requests to requirements
            facilitator: Facilitator used to verify and settle proofs
            override_provider: Optional per-resource price lookup
            facilitator_timeout: Bound in seconds for each facilitator call
            skip_paths: Paths that never require payment
            debug: Include internal error detail in responses
        """
        super().__init__(app)
        self.resolver = resolver
        self.facilitator = facilitator
        self.override_provider = override_provider
        self.facilitator_timeout = facilitator_timeout
        self.skip_paths = set(skip_paths)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Run the payment state machine for one request."""
        if request.method == "OPTIONS" or request.url.path in self.skip_paths:
            return await call_next(request)

        request_id = get_request_id(request)
        request.state.payment_state = GateState.UNCHALLENGED

        requirement = self._resolve(request)
        if requirement is None:
            # Route is not priced
            request.state.payment_state = GateState.ADMITTED
            return await call_next(request)

        payment_header = request.headers.get(X_PAYMENT)
        if not payment_header:
            request.state.payment_state = GateState.CHALLENGED
            logger.info("Payment required for %s: %s %s",
                        requirement.resource, requirement.amount, requirement.network)
            return self._challenge(
                requirement,
                request_id,
                "Payment required. Retry the request with an X-PAYMENT header.",
            )

        try:
            proof = decode_proof(payment_header)
        except MalformedPaymentHeader as e:
            request.state.payment_state = GateState.REJECTED
            logger.warning("Rejected malformed payment header for %s: %s",
                           requirement.resource, e.detail or e.message)
            return self._challenge(requirement, request_id, "Invalid payment header.")

        payer_hint = request.headers.get(X_PAYER_ADDRESS)
        if payer_hint and payer_hint.lower() != proof.payer.lower():
            logger.warning("Payer hint %s does not match proof payer %s", payer_hint, proof.payer)

        request.state.payment_state = GateState.VERIFYING
        try:
            result = await self._bounded(self.facilitator.verify(requirement, proof), "verify")
        except FacilitatorUnavailable as e:
            logger.error("Facilitator unavailable during verify: %s", e.detail or e.message)
            return x402_error_response(e, request_id=request_id, debug=self.debug)

        if not result.is_valid:
            request.state.payment_state = GateState.REJECTED
            logger.warning("Payment verification failed for %s: %s",
                           requirement.resource, result.invalid_reason)
            return self._challenge(requirement, request_id, "Payment verification failed.")

        request.state.payment_state = GateState.ADMITTED
        request.state.payment = {
            "verified": True,
            "network": proof.network,
            "amount": proof.amount,
            "payer": result.payer or proof.payer,
            "resource": requirement.resource,
        }

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception("Handler failed for paid request %s; payment not settled",
                             requirement.resource)
            return x402_error_response(
                HandlerError("Request handler failed", detail=str(e)),
                request_id=request_id,
                debug=self.debug,
            )

        if response.status_code >= 400:
            logger.warning("Handler returned %d for %s; payment not settled",
                           response.status_code, requirement.resource)
            return response

        try:
            receipt = await self._bounded(self.facilitator.settle(requirement, proof), "settle")
        except FacilitatorUnavailable as e:
            logger.error("Facilitator unavailable during settle: %s", e.detail or e.message)
            return x402_error_response(e, request_id=request_id, debug=self.debug)
        except PaymentVerificationFailed as e:
            request.state.payment_state = GateState.REJECTED
            logger.warning("Settlement rejected for %s: %s", requirement.resource, e.detail)
            return self._challenge(requirement, request_id, "Payment settlement failed.")

        logger.info("Payment settled for %s: tx=%s payer=%s",
                    requirement.resource, receipt.transaction, receipt.payer)
        response.headers[X_PAYMENT_RESPONSE] = encode_receipt(receipt)
        return response

    def _resolve(self, request: Request) -> Optional[PaymentRequirement]:
        match = self.resolver.match(request.method, request.url.path)
        if match is None:
            return None
        override = self.override_provider(match) if self.override_provider else None
        return self.resolver.requirement_for(match, override)

    async def _bounded(self, call: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.facilitator_timeout)
        except asyncio.TimeoutError as e:
            raise FacilitatorUnavailable(
                "Payment facilitator timed out",
                detail=f"{operation} exceeded {self.facilitator_timeout}s",
            ) from e

    def _challenge(
        self,
        requirement: PaymentRequirement,
        request_id: Optional[str],
        message: str,
    ) -> Response:
        return create_error_response(
            402,
            message,
            request_id=request_id,
            error="Payment Required",
            headers={X_PAYMENT_REQUIRED: encode_requirement(requirement)},
        )
