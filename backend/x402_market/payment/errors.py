"""
Payment error taxonomy for the x402 negotiation flow.

Every error carries a user-facing ``message`` and an optional ``detail`` that
is only exposed in debug mode. ``status_code`` and ``error`` describe how the
error is surfaced at the HTTP boundary.
"""

from typing import Optional


class X402Error(Exception):
    """Base class for all x402 payment errors."""

    status_code: int = 500
    error: str = "Payment Error"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class MalformedPaymentHeader(X402Error):
    """A payment header could not be decoded into the expected structure."""

    status_code = 400
    error = "Malformed Payment Header"


class MissingPaymentChallenge(X402Error):
    """A 402 response arrived without the X-PAYMENT-REQUIRED header."""

    status_code = 502
    error = "Missing Payment Challenge"


class PaymentNotConfigured(X402Error):
    """The client was asked to pay but has no account to sign with."""

    status_code = 400
    error = "Payment Not Configured"


class PaymentVerificationFailed(X402Error):
    """The facilitator rejected the payment proof."""

    status_code = 402
    error = "Payment Required"


class FacilitatorUnavailable(X402Error):
    """The facilitator could not be reached or did not answer in time."""

    status_code = 503
    error = "Service Unavailable"


class HandlerError(X402Error):
    """The downstream handler failed after the payment was verified."""

    status_code = 500
    error = "Internal Server Error"


class PaymentExchangeTimeout(X402Error):
    """The paid request exchange did not finish within the caller's timeout."""

    status_code = 504
    error = "Gateway Timeout"
