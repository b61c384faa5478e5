"""
Payment Module - x402 payment negotiation

Pricing, header codec, proof signing, facilitator boundary and the payment
gate middleware.
"""

from x402_market.payment.codec import (
    X_PAYER_ADDRESS,
    X_PAYMENT,
    X_PAYMENT_REQUIRED,
    X_PAYMENT_RESPONSE,
    X_REQUEST_ID,
    decode_proof,
    decode_receipt,
    decode_requirement,
    encode_proof,
    encode_receipt,
    encode_requirement,
)
from x402_market.payment.config import DEFAULT_ROUTE_PRICES, PaymentConfig
from x402_market.payment.errors import (
    FacilitatorUnavailable,
    HandlerError,
    MalformedPaymentHeader,
    MissingPaymentChallenge,
    PaymentExchangeTimeout,
    PaymentNotConfigured,
    PaymentVerificationFailed,
    X402Error,
)
from x402_market.payment.facilitator import (
    Facilitator,
    HttpFacilitator,
    LocalFacilitator,
    VerificationResult,
)
from x402_market.payment.pricing import PriceOverride, PricingResolver, RouteConfig
from x402_market.payment.signing import build_payment_proof
from x402_market.payment.types import PaymentProof, PaymentReceipt, PaymentRequirement

__all__ = [
    "X_PAYER_ADDRESS",
    "X_PAYMENT",
    "X_PAYMENT_REQUIRED",
    "X_PAYMENT_RESPONSE",
    "X_REQUEST_ID",
    "decode_proof",
    "decode_receipt",
    "decode_requirement",
    "encode_proof",
    "encode_receipt",
    "encode_requirement",
    "DEFAULT_ROUTE_PRICES",
    "PaymentConfig",
    "FacilitatorUnavailable",
    "HandlerError",
    "MalformedPaymentHeader",
    "MissingPaymentChallenge",
    "PaymentExchangeTimeout",
    "PaymentNotConfigured",
    "PaymentVerificationFailed",
    "X402Error",
    "Facilitator",
    "HttpFacilitator",
    "LocalFacilitator",
    "VerificationResult",
    "PriceOverride",
    "PricingResolver",
    "RouteConfig",
    "build_payment_proof",
    "PaymentProof",
    "PaymentReceipt",
    "PaymentRequirement",
]
