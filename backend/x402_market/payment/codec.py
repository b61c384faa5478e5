"""
Header codec for x402 payloads.

Payloads travel as base64 of their canonical JSON form (sorted keys, compact
separators). Decoding is a hard parse boundary: anything short of a complete,
valid payload raises MalformedPaymentHeader.
"""

import base64
import binascii
import json
from typing import Type, TypeVar

from pydantic import ValidationError

from x402_market.payment.errors import MalformedPaymentHeader
from x402_market.payment.types import (
    PaymentProof,
    PaymentReceipt,
    PaymentRequirement,
    X402Model,
)

# Header names
X_PAYMENT = "X-PAYMENT"
X_PAYMENT_REQUIRED = "X-PAYMENT-REQUIRED"
X_PAYMENT_RESPONSE = "X-PAYMENT-RESPONSE"
X_REQUEST_ID = "X-Request-ID"
X_PAYER_ADDRESS = "X-Payer-Address"

M = TypeVar("M", bound=X402Model)


def encode_header(payload: X402Model) -> str:
    """Encode a payload into a header-safe string."""
    canonical = json.dumps(payload.to_wire(), sort_keys=True, separators=(",", ":"))
    return base64.b64encode(canonical.encode("utf-8")).decode("ascii")


def decode_header(value: str, model: Type[M]) -> M:
    """Decode a header value into ``model``.

    Raises:
        MalformedPaymentHeader: If the value is not valid base64, not a JSON
            object, or is missing required fields.
    """
    name = model.__name__
    if not value or not value.strip():
        raise MalformedPaymentHeader(f"Empty {name} header")

    try:
        raw = base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedPaymentHeader(f"Invalid {name} encoding", detail=str(e)) from e

    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedPaymentHeader(f"Invalid {name} JSON", detail=str(e)) from e

    if not isinstance(data, dict):
        raise MalformedPaymentHeader(f"Invalid {name} structure: expected an object")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedPaymentHeader(f"Invalid {name} fields", detail=str(e)) from e


def encode_requirement(requirement: PaymentRequirement) -> str:
    return encode_header(requirement)


def decode_requirement(value: str) -> PaymentRequirement:
    return decode_header(value, PaymentRequirement)


def encode_proof(proof: PaymentProof) -> str:
    return encode_header(proof)


def decode_proof(value: str) -> PaymentProof:
    return decode_header(value, PaymentProof)


def encode_receipt(receipt: PaymentReceipt) -> str:
    return encode_header(receipt)


def decode_receipt(value: str) -> PaymentReceipt:
    return decode_header(value, PaymentReceipt)
