"""
x402 value objects exchanged in payment headers.

All models are frozen and serialize with camelCase field names, which is the
form they take on the wire.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

X402_VERSION = 1
SCHEME_EXACT = "exact"
DEFAULT_ASSET = "USDC"
DEFAULT_MIME_TYPE = "application/json"
DEFAULT_MAX_TIMEOUT_SECONDS = 300

# uint256 bound of the signed authorization fields
MAX_UINT256 = 2**256


def _validate_amount(value: str) -> str:
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"amount must be a decimal string, got {value!r}")
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"amount must be a non-negative decimal, got {value!r}")
    return value


class X402Model(BaseModel):
    """Base for header payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        """Return the JSON-ready dict used on the wire."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PaymentRequirement(X402Model):
    """What a client must pay to access one resource."""

    x402_version: int = X402_VERSION
    scheme: str = SCHEME_EXACT
    network: str
    amount: str
    asset: str = DEFAULT_ASSET
    pay_to: str
    resource: str
    description: Optional[str] = None
    mime_type: str = DEFAULT_MIME_TYPE
    max_timeout_seconds: int = DEFAULT_MAX_TIMEOUT_SECONDS
    nonce: Optional[str] = None
    expiry: Optional[int] = None

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v: str) -> str:
        return _validate_amount(v)


class PaymentProof(X402Model):
    """Signed authorization a client attaches to satisfy a requirement."""

    x402_version: int = X402_VERSION
    scheme: str = SCHEME_EXACT
    network: str
    resource: str
    amount: str
    asset: str = DEFAULT_ASSET
    pay_to: str
    payer: str
    signature: str
    valid_after: int = Field(ge=0, lt=MAX_UINT256)
    valid_before: int = Field(ge=0, lt=MAX_UINT256)
    nonce: str

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v: str) -> str:
        return _validate_amount(v)

    def mismatch_reason(self, requirement: PaymentRequirement) -> Optional[str]:
        """Return why this proof does not match ``requirement``, or None."""
        if self.scheme != requirement.scheme:
            return f"scheme mismatch: {self.scheme} != {requirement.scheme}"
        if self.network != requirement.network:
            return f"network mismatch: {self.network} != {requirement.network}"
        if self.resource != requirement.resource:
            return f"resource mismatch: {self.resource} != {requirement.resource}"
        if Decimal(self.amount) != Decimal(requirement.amount):
            return f"amount mismatch: {self.amount} != {requirement.amount}"
        if self.asset != requirement.asset:
            return f"asset mismatch: {self.asset} != {requirement.asset}"
        if self.pay_to.lower() != requirement.pay_to.lower():
            return f"recipient mismatch: {self.pay_to} != {requirement.pay_to}"
        if requirement.nonce is not None and self.nonce != requirement.nonce:
            return "nonce does not match the issued requirement"
        return None


class PaymentReceipt(X402Model):
    """Server confirmation of a settled payment."""

    success: bool = True
    transaction: str
    network: str
    payer: str
    amount: str
    resource: Optional[str] = None
