"""
Facilitator API Routes for x402.

Exposes the built-in LocalFacilitator over HTTP with the same contract that
HttpFacilitator speaks, so a marketplace instance can act as the facilitator
for other services.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from x402_market.payment.errors import PaymentVerificationFailed
from x402_market.payment.facilitator import LocalFacilitator
from x402_market.payment.types import X402_VERSION, PaymentProof, PaymentRequirement

router = APIRouter(prefix="/facilitator", tags=["facilitator"])


class FacilitatorRequest(BaseModel):
    """Request body for verification and settlement."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    x402_version: int = X402_VERSION
    payment_payload: PaymentProof
    payment_requirements: PaymentRequirement


class VerifyPaymentResponse(BaseModel):
    """Response from payment verification."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_valid: bool
    payer: Optional[str] = None
    invalid_reason: Optional[str] = None


class SettlePaymentResponse(BaseModel):
    """Response from payment settlement."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    transaction: Optional[str] = None
    network: Optional[str] = None
    payer: Optional[str] = None
    error_reason: Optional[str] = None


def _get_facilitator(request: Request) -> LocalFacilitator:
    facilitator = getattr(request.app.state, "local_facilitator", None)
    if facilitator is None:
        raise HTTPException(
            status_code=503,
            detail="Payment facilitator service not configured",
        )
    return facilitator


@router.post("/verify", response_model=VerifyPaymentResponse, response_model_by_alias=True)
async def verify_payment(body: FacilitatorRequest, request: Request) -> VerifyPaymentResponse:
    """Verify a payment proof against its requirement.

    Raises:
        HTTPException: If the facilitator service is not configured
    """
    facilitator = _get_facilitator(request)
    result = await facilitator.verify(body.payment_requirements, body.payment_payload)
    return VerifyPaymentResponse(
        is_valid=result.is_valid,
        payer=result.payer,
        invalid_reason=result.invalid_reason,
    )


@router.post("/settle", response_model=SettlePaymentResponse, response_model_by_alias=True)
async def settle_payment(body: FacilitatorRequest, request: Request) -> SettlePaymentResponse:
    """Settle a previously verified payment.

    A payment that was never verified, or was already settled, is reported as
    ``success: false`` with the reason.
    """
    facilitator = _get_facilitator(request)
    try:
        receipt = await facilitator.settle(body.payment_requirements, body.payment_payload)
    except PaymentVerificationFailed as e:
        return SettlePaymentResponse(success=False, error_reason=e.detail or e.message)
    return SettlePaymentResponse(
        success=True,
        transaction=receipt.transaction,
        network=receipt.network,
        payer=receipt.payer,
    )


@router.get("/supported")
async def get_supported_networks(request: Request) -> Dict[str, Any]:
    """Get the networks and schemes this facilitator accepts."""
    return _get_facilitator(request).get_supported_networks()
