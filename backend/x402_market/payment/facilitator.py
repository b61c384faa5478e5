"""
Facilitator - payment verification and settlement for x402.

The facilitator is the boundary between the payment gate and the settlement
network. Two implementations are provided:

1. LocalFacilitator: verifies EIP-712 authorizations in-process and keeps its
   own single-use nonce ledger. Settlement is recorded locally without a chain
   broadcast (test mode).
2. HttpFacilitator: talks to a remote facilitator service over HTTP.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import httpx
from eth_abi.exceptions import EncodingError
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as SignatureValidationError
from web3 import Web3

from x402_market.payment.errors import FacilitatorUnavailable, PaymentVerificationFailed
from x402_market.payment.networks import SUPPORTED_NETWORKS, NetworkConfig
from x402_market.payment.signing import recover_payer
from x402_market.payment.types import (
    SCHEME_EXACT,
    X402_VERSION,
    PaymentProof,
    PaymentReceipt,
    PaymentRequirement,
)

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    """Result of payment verification."""
    is_valid: bool
    payer: Optional[str] = None
    invalid_reason: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "payer": self.payer,
            "invalidReason": self.invalid_reason,
        }


class Facilitator(ABC):
    """Verifies and settles payment proofs against requirements."""

    @abstractmethod
    async def verify(
        self,
        requirement: PaymentRequirement,
        proof: PaymentProof,
    ) -> VerificationResult:
        """Check that ``proof`` satisfies ``requirement``.

        Raises:
            FacilitatorUnavailable: If the facilitator cannot be reached
        """

    @abstractmethod
    async def settle(
        self,
        requirement: PaymentRequirement,
        proof: PaymentProof,
    ) -> PaymentReceipt:
        """Settle a verified payment.

        Raises:
            PaymentVerificationFailed: If the payment can no longer be settled
            FacilitatorUnavailable: If the facilitator cannot be reached
        """

    def get_supported_networks(self) -> Dict[str, Any]:
        return {
            "networks": list(SUPPORTED_NETWORKS),
            "schemes": [SCHEME_EXACT],
        }


# Nonce ledger states
_VERIFIED = "verified"
_SETTLED = "settled"


class LocalFacilitator(Facilitator):
    """In-process facilitator with a single-use nonce ledger."""

    def __init__(
        self,
        networks: Optional[Mapping[str, NetworkConfig]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the local facilitator.

        Args:
            networks: Networks payments may settle on (defaults to all supported)
            clock: Time source, in seconds since the epoch
        """
        self.networks = dict(networks) if networks is not None else dict(SUPPORTED_NETWORKS)
        self.clock = clock
        self._lock = threading.Lock()
        # key -> (state, validBefore)
        self._ledger: Dict[str, Tuple[str, int]] = {}

    @staticmethod
    def _ledger_key(proof: PaymentProof) -> str:
        return f"{proof.network}:{proof.payer.lower()}:{proof.nonce.lower()}"

    @property
    def ledger_size(self) -> int:
        """Number of authorizations currently tracked."""
        with self._lock:
            return len(self._ledger)

    def _prune(self, now: int) -> None:
        """Drop authorizations that have expired; the time window already rejects them."""
        expired = [key for key, (_, valid_before) in self._ledger.items() if valid_before <= now]
        for key in expired:
            del self._ledger[key]

    def _invalid(self, reason: str) -> VerificationResult:
        logger.info("Payment rejected: %s", reason)
        return VerificationResult(is_valid=False, invalid_reason=reason)

    async def verify(
        self,
        requirement: PaymentRequirement,
        proof: PaymentProof,
    ) -> VerificationResult:
        mismatch = proof.mismatch_reason(requirement)
        if mismatch:
            return self._invalid(mismatch)

        if proof.network not in self.networks:
            return self._invalid(f"Unsupported network: {proof.network}")

        now = int(self.clock())
        if now < proof.valid_after:
            return self._invalid("Authorization is not yet valid")
        if now >= proof.valid_before:
            return self._invalid("Authorization expired")
        if requirement.expiry is not None and now >= requirement.expiry:
            return self._invalid("Payment requirement expired")

        try:
            signer = recover_payer(proof)
        except (ValueError, TypeError, EncodingError, BadSignature, SignatureValidationError) as e:
            return self._invalid(f"Invalid signature: {e}")

        if signer.lower() != proof.payer.lower():
            return self._invalid(f"Signer {signer} does not match payer {proof.payer}")

        key = self._ledger_key(proof)
        with self._lock:
            self._prune(now)
            if key in self._ledger:
                return self._invalid("Authorization nonce already used")
            self._ledger[key] = (_VERIFIED, proof.valid_before)

        logger.info(
            "Payment verified: %s %s on %s from %s",
            proof.amount, proof.asset, proof.network, signer,
        )
        return VerificationResult(is_valid=True, payer=signer)

    async def settle(
        self,
        requirement: PaymentRequirement,
        proof: PaymentProof,
    ) -> PaymentReceipt:
        key = self._ledger_key(proof)
        with self._lock:
            state, valid_before = self._ledger.get(key, (None, 0))
            if state != _VERIFIED:
                raise PaymentVerificationFailed(
                    "Payment cannot be settled",
                    detail=f"authorization state is {state or 'unknown'}",
                )
            self._ledger[key] = (_SETTLED, valid_before)

        # Test mode: no broadcast, the receipt carries a deterministic id
        tx_hash = Web3.to_hex(Web3.keccak(text=f"{proof.signature}:{proof.nonce}"))
        logger.info("Payment settled: %s on %s", tx_hash, proof.network)
        return PaymentReceipt(
            transaction=tx_hash,
            network=proof.network,
            payer=proof.payer,
            amount=requirement.amount,
            resource=requirement.resource,
        )

    def get_supported_networks(self) -> Dict[str, Any]:
        return {
            "networks": list(self.networks),
            "schemes": [SCHEME_EXACT],
        }


class HttpFacilitator(Facilitator):
    """Client for a remote facilitator exposing ``/verify`` and ``/settle``."""

    def __init__(
        self,
        facilitator_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the remote facilitator client.

        Args:
            facilitator_url: Base URL of the facilitator service
            api_key: Optional bearer token for the facilitator
            timeout: Per-call timeout in seconds
            client: Optional preconfigured httpx client
        """
        self.facilitator_url = facilitator_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def _post(
        self,
        endpoint: str,
        requirement: PaymentRequirement,
        proof: PaymentProof,
    ) -> Dict[str, Any]:
        url = f"{self.facilitator_url}/{endpoint}"
        body = {
            "x402Version": X402_VERSION,
            "paymentPayload": proof.to_wire(),
            "paymentRequirements": requirement.to_wire(),
        }
        try:
            response = await self.client.post(url, json=body)
        except httpx.TimeoutException as e:
            raise FacilitatorUnavailable("Payment facilitator timed out", detail=str(e)) from e
        except httpx.HTTPError as e:
            raise FacilitatorUnavailable("Payment facilitator unreachable", detail=str(e)) from e

        if response.status_code >= 500:
            raise FacilitatorUnavailable(
                "Payment facilitator error",
                detail=f"{url} responded with HTTP {response.status_code}",
            )
        try:
            data = response.json()
        except ValueError as e:
            raise FacilitatorUnavailable(
                "Payment facilitator returned invalid JSON", detail=response.text[:200]
            ) from e
        if not isinstance(data, dict):
            raise FacilitatorUnavailable("Payment facilitator returned an unexpected body")
        return data

    async def verify(
        self,
        requirement: PaymentRequirement,
        proof: PaymentProof,
    ) -> VerificationResult:
        data = await self._post("verify", requirement, proof)
        return VerificationResult(
            is_valid=bool(data.get("isValid")),
            payer=data.get("payer"),
            invalid_reason=data.get("invalidReason"),
        )

    async def settle(
        self,
        requirement: PaymentRequirement,
        proof: PaymentProof,
    ) -> PaymentReceipt:
        data = await self._post("settle", requirement, proof)
        if not data.get("success") or not data.get("transaction"):
            raise PaymentVerificationFailed(
                "Payment settlement rejected",
                detail=data.get("errorReason") or data.get("error"),
            )
        return PaymentReceipt(
            transaction=data["transaction"],
            network=data.get("network") or requirement.network,
            payer=data.get("payer") or proof.payer,
            amount=requirement.amount,
            resource=requirement.resource,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
