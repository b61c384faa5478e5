"""
Paying Fetch - an httpx wrapper that settles x402 challenges automatically.

A request that comes back 402 is answered with a signed payment proof and
retried exactly once. A second 402 is terminal and handed back to the caller.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from eth_account.signers.local import LocalAccount

from x402_market.payment.codec import (
    X_PAYER_ADDRESS,
    X_PAYMENT,
    X_PAYMENT_REQUIRED,
    X_PAYMENT_RESPONSE,
    X_REQUEST_ID,
    decode_receipt,
    decode_requirement,
    encode_proof,
)
from x402_market.payment.errors import (
    MalformedPaymentHeader,
    MissingPaymentChallenge,
    PaymentExchangeTimeout,
    PaymentNotConfigured,
)
from x402_market.payment.signing import build_payment_proof
from x402_market.payment.types import PaymentReceipt

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass
class PaidResponse:
    """Final response of an exchange plus the receipt, if one was issued."""
    response: httpx.Response
    receipt: Optional[PaymentReceipt] = None
    attempts: int = 1

    @property
    def paid(self) -> bool:
        return self.receipt is not None


class PayingFetch:
    """Sends requests and pays x402 challenges with ``account``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        account: Optional[LocalAccount] = None,
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    ):
        """Initialize the paying fetch.

        Args:
            client: httpx client used for every attempt
            account: Signing account; without one a challenge raises PaymentNotConfigured
            timeout: Bound in seconds for the whole exchange, both attempts included
        """
        self.client = client
        self.account = account
        self.timeout = timeout

    async def request(self, method: str, url: str, **kwargs: Any) -> PaidResponse:
        """Build a request with the underlying client and send it."""
        return await self.send(self.client.build_request(method, url, **kwargs))

    async def send(self, request: httpx.Request, timeout: Optional[float] = None) -> PaidResponse:
        """Send ``request``, paying once if challenged.

        Raises:
            MissingPaymentChallenge: 402 without an X-PAYMENT-REQUIRED header
            MalformedPaymentHeader: A payment header could not be decoded
            PaymentNotConfigured: Payment required but no account is configured
            PaymentExchangeTimeout: The exchange did not finish in time
        """
        timeout = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(self._exchange(request), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise PaymentExchangeTimeout(
                "Paid request timed out",
                detail=f"{request.method} {request.url} exceeded {timeout}s",
            ) from e

    async def _exchange(self, request: httpx.Request) -> PaidResponse:
        if X_REQUEST_ID not in request.headers:
            request.headers[X_REQUEST_ID] = str(uuid.uuid4())
        request.headers.setdefault("Accept", "application/json")
        if self.account is not None:
            request.headers[X_PAYER_ADDRESS] = self.account.address

        body = await request.aread()
        response = await self.client.send(request)
        if response.status_code != 402:
            return PaidResponse(response, self._receipt_from(response), attempts=1)

        challenge = response.headers.get(X_PAYMENT_REQUIRED)
        await response.aclose()
        if not challenge:
            raise MissingPaymentChallenge("402 response missing X-PAYMENT-REQUIRED header")
        requirement = decode_requirement(challenge)

        if self.account is None:
            raise PaymentNotConfigured(
                "Payment required but no account provided",
                detail=f"{requirement.amount} {requirement.asset} on {requirement.network}",
            )

        logger.info("Payment required for %s: %s %s on %s",
                    requirement.resource, requirement.amount, requirement.asset, requirement.network)
        try:
            proof = build_payment_proof(requirement, self.account)
        except ValueError as e:
            raise MalformedPaymentHeader("Cannot sign payment requirement", detail=str(e)) from e

        retry = httpx.Request(
            request.method,
            request.url,
            headers=request.headers.copy(),
            content=body,
            extensions=request.extensions,
        )
        retry.headers[X_PAYMENT] = encode_proof(proof)
        response = await self.client.send(retry)

        if response.status_code == 402:
            logger.warning("Payment rejected for %s", requirement.resource)
            return PaidResponse(response, None, attempts=2)
        return PaidResponse(response, self._receipt_from(response), attempts=2)

    @staticmethod
    def _receipt_from(response: httpx.Response) -> Optional[PaymentReceipt]:
        header = response.headers.get(X_PAYMENT_RESPONSE)
        if not header:
            return None
        return decode_receipt(header)
