"""
Marketplace SDK client.

Async client for the agent marketplace API. Every call goes through
PayingFetch, so priced endpoints are paid transparently when an account is
configured; receipts are attached to the result as ``payment`` and forwarded
to the server's transaction log.

Example:
    async with MarketplaceClient("http://localhost:3001", account=PRIVATE_KEY) as client:
        agents = await client.list_agents()
        result = await client.invoke_agent(agents.agents[0].id, {"input": "Hello"})
"""

import logging
import uuid
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import httpx
from eth_account import Account
from eth_account.signers.local import LocalAccount

from x402_market.agents.models import (
    AgentDeployResponse,
    AgentDetailResponse,
    AgentInvokeResponse,
    AgentListResponse,
)
from x402_market.payment.codec import X_PAYER_ADDRESS, X_REQUEST_ID
from x402_market.payment.types import PaymentReceipt
from x402_market.sdk.fetch import DEFAULT_TIMEOUT_SECONDS, PaidResponse, PayingFetch

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "base-sepolia"


class MarketplaceClientError(Exception):
    """A marketplace call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class _CallFailed(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class MarketplaceClient:
    """Client for the x402 agent marketplace."""

    def __init__(
        self,
        base_url: str,
        account: Union[LocalAccount, str, None] = None,
        network: str = DEFAULT_NETWORK,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Marketplace API base URL
            account: Signing account or hex private key; None disables payments
            network: Preferred settlement network
            timeout: Bound in seconds for each call, payment retry included
            transport: Optional httpx transport (e.g. for tests)
        """
        self._base_url = base_url.rstrip("/")
        self._account = Account.from_key(account) if isinstance(account, str) else account
        self._network = network
        self._client = httpx.AsyncClient(base_url=self._base_url, transport=transport)
        self._fetch = PayingFetch(self._client, self._account, timeout=timeout)

    @property
    def account_address(self) -> str:
        return self._account.address if self._account is not None else ""

    @property
    def network(self) -> str:
        return self._network

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> "MarketplaceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_agents(self) -> AgentListResponse:
        """List all available agents."""
        try:
            paid = await self._call("GET", "/api/agents")
            return AgentListResponse.model_validate(paid.response.json())
        except Exception as e:
            raise self._wrap("Failed to list agents", e) from e

    async def get_agent(self, agent_id: str) -> AgentDetailResponse:
        """Get specific agent details."""
        try:
            paid = await self._call("GET", f"/api/agents/{quote(agent_id, safe='')}", agent_id=agent_id)
            return AgentDetailResponse.model_validate(paid.response.json())
        except Exception as e:
            raise self._wrap(f"Failed to get agent {agent_id}", e) from e

    async def invoke_agent(self, agent_id: str, payload: Dict[str, Any]) -> AgentInvokeResponse:
        """Invoke an agent (requires payment via x402)."""
        path = f"/api/agents/{quote(agent_id, safe='')}/invoke"
        try:
            paid = await self._call("POST", path, json=payload, agent_id=agent_id)
            result = AgentInvokeResponse.model_validate(paid.response.json())
        except Exception as e:
            raise self._wrap(f"Failed to invoke agent {agent_id}", e) from e

        if paid.receipt is None:
            return result
        await self._log_transaction(
            paid.receipt,
            {
                "agentId": agent_id,
                "model": result.result.model,
                "tokens": result.result.usage.total_tokens,
            },
        )
        return result.model_copy(update={"payment": paid.receipt})

    async def deploy_agent(self, config: Dict[str, Any]) -> AgentDeployResponse:
        """Deploy a new agent (requires payment via x402)."""
        try:
            paid = await self._call("POST", "/api/agents/deploy", json=config)
            result = AgentDeployResponse.model_validate(paid.response.json())
        except Exception as e:
            raise self._wrap("Failed to deploy agent", e) from e

        if paid.receipt is None:
            return result
        await self._log_transaction(
            paid.receipt,
            {"agentId": result.agent.id, "operation": "deploy", "agentName": result.agent.name},
        )
        return result.model_copy(update={"payment": paid.receipt})

    async def get_available_models(self) -> Dict[str, Any]:
        try:
            paid = await self._call("GET", "/api/agents/models")
            return paid.response.json()
        except Exception as e:
            raise self._wrap("Failed to get available models", e) from e

    async def get_networks(self) -> Dict[str, Any]:
        try:
            paid = await self._call("GET", "/api/agents/networks")
            return paid.response.json()
        except Exception as e:
            raise self._wrap("Failed to get networks", e) from e

    async def _call(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        agent_id: Optional[str] = None,
    ) -> PaidResponse:
        paid = await self._fetch.request(method, path, json=json)
        response = paid.response
        if response.is_success:
            return paid
        if response.status_code == 404 and agent_id is not None:
            raise _CallFailed(f"Agent {agent_id} not found", 404)
        raise _CallFailed(self._error_message(response), response.status_code)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("message"):
            return data["message"]
        return f"HTTP {response.status_code}: {response.reason_phrase}"

    @staticmethod
    def _wrap(prefix: str, error: Exception) -> MarketplaceClientError:
        return MarketplaceClientError(
            f"{prefix}: {error}",
            status_code=getattr(error, "status_code", None),
        )

    async def _log_transaction(self, receipt: PaymentReceipt, metadata: Dict[str, Any]) -> None:
        """Report a confirmed payment; failures are logged and never raised."""
        request_id = str(uuid.uuid4())
        body = {
            "transactionHash": receipt.transaction,
            "network": receipt.network,
            "payer": receipt.payer,
            "amount": receipt.amount,
            **{key: value for key, value in metadata.items() if value is not None},
        }
        try:
            response = await self._client.post(
                "/api/agents/transaction-log",
                json=body,
                headers={X_REQUEST_ID: request_id, X_PAYER_ADDRESS: receipt.payer},
            )
        except httpx.HTTPError as e:
            logger.warning("Error logging transaction %s: %s", receipt.transaction, e)
            return
        if response.is_success:
            logger.info("Transaction logged: %s", receipt.transaction)
        else:
            logger.warning("Failed to log transaction %s: HTTP %d",
                           receipt.transaction, response.status_code)
