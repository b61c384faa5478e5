import asyncio
from typing import Dict, List, Optional

import pytest
from eth_account import Account

from x402_market.agents.completion import Completion, CompletionProvider
from x402_market.agents.models import TokenUsage
from x402_market.agents.repository import InMemoryAgentRepository
from x402_market.config import MarketplaceConfig
from x402_market.main import create_app
from x402_market.payment.config import PaymentConfig
from x402_market.payment.facilitator import Facilitator, LocalFacilitator, VerificationResult
from x402_market.payment.transaction_log import InMemoryTransactionLog
from x402_market.payment.types import PaymentReceipt

PAY_TO = "0x1111111111111111111111111111111111111111"
PAYER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
OTHER_KEY = "0x8da4ef21b864d2cc526dbdb2a120bd2874c36c9d0a1fb7f8c63d7f7a8b41de8f"


class FakeCompletionProvider(CompletionProvider):
    """Deterministic completion backend."""

    def __init__(self, text: str = "Hello from the agent", models: Optional[List[str]] = None):
        self.text = text
        self.models = models or ["test/model-a", "test/model-b"]
        self.calls: List[Dict] = []

    async def complete(self, model, messages, max_tokens=1000, temperature=0.7, request_id=None):
        self.calls.append({"model": model, "messages": messages, "request_id": request_id})
        return Completion(
            text=self.text,
            model=model,
            usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )

    async def list_models(self, request_id=None):
        return list(self.models)


class FakeFacilitator(Facilitator):
    """Facilitator with scripted outcomes that records every call."""

    def __init__(
        self,
        valid: bool = True,
        verify_error: Optional[Exception] = None,
        settle_error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.valid = valid
        self.verify_error = verify_error
        self.settle_error = settle_error
        self.delay = delay
        self.verify_calls = []
        self.settle_calls = []

    async def verify(self, requirement, proof):
        self.verify_calls.append((requirement, proof))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.verify_error:
            raise self.verify_error
        if not self.valid:
            return VerificationResult(is_valid=False, invalid_reason="scripted rejection")
        return VerificationResult(is_valid=True, payer=proof.payer)

    async def settle(self, requirement, proof):
        self.settle_calls.append((requirement, proof))
        if self.settle_error:
            raise self.settle_error
        return PaymentReceipt(
            transaction="0x" + "ab" * 32,
            network=proof.network,
            payer=proof.payer,
            amount=requirement.amount,
            resource=requirement.resource,
        )


@pytest.fixture
def payer():
    return Account.from_key(PAYER_KEY)


@pytest.fixture
def other_account():
    return Account.from_key(OTHER_KEY)


@pytest.fixture
def payment_config():
    return PaymentConfig(_env_file=None, payment_address=PAY_TO, network_id="base-sepolia")


@pytest.fixture
def marketplace_config():
    return MarketplaceConfig(
        _env_file=None,
        hyperbolic_api_key="test-key",
        frontend_url="http://localhost:3000",
    )


@pytest.fixture
def completion_provider():
    return FakeCompletionProvider()


@pytest.fixture
def repository():
    return InMemoryAgentRepository.with_demo_agents()


@pytest.fixture
def transaction_log():
    return InMemoryTransactionLog()


@pytest.fixture
def local_facilitator():
    return LocalFacilitator()


@pytest.fixture
def make_app(payment_config, marketplace_config, repository, completion_provider, transaction_log):
    """Factory for a marketplace app wired with test doubles."""

    def _make(facilitator: Optional[Facilitator] = None, payment: Optional[PaymentConfig] = None):
        return create_app(
            payment_config=payment or payment_config,
            marketplace_config=marketplace_config,
            repository=repository,
            facilitator=facilitator or LocalFacilitator(),
            completion_provider=completion_provider,
            transaction_log=transaction_log,
        )

    return _make


def agent_id_by_name(repository, name: str) -> str:
    return next(agent.id for agent in repository.list() if agent.name == name)
