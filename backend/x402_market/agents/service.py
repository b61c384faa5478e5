"""
Agent service - catalog operations and invocation.
"""

import logging
from typing import Dict, List, Optional

from x402_market.agents.completion import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    Completion,
    CompletionProvider,
)
from x402_market.agents.models import (
    Agent,
    AgentDeployRequest,
    AgentInvokeRequest,
    AgentStatus,
    InvocationResult,
    utc_now,
)
from x402_market.agents.repository import AgentRepository, generate_agent_id
from x402_market.payment.pricing import PriceOverride, RouteMatch

logger = logging.getLogger(__name__)


class AgentNotFound(LookupError):
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id} not found")


class AgentInactive(Exception):
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id} is not active")


class AgentService:
    """Catalog and invocation logic on top of an injected repository."""

    def __init__(
        self,
        repository: AgentRepository,
        completion_provider: CompletionProvider,
        default_model: str,
    ):
        self.repository = repository
        self.completion_provider = completion_provider
        self.default_model = default_model

    def list_agents(self) -> List[Agent]:
        return self.repository.list()

    def get_agent(self, agent_id: str) -> Agent:
        agent = self.repository.get(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        return agent

    def deploy_agent(self, request: AgentDeployRequest, owner: str = "anonymous") -> Agent:
        agent = Agent(
            id=generate_agent_id(),
            owner=owner,
            **request.model_dump(),
        )
        self.repository.upsert(agent)
        logger.info("Agent deployed: %s (%s, model=%s, owner=%s)",
                    agent.id, agent.name, agent.model, owner)
        return agent

    async def invoke_agent(
        self,
        agent_id: str,
        request: AgentInvokeRequest,
        request_id: Optional[str] = None,
    ) -> InvocationResult:
        """Run the agent's completion for ``request``.

        Raises:
            AgentNotFound: If the agent does not exist
            AgentInactive: If the agent is not active
            CompletionError: If the completion provider fails
        """
        agent = self.get_agent(agent_id)
        if agent.status != AgentStatus.ACTIVE:
            raise AgentInactive(agent_id)

        params = request.parameters
        model = (params and params.model) or agent.model
        completion = await self.completion_provider.complete(
            model=model,
            messages=[
                {"role": "system", "content": agent.system_prompt},
                {"role": "user", "content": request.input},
            ],
            max_tokens=(params and params.max_tokens) or DEFAULT_MAX_TOKENS,
            temperature=(
                params.temperature
                if params and params.temperature is not None
                else DEFAULT_TEMPERATURE
            ),
            request_id=request_id,
        )

        # Count against the latest stored copy
        current = self.repository.get(agent_id) or agent
        updated = current.model_copy(
            update={
                "total_invocations": current.total_invocations + 1,
                "updated_at": utc_now(),
            }
        )
        self.repository.upsert(updated)

        logger.info("Agent invoked: %s model=%s input_length=%d total_invocations=%d",
                    agent_id, completion.model, len(request.input), updated.total_invocations)
        return InvocationResult(
            agent_id=agent_id,
            response=completion.text,
            model=completion.model,
            usage=completion.usage,
        )

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        request_id: Optional[str] = None,
    ) -> Completion:
        return await self.completion_provider.complete(
            model=model or self.default_model,
            messages=messages,
            max_tokens=max_tokens or DEFAULT_MAX_TOKENS,
            temperature=DEFAULT_TEMPERATURE if temperature is None else temperature,
            request_id=request_id,
        )

    async def available_models(self, request_id: Optional[str] = None) -> List[str]:
        return await self.completion_provider.list_models(request_id=request_id)


def agent_price_override(repository: AgentRepository):
    """Price provider that applies an agent's custom pricing to its invoke route."""

    def provider(match: RouteMatch) -> Optional[PriceOverride]:
        agent_id = match.params.get("id")
        if not agent_id:
            return None
        agent = repository.get(agent_id)
        if agent is None or agent.pricing is None:
            return None
        return PriceOverride(price=agent.pricing.price, network=agent.pricing.network)

    return provider
