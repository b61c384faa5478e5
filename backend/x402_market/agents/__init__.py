"""
Agents Module - agent catalog, completion provider and marketplace routes.
"""

from x402_market.agents.completion import (
    ChatOpenAICompletionProvider,
    Completion,
    CompletionError,
    CompletionProvider,
)
from x402_market.agents.models import Agent, AgentDeployRequest, AgentInvokeRequest, AgentPricing
from x402_market.agents.repository import AgentRepository, InMemoryAgentRepository
from x402_market.agents.service import AgentService, agent_price_override

__all__ = [
    "ChatOpenAICompletionProvider",
    "Completion",
    "CompletionError",
    "CompletionProvider",
    "Agent",
    "AgentDeployRequest",
    "AgentInvokeRequest",
    "AgentPricing",
    "AgentRepository",
    "InMemoryAgentRepository",
    "AgentService",
    "agent_price_override",
]
