"""
Agent repository.

The repository is injected into the application so the catalog can be backed
by any store; the in-memory implementation is seeded with demo agents.
"""

import logging
import secrets
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from x402_market.agents.models import Agent, AgentPricing

logger = logging.getLogger(__name__)


def generate_agent_id() -> str:
    return f"agent_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


DEMO_AGENTS = [
    {
        "name": "Code Assistant",
        "description": "Helps with coding questions and debugging",
        "model": "meta-llama/Meta-Llama-3.1-8B-Instruct",
        "system_prompt": (
            "You are a helpful coding assistant. "
            "Provide clear, accurate code examples and explanations."
        ),
        "capabilities": ["coding", "debugging", "code-review"],
        "tags": ["development", "programming", "ai-assistant"],
        "pricing": AgentPricing(price="$0.05", network="base"),
    },
    {
        "name": "Content Writer",
        "description": "Professional content creation and copywriting",
        "model": "meta-llama/Meta-Llama-3.1-70B-Instruct",
        "system_prompt": (
            "You are a professional content writer. "
            "Create engaging, well-structured content tailored to the audience."
        ),
        "capabilities": ["writing", "copywriting", "content-strategy"],
        "tags": ["content", "marketing", "writing"],
        "pricing": AgentPricing(price="$0.15", network="base"),
    },
    {
        "name": "Data Analyst",
        "description": "Analyze data and generate insights",
        "model": "meta-llama/Meta-Llama-3.1-70B-Instruct",
        "system_prompt": (
            "You are a data analyst. Provide clear insights, statistical analysis, "
            "and data-driven recommendations."
        ),
        "capabilities": ["data-analysis", "statistics", "insights"],
        "tags": ["data", "analytics", "business-intelligence"],
        "pricing": AgentPricing(price="$0.20", network="base"),
    },
]


class AgentRepository(ABC):
    """Storage for the agent catalog."""

    @abstractmethod
    def get(self, agent_id: str) -> Optional[Agent]:
        """Return the agent with ``agent_id``, or None."""

    @abstractmethod
    def list(self) -> List[Agent]:
        """Return all agents."""

    @abstractmethod
    def upsert(self, agent: Agent) -> Agent:
        """Insert or replace an agent."""


class InMemoryAgentRepository(AgentRepository):
    """Thread-safe dict-backed repository."""

    def __init__(self, agents: Iterable[Agent] = ()):
        self._lock = threading.Lock()
        self._agents: Dict[str, Agent] = {agent.id: agent for agent in agents}

    @classmethod
    def with_demo_agents(cls) -> "InMemoryAgentRepository":
        agents = [
            Agent(id=generate_agent_id(), owner="system", **data)
            for data in DEMO_AGENTS
        ]
        logger.info("Demo agents initialized: %d", len(agents))
        return cls(agents)

    def get(self, agent_id: str) -> Optional[Agent]:
        with self._lock:
            return self._agents.get(agent_id)

    def list(self) -> List[Agent]:
        with self._lock:
            return list(self._agents.values())

    def upsert(self, agent: Agent) -> Agent:
        with self._lock:
            self._agents[agent.id] = agent
        return agent
