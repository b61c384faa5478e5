"""
Agent catalog and invocation models.

Agents serialize with camelCase field names, the shape the marketplace UI and
SDK consume.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from x402_market.payment.networks import is_valid_network, supported_network_ids
from x402_market.payment.types import PaymentReceipt

AGENT_PRICE_PATTERN = r"^\$\d+(\.\d{1,2})?$"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DEPLOYING = "deploying"


class AgentPricing(CamelModel):
    """Custom per-invocation price, e.g. ``{"price": "$0.10", "network": "base"}``."""

    price: str = Field(..., pattern=AGENT_PRICE_PATTERN)
    network: str = "base"

    @field_validator("network")
    @classmethod
    def check_network(cls, v: str) -> str:
        if not is_valid_network(v):
            raise ValueError(f"network must be one of {supported_network_ids()}")
        return v


class Agent(CamelModel):
    id: str
    name: str
    description: str
    model: str
    system_prompt: str
    pricing: Optional[AgentPricing] = None
    capabilities: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    owner: str = "anonymous"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    total_invocations: int = 0
    rating: Optional[float] = None
    status: AgentStatus = AgentStatus.ACTIVE


class InvokeParameters(BaseModel):
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, ge=1, le=4000)


class AgentInvokeRequest(BaseModel):
    """Body of ``POST /api/agents/{id}/invoke``."""

    input: str = Field(..., min_length=1)
    parameters: Optional[InvokeParameters] = None


class AgentDeployRequest(CamelModel):
    """Body of ``POST /api/agents/deploy``."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    model: str = Field(..., min_length=1)
    system_prompt: str = Field(..., min_length=1, max_length=2000)
    pricing: Optional[AgentPricing] = None
    capabilities: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class InvocationResult(CamelModel):
    agent_id: str
    response: str
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)


class ChatMessage(BaseModel):
    role: str = Field(..., pattern=r"^(system|user|assistant)$")
    content: str = Field(..., min_length=1)


class ChatCompletionRequest(BaseModel):
    """OpenAI-shaped chat completion request."""

    model: Optional[str] = None
    messages: List[ChatMessage] = Field(..., min_length=1)
    max_tokens: Optional[int] = Field(default=None, ge=1, le=4000)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    stream: Optional[bool] = None


class AgentSummary(BaseModel):
    id: str
    name: str


class AgentListResponse(BaseModel):
    agents: List[Agent]
    total: int
    timestamp: str


class AgentDetailResponse(BaseModel):
    agent: Agent
    timestamp: str


class AgentInvokeResponse(BaseModel):
    """Invocation response. ``payment`` is filled in by the SDK from the receipt header."""

    success: bool
    result: InvocationResult
    agent: AgentSummary
    timestamp: str
    payment: Optional[PaymentReceipt] = None


class AgentDeployResponse(BaseModel):
    success: bool
    agent: Agent
    message: str
    timestamp: str
    payment: Optional[PaymentReceipt] = None


class TransactionLogResponse(CamelModel):
    status: str
    message: str
    request_id: str
    timestamp: str


def dump_camel(model: BaseModel) -> Dict[str, Any]:
    """Serialize a response model for the wire."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)
