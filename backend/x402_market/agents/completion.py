"""
Completion provider - the AI inference backend behind every agent.

The marketplace treats inference as a black box returning text and token
usage. The default provider talks to an OpenAI-compatible endpoint (Hyperbolic)
through langchain-openai.

ENVIRONMENT VARIABLES:
- HYPERBOLIC_API_KEY: API key for the completion endpoint
- COMPLETION_BASE_URL: OpenAI-compatible base URL
- DEFAULT_MODEL: Model used when a request does not name one
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from x402_market.agents.models import TokenUsage
from x402_market.config import DEFAULT_MODELS

logger = logging.getLogger(__name__)

# Constants
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000

_MESSAGE_TYPES = {
    "system": SystemMessage,
    "user": HumanMessage,
    "assistant": AIMessage,
}


class CompletionError(Exception):
    """The completion provider failed to produce a response."""


@dataclass
class Completion:
    text: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)


class CompletionProvider(ABC):
    """Black-box text completion backend."""

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: List[Dict[str, str]],
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        request_id: Optional[str] = None,
    ) -> Completion:
        """Run a chat completion.

        Args:
            model: Model identifier
            messages: ``{"role", "content"}`` chat messages
            max_tokens: Completion token limit
            temperature: Sampling temperature
            request_id: Correlation id forwarded to the backend

        Raises:
            CompletionError: If the backend fails
        """

    @abstractmethod
    async def list_models(self, request_id: Optional[str] = None) -> List[str]:
        """Return the models the backend serves."""


def to_langchain_messages(messages: List[Dict[str, str]]) -> List[BaseMessage]:
    converted = []
    for message in messages:
        message_cls = _MESSAGE_TYPES.get(message.get("role", "user"), HumanMessage)
        converted.append(message_cls(content=message.get("content", "")))
    return converted


def usage_from_message(message: AIMessage) -> TokenUsage:
    usage = getattr(message, "usage_metadata", None) or {}
    if usage:
        return TokenUsage(
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
        )
    token_usage = (message.response_metadata or {}).get("token_usage") or {}
    return TokenUsage(
        prompt_tokens=token_usage.get("prompt_tokens", 0),
        completion_tokens=token_usage.get("completion_tokens", 0),
        total_tokens=token_usage.get("total_tokens", 0),
    )


class ChatOpenAICompletionProvider(CompletionProvider):
    """Completion provider for OpenAI-compatible APIs."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def create_chat_model(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        request_id: Optional[str] = None,
    ) -> ChatOpenAI:
        """Create and configure the ChatOpenAI model."""
        headers = {"X-Request-ID": request_id} if request_id else None
        return ChatOpenAI(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            default_headers=headers,
        )

    async def complete(
        self,
        model: str,
        messages: List[Dict[str, str]],
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        request_id: Optional[str] = None,
    ) -> Completion:
        if not self.api_key:
            raise CompletionError("HYPERBOLIC_API_KEY environment variable is not set")

        llm = self.create_chat_model(model, max_tokens, temperature, request_id)
        try:
            result = await llm.ainvoke(to_langchain_messages(messages))
        except Exception as e:
            logger.error("Completion request failed for model %s: %s", model, e)
            raise CompletionError("The AI service is currently unavailable") from e

        content = result.content if isinstance(result.content, str) else str(result.content)
        return Completion(
            text=content,
            model=(result.response_metadata or {}).get("model_name") or model,
            usage=usage_from_message(result),
        )

    async def list_models(self, request_id: Optional[str] = None) -> List[str]:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if request_id:
            headers["X-Request-ID"] = request_id
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(f"{self.base_url}/models", headers=headers)
                response.raise_for_status()
                data = response.json()
            return [model["id"] for model in data.get("data", []) if "id" in model]
        except (httpx.HTTPError, ValueError, KeyError, AttributeError) as e:
            logger.error("Failed to fetch available models: %s", e)
            # Fall back to the default model list
            return list(DEFAULT_MODELS)
