"""
Application configuration for the marketplace API.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MODELS = [
    "meta-llama/Meta-Llama-3.1-8B-Instruct",
    "meta-llama/Meta-Llama-3.1-70B-Instruct",
    "microsoft/Phi-3-medium-4k-instruct",
]


class MarketplaceConfig(BaseSettings):
    """Server, logging and completion-provider configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    port: int = 3001
    debug: bool = False
    log_level: Optional[str] = None
    frontend_url: str = "http://localhost:3000"

    # Completion provider (OpenAI-compatible API)
    hyperbolic_api_key: Optional[str] = None
    completion_base_url: str = "https://api.hyperbolic.xyz/v1"
    default_model: str = DEFAULT_MODELS[0]
    request_timeout_seconds: float = 30.0
