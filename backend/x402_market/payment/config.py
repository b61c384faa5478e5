"""
Configuration for the x402 payment layer.

Loads and validates environment variables for the payee, settlement network,
facilitator and route price table.
"""

from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from x402_market.payment.networks import is_valid_network, supported_network_ids

# Priced routes: "METHOD /path" -> price and network
DEFAULT_ROUTE_PRICES: Dict[str, Dict[str, str]] = {
    # Paid chat completions endpoint
    "POST /v1/chat/completions": {"price": "$0.001", "network": "base-sepolia"},
    # Tiered agents
    "POST /api/agents/basic/invoke": {"price": "$0.05", "network": "base"},
    "POST /api/agents/advanced/invoke": {"price": "$0.10", "network": "base"},
    "POST /api/agents/premium/invoke": {"price": "$0.25", "network": "base"},
    # Custom agent deployment
    "POST /api/agents/deploy": {"price": "$1.00", "network": "base"},
    # Default for any agent; an agent's own pricing overrides it
    "POST /api/agents/{id}/invoke": {"price": "$0.10", "network": "base"},
}


class PaymentConfig(BaseSettings):
    """x402 payment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Payee
    payment_address: str = ""

    # Network and asset
    network_id: str = "base-sepolia"
    x402_asset: str = "USDC"

    # Validity window a client may give its authorization
    x402_max_timeout_seconds: int = 300

    # Facilitator (unset URL -> built-in local facilitator)
    facilitator_url: Optional[str] = None
    facilitator_api_key: Optional[str] = None
    x402_facilitator_timeout_seconds: float = 10.0

    # Price table
    x402_route_prices: Dict[str, Dict[str, str]] = Field(
        default_factory=lambda: dict(DEFAULT_ROUTE_PRICES)
    )

    def validate_config(self) -> None:
        """Validate required configuration.

        Raises:
            ValueError: If required configuration is missing or invalid
        """
        if not self.payment_address:
            raise ValueError("PAYMENT_ADDRESS environment variable is required")

        if not self.payment_address.startswith("0x") or len(self.payment_address) != 42:
            raise ValueError(
                f"PAYMENT_ADDRESS must be a valid Ethereum address: {self.payment_address}"
            )

        if not is_valid_network(self.network_id):
            raise ValueError(
                f"NETWORK_ID must be one of {supported_network_ids()}, got {self.network_id}"
            )

        for route, entry in self.x402_route_prices.items():
            network = entry.get("network")
            if network and not is_valid_network(network):
                raise ValueError(f"Route {route} uses unsupported network {network}")

        if self.x402_facilitator_timeout_seconds <= 0:
            raise ValueError("X402_FACILITATOR_TIMEOUT_SECONDS must be positive")
