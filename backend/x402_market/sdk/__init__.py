"""
Client SDK for the x402 agent marketplace.
"""

from x402_market.sdk.client import MarketplaceClient, MarketplaceClientError
from x402_market.sdk.fetch import PaidResponse, PayingFetch

__all__ = [
    "MarketplaceClient",
    "MarketplaceClientError",
    "PaidResponse",
    "PayingFetch",
]
