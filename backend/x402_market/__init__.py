"""x402 Agent Marketplace: pay-per-request AI agents over HTTP 402."""

__version__ = "0.1.0"
