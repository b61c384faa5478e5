#!/usr/bin/env python3
"""
Demo script: list marketplace agents and invoke one with x402 payment.

ENVIRONMENT VARIABLES:
- MARKETPLACE_URL: API base URL (default http://localhost:3001)
- CLIENT_PRIVATE_KEY: Hex private key used to sign payments
"""

import asyncio
import os

from dotenv import load_dotenv

from x402_market.sdk import MarketplaceClient, MarketplaceClientError

load_dotenv()


async def invoke_agent():
    """Invoke the first listed agent with a few test prompts."""

    url = os.getenv("MARKETPLACE_URL", "http://localhost:3001")
    private_key = os.getenv("CLIENT_PRIVATE_KEY")

    test_messages = [
        "Write a Python function that reverses a string",
        "Explain what HTTP 402 Payment Required is for",
    ]

    async with MarketplaceClient(url, account=private_key) as client:
        print(f"Payer: {client.account_address or '(no account: payments disabled)'}")
        agents = await client.list_agents()
        if not agents.agents:
            print("No agents available")
            return
        agent = agents.agents[0]
        print(f"Using agent: {agent.name} ({agent.id})")

        for message in test_messages:
            print(f"\n{'='*60}")
            print(f"User: {message}")
            print(f"{'='*60}")

            try:
                result = await client.invoke_agent(agent.id, {"input": message})
            except MarketplaceClientError as e:
                print(f"Error: {e}")
                continue

            print(f"Agent: {result.result.response}")
            print(f"Tokens: {result.result.usage.total_tokens}")
            if result.payment:
                print(f"Paid {result.payment.amount} on {result.payment.network}: "
                      f"{result.payment.transaction}")

    print(f"\n{'='*60}")
    print("Test completed!")


if __name__ == "__main__":
    print("Testing x402 agent invocation...")
    print("Make sure the marketplace is running (x402-market)")
    asyncio.run(invoke_agent())
