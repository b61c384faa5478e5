"""
Settlement networks supported by the marketplace.
"""

from dataclasses import dataclass, field
from typing import Dict, List


@dataclass(frozen=True)
class NetworkConfig:
    """Static description of a settlement network."""
    id: str
    name: str
    chain_id: int
    block_explorer_url: str
    usdc_address: str
    is_testnet: bool
    usdc_decimals: int = 6
    faucet_urls: Dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "chainId": self.chain_id,
            "chainIdHex": hex(self.chain_id),
            "isTestnet": self.is_testnet,
            "blockExplorerUrl": self.block_explorer_url,
            "usdcAddress": self.usdc_address,
            "faucetUrls": dict(self.faucet_urls),
        }


SUPPORTED_NETWORKS: Dict[str, NetworkConfig] = {
    "base": NetworkConfig(
        id="base",
        name="Base",
        chain_id=8453,
        block_explorer_url="https://basescan.org",
        usdc_address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        is_testnet=False,
    ),
    "base-sepolia": NetworkConfig(
        id="base-sepolia",
        name="Base Sepolia",
        chain_id=84532,
        block_explorer_url="https://sepolia-explorer.base.org",
        usdc_address="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        is_testnet=True,
        faucet_urls={
            "native": "https://www.coinbase.com/faucets/base-ethereum-goerli-faucet",
            "usdc": "https://faucet.circle.com/",
        },
    ),
    "ethereum-sepolia": NetworkConfig(
        id="ethereum-sepolia",
        name="Ethereum Sepolia",
        chain_id=11155111,
        block_explorer_url="https://sepolia.etherscan.io",
        usdc_address="0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
        is_testnet=True,
        faucet_urls={
            "native": "https://sepoliafaucet.com/",
            "usdc": "https://faucet.circle.com/",
        },
    ),
}


def get_network_config(network_id: str) -> NetworkConfig:
    """Look up a network by id.

    Raises:
        ValueError: If the network is not supported
    """
    config = SUPPORTED_NETWORKS.get(network_id)
    if config is None:
        raise ValueError(f"Unsupported network: {network_id}")
    return config


def is_valid_network(network_id: str) -> bool:
    return network_id in SUPPORTED_NETWORKS


def supported_network_ids() -> List[str]:
    return list(SUPPORTED_NETWORKS)
