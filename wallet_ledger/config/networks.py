"""
Supported EVM networks and their provider endpoints.
"""

from dataclasses import dataclass
from typing import Dict, List

from wallet_ledger.exceptions import UnsupportedNetworkError


@dataclass(frozen=True)
class NetworkConfig:
    """Static description of a supported network."""
    name: str
    chain_id: int
    rpc_host: str
    native_symbol: str
    supports_internal_transfers: bool = False


SUPPORTED_NETWORKS: Dict[str, NetworkConfig] = {
    "eth-mainnet": NetworkConfig("eth-mainnet", 1, "eth-mainnet", "ETH", True),
    "eth-sepolia": NetworkConfig("eth-sepolia", 11155111, "eth-sepolia", "ETH"),
    "polygon-mainnet": NetworkConfig("polygon-mainnet", 137, "polygon-mainnet", "MATIC", True),
    "polygon-amoy": NetworkConfig("polygon-amoy", 80002, "polygon-amoy", "MATIC"),
    "arbitrum-mainnet": NetworkConfig("arbitrum-mainnet", 42161, "arb-mainnet", "ETH"),
    "arbitrum-sepolia": NetworkConfig("arbitrum-sepolia", 421614, "arb-sepolia", "ETH"),
    "optimism-mainnet": NetworkConfig("optimism-mainnet", 10, "opt-mainnet", "ETH"),
    "optimism-sepolia": NetworkConfig("optimism-sepolia", 11155420, "opt-sepolia", "ETH"),
    "base-mainnet": NetworkConfig("base-mainnet", 8453, "base-mainnet", "ETH"),
    "base-sepolia": NetworkConfig("base-sepolia", 84532, "base-sepolia", "ETH"),
}


def get_network(name: str) -> NetworkConfig:
    """Look up a network by identifier.

    Raises:
        UnsupportedNetworkError: if the network is not registered
    """
    try:
        return SUPPORTED_NETWORKS[name]
    except KeyError:
        raise UnsupportedNetworkError(name, {"supported": sorted(SUPPORTED_NETWORKS)}) from None


def is_supported_network(name: str) -> bool:
    return name in SUPPORTED_NETWORKS


def supported_network_names() -> List[str]:
    return sorted(SUPPORTED_NETWORKS)
