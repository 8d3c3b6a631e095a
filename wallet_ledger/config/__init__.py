from .networks import SUPPORTED_NETWORKS, NetworkConfig, get_network, is_supported_network
from .settings import (
    Settings,
    DatabaseConfig,
    ProviderConfig,
    TransactionSyncConfig,
    BalanceRefreshConfig,
    get_settings,
)

__all__ = [
    "SUPPORTED_NETWORKS",
    "NetworkConfig",
    "get_network",
    "is_supported_network",
    "Settings",
    "DatabaseConfig",
    "ProviderConfig",
    "TransactionSyncConfig",
    "BalanceRefreshConfig",
    "get_settings",
]
