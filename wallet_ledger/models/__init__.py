"""
SQLModel database models for the wallet ledger.
"""

from .wallet import Wallet, WalletBalance, NATIVE_TOKEN_KEY
from .whitelist import WhitelistToken
from .ledger import TransactionHistory, TransactionCategory, TransactionDirection
from .state import WalletSyncStatus, SyncStatus

__all__ = [
    # Wallets
    "Wallet",
    "WalletBalance",
    "NATIVE_TOKEN_KEY",
    "WhitelistToken",
    # Ledger
    "TransactionHistory",
    "TransactionCategory",
    "TransactionDirection",
    # Sync state
    "WalletSyncStatus",
    "SyncStatus"
]
