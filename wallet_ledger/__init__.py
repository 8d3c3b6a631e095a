"""
Wallet ledger: incremental transaction history sync and balance tracking for EVM wallets.
"""

__version__ = "0.1.0"
