"""
Transaction ledger SQLModel schema.
Records are written once by the ledger writer and never updated or deleted.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from sqlmodel import SQLModel, Field, Index

from .base import json_column, block_number_column


class TransactionCategory(str, Enum):
    """Provider transfer categories."""
    EXTERNAL = "external"
    INTERNAL = "internal"
    ERC20 = "erc20"
    ERC721 = "erc721"
    ERC1155 = "erc1155"


class TransactionDirection(str, Enum):
    """Direction relative to the tracked wallet."""
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class TransactionHistory(SQLModel, table=True):
    """Transaction ledger. Natural key is (hash, network)."""

    __tablename__ = "transaction_history"
    __table_args__ = (
        Index("uq_transaction_history_hash_network", "hash", "network", unique=True),
        Index("idx_transaction_history_wallet_network_ts", "wallet_id", "network", "timestamp"),
        Index("idx_transaction_history_block", "block_num", "network"),
        Index("idx_transaction_history_block_decimal", "block_num_decimal"),
    )

    id: Optional[int] = Field(default=None, primary_key=True, description="Auto-increment ID")

    # Natural key
    hash: str = Field(max_length=66, index=True, description="Transaction hash")
    network: str = Field(max_length=50, index=True, description="Network identifier")

    # Parties
    from_address: str = Field(max_length=42, index=True, description="Sender, lowercase")
    to_address: str = Field(max_length=42, index=True, description="Recipient, lowercase")

    # Position
    block_num: str = Field(max_length=20, description="Block number as hex")
    block_num_decimal: int = Field(sa_column=block_number_column(nullable=False), description="Block number")
    timestamp: datetime = Field(index=True, description="Block timestamp")

    # Classification
    category: TransactionCategory = Field(description="Transfer category")
    direction: TransactionDirection = Field(index=True, description="Direction relative to the wallet")

    # Asset
    value: Optional[str] = Field(default=None, max_length=100, description="Transferred amount, decimal string")
    asset: Optional[str] = Field(default=None, max_length=50, description="Asset symbol")
    token_address: Optional[str] = Field(default=None, max_length=42, description="Token contract, None for native")
    token_id: Optional[str] = Field(default=None, max_length=255, description="Token id for NFT transfers")
    erc721_token_id: Optional[str] = Field(default=None, max_length=255, description="Original ERC721 token id")
    erc1155_metadata: Optional[List[Dict[str, Any]]] = Field(
        default=None, sa_column=json_column(), description="ERC1155 [{tokenId, value}] entries"
    )
    raw_contract: Optional[Dict[str, Any]] = Field(
        default=None, sa_column=json_column(), description="Raw contract block from the provider"
    )
    block_metadata: Optional[Dict[str, Any]] = Field(
        default=None, sa_column=json_column(), description="Provider metadata (block timestamp etc.)"
    )
    usd_value: Optional[float] = Field(default=None, description="USD value at transfer time, if known")

    is_whitelisted: bool = Field(default=False, description="Resolved once at write time")

    # Ownership
    wallet_id: int = Field(foreign_key="wallets.id", index=True, description="Wallet whose sync discovered it")
    wallet_address: str = Field(max_length=42, index=True, description="Tracked wallet address, lowercase")

    created_at: datetime = Field(default_factory=datetime.utcnow, description="When record was written")
