"""
Wallet and balance snapshot SQLModel schemas.
A wallet owns its balance rows, transaction records and sync states by
foreign key; reverse navigation is a query, not a stored back-pointer.
"""

from datetime import datetime
from typing import List, Optional
from sqlmodel import SQLModel, Field, Index

from .base import json_column

NATIVE_TOKEN_KEY = "native"


class Wallet(SQLModel, table=True):
    """Tracked wallet addresses."""

    __tablename__ = "wallets"
    __table_args__ = (
        Index("idx_wallets_active", "active"),
    )

    id: Optional[int] = Field(default=None, primary_key=True, description="Auto-increment ID")

    address: str = Field(max_length=42, unique=True, index=True, description="Lowercase EVM address")
    name: Optional[str] = Field(default=None, max_length=255, description="Display name")
    description: Optional[str] = Field(default=None, description="Free-form description")

    active: bool = Field(default=True, description="Whether the wallet is tracked")
    networks: Optional[List[str]] = Field(
        default=None,
        sa_column=json_column(),
        description="Tracked network identifiers, e.g. ['eth-mainnet', 'polygon-mainnet']"
    )
    last_tracked: Optional[datetime] = Field(default=None, description="When balances were last refreshed")

    created_at: datetime = Field(default_factory=datetime.utcnow, description="When wallet was registered")
    updated_at: datetime = Field(default_factory=datetime.utcnow, description="When wallet was last updated")

    def tracks(self, network: str) -> bool:
        return network in (self.networks or [])


class WalletBalance(SQLModel, table=True):
    """Balance snapshot rows. The full set for a wallet is replaced on every refresh."""

    __tablename__ = "wallet_balances"
    __table_args__ = (
        Index("uq_wallet_balances_wallet_token_network", "wallet_id", "token_key", "network", unique=True),
        Index("idx_wallet_balances_whitelisted", "is_whitelisted"),
        Index("idx_wallet_balances_dust", "is_dust"),
    )

    id: Optional[int] = Field(default=None, primary_key=True, description="Auto-increment ID")

    wallet_id: int = Field(foreign_key="wallets.id", index=True, description="Owning wallet")
    token_address: Optional[str] = Field(default=None, max_length=42, description="Token contract, None for native")
    token_key: str = Field(max_length=42, description="Lowercase token contract or 'native'")
    network: str = Field(max_length=50, index=True, description="Network identifier")

    balance: str = Field(max_length=78, description="Raw balance as returned by the provider")
    balance_decimal: Optional[str] = Field(default=None, max_length=100, description="Human-readable balance")
    usd_value: Optional[float] = Field(default=None, description="USD value if a price was available")

    symbol: Optional[str] = Field(default=None, max_length=50, description="Token symbol")
    name: Optional[str] = Field(default=None, max_length=255, description="Token name")
    decimals: Optional[int] = Field(default=None, description="Token decimal places")
    logo: Optional[str] = Field(default=None, description="Token logo URL")

    is_whitelisted: bool = Field(default=False, description="Token is on the operator whitelist")
    is_dust: bool = Field(default=False, description="Token flagged as spam/dust by heuristic")

    created_at: datetime = Field(default_factory=datetime.utcnow, description="When row was written")
    updated_at: datetime = Field(default_factory=datetime.utcnow, description="When row was last updated")
