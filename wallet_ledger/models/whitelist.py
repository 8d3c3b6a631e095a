"""
Operator-curated token whitelist schema.
"""

from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field, Index


class WhitelistToken(SQLModel, table=True):
    """Whitelisted (token, network) pairs. A NULL token address means the native asset."""

    __tablename__ = "whitelist_tokens"
    __table_args__ = (
        Index("uq_whitelist_tokens_token_network", "token_address", "network", unique=True),
        Index("idx_whitelist_tokens_active", "active"),
    )

    id: Optional[int] = Field(default=None, primary_key=True, description="Auto-increment ID")

    token_address: Optional[str] = Field(default=None, max_length=42, description="Lowercase contract, None for native")
    network: str = Field(max_length=50, index=True, description="Network identifier")

    symbol: str = Field(max_length=20, description="Token symbol")
    name: str = Field(max_length=255, description="Token name")
    decimals: Optional[int] = Field(default=None, description="Token decimal places")
    logo: Optional[str] = Field(default=None, description="Token logo URL")

    active: bool = Field(default=True, description="Inactive entries are ignored by lookups")
    category: Optional[str] = Field(default=None, max_length=255, description="e.g. stablecoin, native, defi")
    min_balance: Optional[str] = Field(default=None, max_length=100, description="Minimum balance worth tracking")
    description: Optional[str] = Field(default=None, description="Free-form description")

    created_at: datetime = Field(default_factory=datetime.utcnow, description="When entry was created")
    updated_at: datetime = Field(default_factory=datetime.utcnow, description="When entry was last updated")
