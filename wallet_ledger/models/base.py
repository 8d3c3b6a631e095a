"""
Shared column helpers for the ledger SQLModel schemas.
"""

from sqlalchemy import JSON, BigInteger, Column
from sqlalchemy.dialects.postgresql import JSONB


def json_column(nullable: bool = True) -> Column:
    """JSON column that becomes JSONB on PostgreSQL."""
    return Column(JSON().with_variant(JSONB(), "postgresql"), nullable=nullable)


def block_number_column(nullable: bool = True) -> Column:
    """64-bit integer column for decimal block numbers."""
    return Column(BigInteger, nullable=nullable)
