"""
Sync state SQLModel schema.
One row per (wallet, network): checkpoint, run status, lease and counters.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from sqlmodel import SQLModel, Field, Index

from .base import block_number_column


class SyncStatus(str, Enum):
    """Enumeration of possible sync states."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class WalletSyncStatus(SQLModel, table=True):
    """Sync state table - where a (wallet, network) pair left off and whether a run holds it."""

    __tablename__ = "wallet_sync_status"
    __table_args__ = (
        Index("uq_wallet_sync_status_wallet_network", "wallet_id", "network", unique=True),
        Index("idx_wallet_sync_status_status", "status"),
        Index("idx_wallet_sync_status_last_synced", "last_synced_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True, description="Auto-increment ID")

    wallet_id: int = Field(foreign_key="wallets.id", index=True, description="Wallet being synced")
    network: str = Field(max_length=50, index=True, description="Network identifier")

    # Run status
    status: SyncStatus = Field(default=SyncStatus.PENDING, description="Current sync status")
    lease_expires_at: Optional[datetime] = Field(
        default=None, description="An in_progress run older than this is reclaimable"
    )

    # Checkpoint
    last_synced_block: Optional[str] = Field(default=None, max_length=20, description="Checkpoint as hex")
    last_synced_block_decimal: Optional[int] = Field(
        default=None, sa_column=block_number_column(), description="Checkpoint as integer"
    )
    incoming_resume_block: Optional[int] = Field(
        default=None, sa_column=block_number_column(), description="Highest block written by an unfinished incoming sweep"
    )
    outgoing_resume_block: Optional[int] = Field(
        default=None, sa_column=block_number_column(), description="Highest block written by an unfinished outgoing sweep"
    )

    # Timestamps
    last_synced_at: Optional[datetime] = Field(default=None, description="When last run completed")
    last_attempt_at: Optional[datetime] = Field(default=None, description="When last run started")

    # Counters and error tracking
    transaction_count: int = Field(default=0, description="Cumulative records written")
    error_count: int = Field(default=0, description="Consecutive failed runs")
    last_error: Optional[str] = Field(default=None, description="Last error message")

    auto_sync: bool = Field(default=True, description="Eligible for scheduled syncs")

    created_at: datetime = Field(default_factory=datetime.utcnow, description="When state record was created")
    updated_at: datetime = Field(default_factory=datetime.utcnow, description="When state was last updated")

    def lease_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return self.lease_expires_at is None or self.lease_expires_at < now

    def is_running(self, now: Optional[datetime] = None) -> bool:
        """True while a run holds an unexpired lease on this pair."""
        return self.status == SyncStatus.IN_PROGRESS and not self.lease_expired(now)
