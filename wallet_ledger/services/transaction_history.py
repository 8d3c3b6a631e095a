"""
Read side of the transaction ledger: filtered history, aggregate stats and sync status.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func
from sqlmodel import Session, select

from wallet_ledger.database.state_manager import StateManager
from wallet_ledger.models.ledger import TransactionCategory, TransactionDirection, TransactionHistory
from wallet_ledger.models.state import WalletSyncStatus
from wallet_ledger.services.wallets import WalletService

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


@dataclass
class TransactionHistoryFilters:
    """Optional filters for a history query. Block and date bounds are inclusive."""
    network: Optional[str] = None
    category: Optional[TransactionCategory] = None
    direction: Optional[TransactionDirection] = None
    start_block: Optional[int] = None
    end_block: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    whitelisted_only: bool = False


@dataclass
class Pagination:
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0


class TransactionHistoryService:
    """Queries over stored transaction records and sync states."""

    def __init__(self, session: Session):
        self.session = session
        self.wallets = WalletService(session)
        self.state_manager = StateManager(session=session)

    def _apply_filters(self, query, filters: TransactionHistoryFilters):
        if filters.network:
            query = query.where(TransactionHistory.network == filters.network)
        if filters.category:
            query = query.where(TransactionHistory.category == TransactionCategory(filters.category))
        if filters.direction:
            query = query.where(TransactionHistory.direction == TransactionDirection(filters.direction))
        if filters.start_block is not None:
            query = query.where(TransactionHistory.block_num_decimal >= filters.start_block)
        if filters.end_block is not None:
            query = query.where(TransactionHistory.block_num_decimal <= filters.end_block)
        if filters.start_date is not None:
            query = query.where(TransactionHistory.timestamp >= filters.start_date)
        if filters.end_date is not None:
            query = query.where(TransactionHistory.timestamp <= filters.end_date)
        if filters.whitelisted_only:
            query = query.where(TransactionHistory.is_whitelisted == True)  # noqa: E712
        return query

    def get_transaction_history(
        self,
        wallet_address: str,
        filters: Optional[TransactionHistoryFilters] = None,
        pagination: Optional[Pagination] = None
    ) -> Tuple[List[TransactionHistory], int]:
        """Get a page of a wallet's transactions, newest block first.

        Args:
            wallet_address: Wallet address, any case
            filters: Optional filters
            pagination: Limit/offset, default 50 records from the start

        Returns:
            Tuple of (records, total matching count)

        Raises:
            WalletNotFoundError: if the address is not registered
        """
        filters = filters or TransactionHistoryFilters()
        pagination = pagination or Pagination()
        wallet = self.wallets.get_by_address(wallet_address)

        base = self._apply_filters(
            select(TransactionHistory).where(TransactionHistory.wallet_id == wallet.id), filters
        )
        total = self.session.exec(
            self._apply_filters(
                select(func.count()).select_from(TransactionHistory).where(TransactionHistory.wallet_id == wallet.id),
                filters
            )
        ).one()

        records = self.session.exec(
            base.order_by(TransactionHistory.block_num_decimal.desc(), TransactionHistory.timestamp.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
        ).all()

        return list(records), total

    def get_transaction_stats(self, wallet_id: int, network: Optional[str] = None) -> Dict[str, Any]:
        """Aggregate counts for a wallet's stored transactions.

        Returns:
            Dictionary with total/incoming/outgoing counts, per-category counts
            and the oldest and latest timestamps
        """
        self.wallets.get(wallet_id)

        criteria = [TransactionHistory.wallet_id == wallet_id]
        if network:
            criteria.append(TransactionHistory.network == network)

        direction_counts = dict(self.session.exec(
            select(TransactionHistory.direction, func.count())
            .where(*criteria)
            .group_by(TransactionHistory.direction)
        ).all())
        category_counts = self.session.exec(
            select(TransactionHistory.category, func.count())
            .where(*criteria)
            .group_by(TransactionHistory.category)
        ).all()
        oldest, latest = self.session.exec(
            select(func.min(TransactionHistory.timestamp), func.max(TransactionHistory.timestamp)).where(*criteria)
        ).one()

        incoming = direction_counts.get(TransactionDirection.INCOMING, 0)
        outgoing = direction_counts.get(TransactionDirection.OUTGOING, 0)

        return {
            "total_transactions": incoming + outgoing,
            "incoming_count": incoming,
            "outgoing_count": outgoing,
            "by_category": {TransactionCategory(category).value: count for category, count in category_counts},
            "oldest_transaction": oldest,
            "latest_transaction": latest,
        }

    def get_sync_status(self, wallet_id: int, network: Optional[str] = None) -> List[WalletSyncStatus]:
        self.wallets.get(wallet_id)
        return self.state_manager.get_sync_status(wallet_id, network)
