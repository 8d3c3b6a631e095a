"""
Wallet read/update surface used by the sync engine and balance refresher.
Registration and editing of wallets happen elsewhere.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import func
from sqlmodel import Session, select

from wallet_ledger.exceptions import WalletNotFoundError
from wallet_ledger.models.wallet import Wallet, WalletBalance

logger = logging.getLogger(__name__)


def normalize_address(address: str) -> str:
    return address.strip().lower()


class WalletService:
    """Wallet lookups, balance queries and tracking statistics."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, wallet_id: int) -> Wallet:
        """Get a wallet by ID.

        Raises:
            WalletNotFoundError: if no wallet has this ID
        """
        wallet = self.session.get(Wallet, wallet_id)
        if wallet is None:
            raise WalletNotFoundError(f"Wallet {wallet_id} not found", {"wallet_id": wallet_id})
        return wallet

    def get_by_address(self, address: str) -> Wallet:
        """Get a wallet by address, case-insensitively.

        Raises:
            WalletNotFoundError: if the address is not registered
        """
        normalized = normalize_address(address)
        wallet = self.session.exec(select(Wallet).where(Wallet.address == normalized)).first()
        if wallet is None:
            raise WalletNotFoundError(f"Wallet with address {normalized} not found", {"address": normalized})
        return wallet

    def get_active_wallets(self) -> List[Wallet]:
        return list(self.session.exec(
            select(Wallet).where(Wallet.active == True).order_by(Wallet.id)  # noqa: E712
        ).all())

    def update_last_tracked(self, wallet_id: int, commit: bool = True) -> None:
        wallet = self.get(wallet_id)
        now = datetime.utcnow()
        wallet.last_tracked = now
        wallet.updated_at = now
        self.session.add(wallet)
        if commit:
            self.session.commit()

    def get_wallet_balances(
        self,
        wallet_id: int,
        network: Optional[str] = None,
        whitelisted_only: bool = False,
        exclude_dust: bool = False
    ) -> List[WalletBalance]:
        """Get a wallet's balance snapshot, highest USD value first.

        Args:
            wallet_id: Wallet ID
            network: Optional network filter
            whitelisted_only: Only whitelisted tokens
            exclude_dust: Drop tokens flagged as spam/dust

        Returns:
            List of WalletBalance rows
        """
        query = select(WalletBalance).where(WalletBalance.wallet_id == wallet_id)
        if network:
            query = query.where(WalletBalance.network == network)
        if whitelisted_only:
            query = query.where(WalletBalance.is_whitelisted == True)  # noqa: E712
        if exclude_dust:
            query = query.where(WalletBalance.is_dust == False)  # noqa: E712
        query = query.order_by(WalletBalance.usd_value.desc().nulls_last(), WalletBalance.id)
        return list(self.session.exec(query).all())

    def get_total_usd_value(self, wallet_id: int) -> float:
        """Sum of USD values across a wallet's non-dust balances."""
        total = self.session.exec(
            select(func.sum(WalletBalance.usd_value)).where(
                WalletBalance.wallet_id == wallet_id,
                WalletBalance.usd_value.is_not(None),
                WalletBalance.is_dust == False  # noqa: E712
            )
        ).one()
        return float(total or 0)

    def get_tracking_stats(self) -> Dict[str, Any]:
        """Totals across all wallets and balance rows."""
        def count(model, *criteria) -> int:
            return self.session.exec(select(func.count()).select_from(model).where(*criteria)).one()

        return {
            "total_wallets": count(Wallet),
            "active_wallets": count(Wallet, Wallet.active == True),  # noqa: E712
            "total_balances": count(WalletBalance),
            "whitelisted_balances": count(WalletBalance, WalletBalance.is_whitelisted == True),  # noqa: E712
            "dust_balances": count(WalletBalance, WalletBalance.is_dust == True),  # noqa: E712
        }
