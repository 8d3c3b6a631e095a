"""
Balance refresh task - replaces each active wallet's balance snapshot with current provider data.
"""

import time
import logging
import threading
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional
from sqlmodel import Session

from wallet_ledger.config.settings import BalanceRefreshConfig, get_balance_refresh_config
from wallet_ledger.database.connection import get_db_session
from wallet_ledger.database.operations import DatabaseOperations, unique_positions
from wallet_ledger.models.wallet import NATIVE_TOKEN_KEY, Wallet, WalletBalance
from wallet_ledger.services.alchemy_client import (
    AlchemyAPIClient,
    get_usd_value,
    hex_to_decimal,
    is_likely_spam_token,
    usd_amount,
)
from wallet_ledger.services.wallets import WalletService
from wallet_ledger.services.whitelist import WhitelistService
from wallet_ledger.tasks.transaction_sync import SessionFactory

logger = logging.getLogger(__name__)


@dataclass
class BalanceRefreshResult:
    wallets_refreshed: int = 0
    wallets_failed: int = 0
    balances_written: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BalanceRefresher:
    """Fetches current balances and rewrites the stored snapshot per wallet."""

    def __init__(
        self,
        client: AlchemyAPIClient,
        config: Optional[BalanceRefreshConfig] = None,
        session_factory: SessionFactory = get_db_session,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.client = client
        self.config = config or get_balance_refresh_config()
        self.session_factory = session_factory
        self.sleep = sleep

    def build_balance_rows(
        self,
        wallet: Wallet,
        tokens: List[Dict[str, Any]],
        whitelist: WhitelistService
    ) -> List[Dict[str, Any]]:
        """Turn raw provider token entries into WalletBalance rows.

        Zero balances are dropped and each (token, network) is kept once.

        Args:
            wallet: Wallet the balances belong to
            tokens: Raw entries from the balance endpoint
            whitelist: Whitelist lookup

        Returns:
            List of column dictionaries
        """
        rows = []
        for token in tokens:
            network = token.get("network")
            token_address = (token.get("tokenAddress") or "").lower() or None
            metadata = token.get("tokenMetadata") or {}
            decimals = metadata.get("decimals")

            try:
                balance_decimal = hex_to_decimal(token.get("tokenBalance"), 18 if decimals is None else decimals)
            except (TypeError, ValueError):
                logger.warning(f"Skipping token {token_address} on {network} with unreadable balance")
                continue

            if balance_decimal == "0":
                continue

            rows.append({
                "wallet_id": wallet.id,
                "token_address": token_address,
                "token_key": token_address or NATIVE_TOKEN_KEY,
                "network": network,
                "balance": token.get("tokenBalance"),
                "balance_decimal": balance_decimal,
                "usd_value": usd_amount(balance_decimal, get_usd_value(token.get("tokenPrices"))),
                "symbol": metadata.get("symbol"),
                "name": metadata.get("name"),
                "decimals": decimals,
                "logo": metadata.get("logo"),
                "is_whitelisted": whitelist.is_token_whitelisted(token_address, network),
                "is_dust": is_likely_spam_token(token),
            })

        return [rows[i] for i in unique_positions(rows, ["token_key", "network"], keep="first")]

    def _refresh_wallet(self, session: Session, wallet_id: int) -> int:
        wallet = WalletService(session).get(wallet_id)

        if not wallet.active:
            logger.warning(f"Wallet {wallet.address} is inactive, skipping balance refresh")
            return 0
        if not wallet.networks:
            logger.warning(f"Wallet {wallet.address} has no networks configured")
            return 0

        tokens = self.client.get_tokens_for_wallet(
            wallet.address,
            wallet.networks,
            max_pages=self.config.max_pages,
            with_prices=self.config.with_prices,
            include_erc20_tokens=self.config.include_erc20_tokens,
            include_native_tokens=self.config.include_native_tokens
        )
        rows = self.build_balance_rows(wallet, tokens, WhitelistService(session))

        written = DatabaseOperations(session).replace_rows(
            WalletBalance,
            [WalletBalance.wallet_id == wallet_id],
            rows,
            after_replace=lambda s: WalletService(s).update_last_tracked(wallet_id, commit=False)
        )
        logger.info(f"Refreshed {written} balances for wallet {wallet.address} ({len(tokens)} tokens fetched)")
        return written

    def refresh_wallet(self, wallet_id: int) -> int:
        """Replace one wallet's balance snapshot.

        Returns:
            Number of balance rows written
        """
        with self.session_factory() as session:
            return self._refresh_wallet(session, wallet_id)

    def force_refresh(self, wallet_id: int) -> int:
        """Refresh one wallet regardless of the cycle settings and return its balance count."""
        logger.info(f"Force refreshing balances for wallet {wallet_id}")
        with self.session_factory() as session:
            self._refresh_wallet(session, wallet_id)
            return len(WalletService(session).get_wallet_balances(wallet_id))

    def run_cycle(self) -> BalanceRefreshResult:
        """Refresh every active wallet, pacing between wallets."""
        result = BalanceRefreshResult()
        if not self.config.enabled:
            logger.debug("Balance refresh disabled")
            return result

        start_time = time.monotonic()
        with self.session_factory() as session:
            wallets = [w for w in WalletService(session).get_active_wallets() if w.networks]
            logger.info(f"Refreshing balances for {len(wallets)} active wallets")

            for index, wallet in enumerate(wallets):
                wallet_id, address = wallet.id, wallet.address
                try:
                    result.balances_written += self._refresh_wallet(session, wallet_id)
                    result.wallets_refreshed += 1
                except Exception as e:
                    session.rollback()
                    result.wallets_failed += 1
                    logger.error(f"Failed to refresh balances for wallet {address}: {e}")

                if index < len(wallets) - 1:
                    self.sleep(self.config.wallet_delay_seconds)

        logger.info(
            f"Balance refresh completed in {time.monotonic() - start_time:.2f}s: "
            f"{result.wallets_refreshed} refreshed, {result.wallets_failed} failed, "
            f"{result.balances_written} balances written"
        )
        return result

    def run_forever(self, stop_event: Optional[threading.Event] = None):
        """Run cycles every ``interval_seconds`` until ``stop_event`` is set."""
        if not self.config.enabled:
            logger.info("Balance refresh disabled, loop not started")
            return

        stop_event = stop_event or threading.Event()
        while not stop_event.is_set():
            self.run_cycle()
            stop_event.wait(self.config.interval_seconds)
