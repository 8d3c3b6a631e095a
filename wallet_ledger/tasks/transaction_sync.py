"""
Transaction sync task - periodically syncs every eligible (wallet, network) pair.
Pairs are processed one at a time with a pacing delay to respect provider rate limits.
"""

import time
import logging
import threading
from contextlib import AbstractContextManager
from datetime import timedelta
from typing import Any, Callable, Dict, Optional
from sqlmodel import Session

from wallet_ledger.config.settings import TransactionSyncConfig, get_transaction_sync_config
from wallet_ledger.database.connection import get_db_session
from wallet_ledger.database.state_manager import StateManager
from wallet_ledger.services.alchemy_client import AlchemyAPIClient
from wallet_ledger.sync.coordinator import SyncCoordinator

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager]


class TransactionSyncScheduler:
    """Single-instance scheduler for transaction syncs."""

    def __init__(
        self,
        client: AlchemyAPIClient,
        config: Optional[TransactionSyncConfig] = None,
        session_factory: SessionFactory = get_db_session,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize scheduler.

        Args:
            client: Provider client shared by all runs
            config: Sync settings. If None, taken from settings.
            session_factory: Context manager factory yielding a database session per cycle
            sleep: Pacing function, replaceable in tests
        """
        self.client = client
        self.config = config or get_transaction_sync_config()
        self.session_factory = session_factory
        self.sleep = sleep
        self._is_syncing = False

        if self.config.enabled:
            logger.info("Transaction sync scheduler is ENABLED")
        else:
            logger.warning("Transaction sync scheduler is DISABLED")

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    def run_cycle(self) -> Dict[str, Any]:
        """Run one scheduled cycle if enabled and no cycle is in flight.

        Returns:
            Cycle summary dictionary
        """
        if not self.config.enabled:
            return {"status": "disabled"}
        return self._run_cycle()

    def trigger_manual_sync(self) -> Dict[str, Any]:
        """Run a cycle now, even when scheduled syncs are disabled."""
        logger.info("Manual transaction sync triggered")
        return self._run_cycle()

    def _run_cycle(self) -> Dict[str, Any]:
        if self._is_syncing:
            logger.warning("Transaction sync already in progress, skipping...")
            return {"status": "skipped"}

        self._is_syncing = True
        start_time = time.monotonic()
        summary = {
            "status": "completed",
            "pairs": 0,
            "successful": 0,
            "failed": 0,
            "already_running": 0,
            "new": 0,
            "skipped": 0
        }

        try:
            logger.info("Starting scheduled transaction sync...")
            with self.session_factory() as session:
                self._dispatch(session, summary)
        finally:
            self._is_syncing = False

        summary["duration_seconds"] = round(time.monotonic() - start_time, 2)
        logger.info(
            f"Transaction sync completed in {summary['duration_seconds']}s: "
            f"{summary['successful']} successful, {summary['failed']} failed, "
            f"{summary['new']} new transactions, {summary['skipped']} skipped"
        )
        return summary

    def _dispatch(self, session: Session, summary: Dict[str, Any]):
        state_manager = StateManager(
            session=session,
            lease_timeout=timedelta(minutes=self.config.lease_timeout_minutes)
        )
        state_manager.release_stale_leases()

        pairs = state_manager.get_pairs_for_sync()
        summary["pairs"] = len(pairs)
        if not pairs:
            logger.info("No wallets need syncing")
            return

        logger.info(f"Found {len(pairs)} wallet-network combinations to sync")
        coordinator = SyncCoordinator(session, self.client, self.config, self.sleep)

        for index, (wallet_id, network) in enumerate(pairs):
            try:
                result = coordinator.run_sync(wallet_id, network)
                if result.skipped_run:
                    summary["already_running"] += 1
                else:
                    summary["successful"] += 1
                    summary["new"] += result.synced
                    summary["skipped"] += result.skipped
            except Exception as e:
                summary["failed"] += 1
                logger.error(f"Failed to sync wallet {wallet_id} on {network}: {e}")

            if index < len(pairs) - 1:
                self.sleep(self.config.pair_delay_seconds)

    def run_forever(self, stop_event: Optional[threading.Event] = None):
        """Run cycles every ``interval_seconds`` until ``stop_event`` is set."""
        if not self.config.enabled:
            logger.info("Transaction sync disabled, scheduler loop not started")
            return

        stop_event = stop_event or threading.Event()
        while not stop_event.is_set():
            self.run_cycle()
            stop_event.wait(self.config.interval_seconds)
