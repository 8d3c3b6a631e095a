"""
Sync coordinator: one full sync run for a (wallet, network) pair.

A run claims the pair's sync state, sweeps incoming and then outgoing
transfers page by page, and finally records the outcome. The checkpoint
only moves when both sweeps finish; a failed run keeps the pages it
already wrote and the next run picks up from its resume markers.
"""

import time
import logging
from datetime import timedelta
from typing import Callable, List, Optional
from sqlmodel import Session

from wallet_ledger.config.networks import get_network
from wallet_ledger.config.settings import TransactionSyncConfig, get_transaction_sync_config
from wallet_ledger.database.state_manager import StateManager
from wallet_ledger.exceptions import SyncTargetNotFoundError
from wallet_ledger.models.ledger import TransactionDirection
from wallet_ledger.models.state import WalletSyncStatus
from wallet_ledger.services.alchemy_client import AlchemyAPIClient, to_block_number
from wallet_ledger.services.wallets import WalletService
from wallet_ledger.services.whitelist import WhitelistService
from wallet_ledger.sync.ledger_writer import LedgerWriter
from wallet_ledger.sync.options import SweepResult, SyncOptions, SyncResult
from wallet_ledger.sync.sweep import PaginatedSweep

logger = logging.getLogger(__name__)

GENESIS_BLOCK = 0


def _max_known(*values: Optional[int]) -> Optional[int]:
    known = [v for v in values if v is not None]
    return max(known) if known else None


class SyncCoordinator:
    """Runs transaction syncs for (wallet, network) pairs."""

    def __init__(
        self,
        session: Session,
        client: AlchemyAPIClient,
        config: Optional[TransactionSyncConfig] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize coordinator.

        Args:
            session: Database session shared by every component of the run
            client: Provider client
            config: Sync settings. If None, taken from settings.
            sleep: Pacing function, replaceable in tests
        """
        self.session = session
        self.client = client
        self.config = config or get_transaction_sync_config()
        self.sleep = sleep
        self.wallets = WalletService(session)
        self.state_manager = StateManager(
            session=session,
            lease_timeout=timedelta(minutes=self.config.lease_timeout_minutes)
        )

    def _start_blocks(self, state: WalletSyncStatus, options: SyncOptions, explicit: Optional[int]) -> dict:
        """Starting block per direction: genesis, explicit start, or checkpoint plus resume marker."""
        if options.force_full_resync:
            return {d: GENESIS_BLOCK for d in TransactionDirection}

        if explicit is not None:
            return {d: explicit for d in TransactionDirection}

        checkpoint = state.last_synced_block_decimal or GENESIS_BLOCK
        return {
            TransactionDirection.INCOMING: _max_known(checkpoint, state.incoming_resume_block),
            TransactionDirection.OUTGOING: _max_known(checkpoint, state.outgoing_resume_block),
        }

    def _new_checkpoint(
        self,
        previous: Optional[int],
        end_block: Optional[int],
        sweeps: List[SweepResult],
        options: SyncOptions
    ) -> Optional[int]:
        """Checkpoint after a completed run. It never moves backwards.

        A sweep stopped at the page ceiling has not fetched anything above its
        last block, so the checkpoint is held at that block even when the other
        direction saw higher ones.
        """
        stopped = [s for s in sweeps if s.hit_page_ceiling]
        if stopped:
            if any(s.max_block is None for s in stopped):
                return previous
            candidate = min(s.max_block for s in stopped)
        elif end_block is not None and not options.force_full_resync:
            candidate = end_block
        else:
            candidate = _max_known(*(s.max_block for s in sweeps))

        return _max_known(candidate, previous)

    def run_sync(self, wallet_id: int, network: str, options: Optional[SyncOptions] = None) -> SyncResult:
        """Sync one wallet's transaction history on one network.

        Args:
            wallet_id: Wallet ID
            network: Network identifier
            options: Start/end checkpoints and full-resync flag

        Returns:
            SyncResult; ``skipped_run`` is set if another run holds the pair

        Raises:
            UnsupportedNetworkError: unknown network
            WalletNotFoundError: unknown wallet
            SyncTargetNotFoundError: wallet does not track the network (unforced runs)
            ProviderError: the run failed while fetching; state is recorded as failed
        """
        options = options or SyncOptions()
        get_network(network)

        wallet = self.wallets.get(wallet_id)
        if not options.force_full_resync and not wallet.tracks(network):
            raise SyncTargetNotFoundError(
                f"Wallet {wallet.address} does not track network {network}",
                {"wallet_id": wallet_id, "network": network}
            )

        start_block = to_block_number(options.from_checkpoint)
        end_block = to_block_number(options.to_checkpoint)

        state = self.state_manager.get_or_create(wallet_id, network)
        state_id = state.id

        if not self.state_manager.claim(state_id):
            logger.warning(f"Sync already in progress for {wallet.address} on {network}, skipping")
            return SyncResult(skipped_run=True)

        previous_checkpoint = state.last_synced_block_decimal
        sweeps: List[SweepResult] = []

        logger.info(f"Starting transaction sync for {wallet.address} on {network}")

        try:
            starts = self._start_blocks(state, options, start_block)
            # One head for both directions
            sweep_end = end_block if end_block is not None else self.client.get_block_number(network)
            sweep = PaginatedSweep(
                self.client,
                LedgerWriter(self.session, WhitelistService(self.session)),
                self.state_manager,
                self.config,
                self.sleep
            )
            for direction in (TransactionDirection.INCOMING, TransactionDirection.OUTGOING):
                sweeps.append(sweep.run(wallet, network, direction, starts[direction], sweep_end, state_id))

            checkpoint = self._new_checkpoint(previous_checkpoint, end_block, sweeps, options)
            result = SyncResult(
                synced=sum(s.synced for s in sweeps),
                skipped=sum(s.skipped for s in sweeps),
                total_fetched=sum(s.fetched for s in sweeps)
            )
            self.state_manager.complete(state_id, checkpoint, result.synced)

        except Exception as e:
            self.session.rollback()
            logger.error(f"Transaction sync failed for {wallet.address} on {network}: {e}")
            self.state_manager.fail(state_id, str(e))
            raise

        logger.info(
            f"Transaction sync completed for {wallet.address} on {network}: "
            f"{result.synced} new, {result.skipped} skipped, {result.total_fetched} fetched, "
            f"checkpoint {checkpoint}"
        )
        return result

    def run_sync_for_address(self, address: str, network: str, options: Optional[SyncOptions] = None) -> SyncResult:
        wallet = self.wallets.get_by_address(address)
        return self.run_sync(wallet.id, network, options)
