"""
Paginated fetch sweep over the provider transfer feed in one direction.
"""

import time
import logging
from typing import Callable, Optional

from wallet_ledger.config.settings import TransactionSyncConfig
from wallet_ledger.database.state_manager import StateManager
from wallet_ledger.models.ledger import TransactionDirection
from wallet_ledger.models.wallet import Wallet
from wallet_ledger.services.alchemy_client import AlchemyAPIClient, to_block_number
from wallet_ledger.sync.ledger_writer import LedgerWriter
from wallet_ledger.sync.options import SweepResult

logger = logging.getLogger(__name__)


class PaginatedSweep:
    """Follows the provider cursor chain for one (wallet, network, direction).

    Each page is written before the next one is requested, and the page's
    highest block is recorded as a resume marker on the sync state.
    """

    def __init__(
        self,
        client: AlchemyAPIClient,
        writer: LedgerWriter,
        state_manager: StateManager,
        config: TransactionSyncConfig,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.client = client
        self.writer = writer
        self.state_manager = state_manager
        self.config = config
        self.sleep = sleep

    def run(
        self,
        wallet: Wallet,
        network: str,
        direction: TransactionDirection,
        from_block: int,
        to_block: Optional[int],
        state_id: int
    ) -> SweepResult:
        """Sweep transfers from ``from_block`` to ``to_block`` (None = latest).

        Args:
            wallet: Wallet being synced
            network: Network identifier
            direction: INCOMING or OUTGOING
            from_block: Inclusive start block
            to_block: Inclusive end block, or None for the chain head
            state_id: Sync state holding the run's lease

        Returns:
            SweepResult with counts and the highest block seen
        """
        address = wallet.address
        result = SweepResult()
        cursor = None
        max_pages = self.config.max_pages_per_sweep

        logger.info(
            f"Starting {direction.value} sweep for {address} on {network} "
            f"from block {from_block} to {to_block if to_block is not None else 'latest'}"
        )

        while True:
            page = self.client.fetch_transfer_page(address, network, from_block, to_block, direction, cursor)
            result.pages += 1

            written = self.writer.write_page(page.records, wallet, network)
            result.synced += written.written
            result.skipped += written.skipped
            result.fetched += len(page.records)

            blocks = [to_block_number(r["blockNum"]) for r in page.records if r.get("blockNum")]
            if blocks:
                page_max = max(blocks)
                result.max_block = page_max if result.max_block is None else max(result.max_block, page_max)
                self.state_manager.record_page_progress(state_id, direction, page_max)
            else:
                self.state_manager.heartbeat(state_id)

            logger.info(
                f"Saved {direction.value} page {result.pages} for {address} on {network}: "
                f"{written.written} new, {written.skipped} duplicates"
            )

            cursor = page.next_cursor
            if not cursor:
                logger.info(
                    f"Finished {direction.value} sweep for {address} on {network}: "
                    f"{result.pages} pages, {result.synced} new, {result.skipped} duplicates"
                )
                break

            if result.pages >= max_pages:
                result.hit_page_ceiling = True
                logger.warning(
                    f"Stopped {direction.value} sweep for {address} on {network} at the "
                    f"{max_pages} page ceiling with a continuation cursor still pending"
                )
                break

            self.sleep(self.config.page_delay_seconds)

        return result
