"""
State manager for per (wallet, network) sync tracking.
Holds the checkpoint, run status, lease and counters that decide where a
sync resumes and whether a run currently owns the pair.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Tuple
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from wallet_ledger.config.networks import is_supported_network
from wallet_ledger.database.connection import get_db_session
from wallet_ledger.models.ledger import TransactionDirection
from wallet_ledger.models.state import SyncStatus, WalletSyncStatus
from wallet_ledger.models.wallet import Wallet

logger = logging.getLogger(__name__)

DEFAULT_LEASE_TIMEOUT = timedelta(minutes=30)
STALE_LEASE_MESSAGE = "Sync lease expired before the run completed"


class StateManager:
    """Manages sync state records: claim, heartbeat, completion and scheduling queries."""

    def __init__(self, session: Optional[Session] = None, lease_timeout: Optional[timedelta] = None):
        """Initialize state manager.

        Args:
            session: Optional database session. If None, will create sessions as needed.
            lease_timeout: How long a claim stays valid without a heartbeat.
        """
        self.session = session
        self._use_context_manager = session is None
        self.lease_timeout = lease_timeout or DEFAULT_LEASE_TIMEOUT

    def _run(self, impl: Callable[..., Any], *args) -> Any:
        """Call ``impl(session, *args)`` with the provided session or a fresh one."""
        if self._use_context_manager:
            with get_db_session() as session:
                return impl(session, *args)
        return impl(self.session, *args)

    # Lookups

    def get_state(self, wallet_id: int, network: str) -> Optional[WalletSyncStatus]:
        return self._run(self._get_state_impl, wallet_id, network)

    def _get_state_impl(self, session: Session, wallet_id: int, network: str) -> Optional[WalletSyncStatus]:
        return session.exec(
            select(WalletSyncStatus).where(
                WalletSyncStatus.wallet_id == wallet_id,
                WalletSyncStatus.network == network
            )
        ).first()

    def get_or_create(self, wallet_id: int, network: str) -> WalletSyncStatus:
        """Load the state for (wallet, network), creating a pending one if absent.

        Args:
            wallet_id: Wallet ID
            network: Network identifier

        Returns:
            WalletSyncStatus record
        """
        return self._run(self._get_or_create_impl, wallet_id, network)

    def _get_or_create_impl(self, session: Session, wallet_id: int, network: str) -> WalletSyncStatus:
        existing = self._get_state_impl(session, wallet_id, network)
        if existing:
            return existing

        state = WalletSyncStatus(wallet_id=wallet_id, network=network, status=SyncStatus.PENDING)
        session.add(state)
        try:
            session.commit()
        except IntegrityError:
            # Another caller created it first
            session.rollback()
            return self._get_state_impl(session, wallet_id, network)

        session.refresh(state)
        logger.debug(f"Created sync state for wallet {wallet_id} on {network}")
        return state

    def get_sync_status(self, wallet_id: int, network: Optional[str] = None) -> List[WalletSyncStatus]:
        """Get sync states for a wallet, most recently synced first.

        Args:
            wallet_id: Wallet ID
            network: Optional network filter

        Returns:
            List of WalletSyncStatus records
        """
        return self._run(self._get_sync_status_impl, wallet_id, network)

    def _get_sync_status_impl(self, session: Session, wallet_id: int, network: Optional[str]) -> List[WalletSyncStatus]:
        query = select(WalletSyncStatus).where(WalletSyncStatus.wallet_id == wallet_id)
        if network:
            query = query.where(WalletSyncStatus.network == network)
        query = query.order_by(WalletSyncStatus.last_synced_at.desc().nulls_last(), WalletSyncStatus.id)
        return list(session.exec(query).all())

    # Run lifecycle

    def claim(self, state_id: int, lease_timeout: Optional[timedelta] = None) -> bool:
        """Atomically move a state to in_progress unless a live run holds it.

        The check and the transition are one conditional UPDATE, so two
        callers can never both succeed for the same row.

        Args:
            state_id: WalletSyncStatus ID
            lease_timeout: Override for the lease length

        Returns:
            True if this caller now owns the run
        """
        return self._run(self._claim_impl, state_id, lease_timeout or self.lease_timeout)

    def _claim_impl(self, session: Session, state_id: int, lease_timeout: timedelta) -> bool:
        now = datetime.utcnow()
        result = session.execute(
            update(WalletSyncStatus)
            .where(
                WalletSyncStatus.id == state_id,
                or_(
                    WalletSyncStatus.status != SyncStatus.IN_PROGRESS,
                    WalletSyncStatus.lease_expires_at.is_(None),
                    WalletSyncStatus.lease_expires_at < now
                )
            )
            .values(
                status=SyncStatus.IN_PROGRESS,
                last_attempt_at=now,
                lease_expires_at=now + lease_timeout,
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()

        claimed = result.rowcount == 1
        if not claimed:
            logger.debug(f"Sync state {state_id} is held by a live run")
        return claimed

    def heartbeat(self, state_id: int, lease_timeout: Optional[timedelta] = None) -> bool:
        """Extend the lease of an in_progress run.

        Returns:
            False if the state is no longer in_progress
        """
        return self._run(self._heartbeat_impl, state_id, lease_timeout or self.lease_timeout)

    def _heartbeat_impl(self, session: Session, state_id: int, lease_timeout: timedelta) -> bool:
        now = datetime.utcnow()
        result = session.execute(
            update(WalletSyncStatus)
            .where(WalletSyncStatus.id == state_id, WalletSyncStatus.status == SyncStatus.IN_PROGRESS)
            .values(lease_expires_at=now + lease_timeout, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount == 1

    def record_page_progress(
        self,
        state_id: int,
        direction: TransactionDirection,
        max_block: int,
        lease_timeout: Optional[timedelta] = None
    ) -> None:
        """Remember the highest block written by a sweep page and extend the lease.

        The marker only moves forward and is cleared when the run completes.
        """
        self._run(self._record_page_progress_impl, state_id, direction, max_block,
                  lease_timeout or self.lease_timeout)

    def _record_page_progress_impl(
        self,
        session: Session,
        state_id: int,
        direction: TransactionDirection,
        max_block: int,
        lease_timeout: timedelta
    ) -> None:
        state = session.get(WalletSyncStatus, state_id)
        if state is None:
            return

        now = datetime.utcnow()
        field = "outgoing_resume_block" if direction == TransactionDirection.OUTGOING else "incoming_resume_block"
        current = getattr(state, field)
        if current is None or max_block > current:
            setattr(state, field, max_block)

        if state.status == SyncStatus.IN_PROGRESS:
            state.lease_expires_at = now + lease_timeout
        state.updated_at = now
        session.add(state)
        session.commit()

    def complete(self, state_id: int, checkpoint: Optional[int], transactions_written: int) -> WalletSyncStatus:
        """Mark a run completed and advance the checkpoint.

        Args:
            state_id: WalletSyncStatus ID
            checkpoint: New checkpoint block, or None to keep the stored one
            transactions_written: Records written by the run

        Returns:
            Updated WalletSyncStatus record
        """
        return self._run(self._complete_impl, state_id, checkpoint, transactions_written)

    def _complete_impl(
        self,
        session: Session,
        state_id: int,
        checkpoint: Optional[int],
        transactions_written: int
    ) -> WalletSyncStatus:
        state = session.get(WalletSyncStatus, state_id)
        now = datetime.utcnow()

        state.status = SyncStatus.COMPLETED
        if checkpoint is not None:
            state.last_synced_block = hex(checkpoint)
            state.last_synced_block_decimal = checkpoint
        state.last_synced_at = now
        state.transaction_count = (state.transaction_count or 0) + transactions_written
        state.error_count = 0
        state.last_error = None
        state.incoming_resume_block = None
        state.outgoing_resume_block = None
        state.lease_expires_at = None
        state.updated_at = now

        session.add(state)
        session.commit()
        session.refresh(state)
        return state

    def fail(self, state_id: int, error_message: str) -> WalletSyncStatus:
        """Mark a run failed. The checkpoint and resume markers are left as they are.

        Args:
            state_id: WalletSyncStatus ID
            error_message: Error to record

        Returns:
            Updated WalletSyncStatus record
        """
        return self._run(self._fail_impl, state_id, error_message)

    def _fail_impl(self, session: Session, state_id: int, error_message: str) -> WalletSyncStatus:
        state = session.get(WalletSyncStatus, state_id)
        now = datetime.utcnow()

        state.status = SyncStatus.FAILED
        state.last_error = error_message
        state.error_count = (state.error_count or 0) + 1
        state.lease_expires_at = None
        state.updated_at = now

        session.add(state)
        session.commit()
        session.refresh(state)
        return state

    # Scheduling

    def get_pairs_for_sync(self, now: Optional[datetime] = None) -> List[Tuple[int, str]]:
        """Enumerate (wallet_id, network) pairs eligible for a scheduled sync.

        A pair is eligible when it has no state yet, or when auto-sync is on
        and no live run holds it. Only active wallets and their tracked
        networks are considered.

        Returns:
            List of (wallet_id, network) tuples
        """
        return self._run(self._get_pairs_for_sync_impl, now or datetime.utcnow())

    def _get_pairs_for_sync_impl(self, session: Session, now: datetime) -> List[Tuple[int, str]]:
        wallets = session.exec(select(Wallet).where(Wallet.active == True).order_by(Wallet.id)).all()  # noqa: E712
        if not wallets:
            return []

        states = session.exec(
            select(WalletSyncStatus).where(WalletSyncStatus.wallet_id.in_([w.id for w in wallets]))
        ).all()
        by_pair = {(s.wallet_id, s.network): s for s in states}

        pairs = []
        for wallet in wallets:
            for network in wallet.networks or []:
                if not is_supported_network(network):
                    logger.warning(f"Wallet {wallet.address} tracks unsupported network {network}, skipping")
                    continue

                state = by_pair.get((wallet.id, network))
                if state is None or (state.auto_sync and not state.is_running(now)):
                    pairs.append((wallet.id, network))

        return pairs

    def set_auto_sync(self, wallet_id: int, network: str, enabled: bool) -> WalletSyncStatus:
        return self._run(self._set_auto_sync_impl, wallet_id, network, enabled)

    def _set_auto_sync_impl(self, session: Session, wallet_id: int, network: str, enabled: bool) -> WalletSyncStatus:
        state = self._get_or_create_impl(session, wallet_id, network)
        state.auto_sync = enabled
        state.updated_at = datetime.utcnow()
        session.add(state)
        session.commit()
        session.refresh(state)
        return state

    def release_stale_leases(self, now: Optional[datetime] = None) -> int:
        """Mark in_progress states with an expired lease as failed.

        Returns:
            Number of states released
        """
        return self._run(self._release_stale_leases_impl, now or datetime.utcnow())

    def _release_stale_leases_impl(self, session: Session, now: datetime) -> int:
        result = session.execute(
            update(WalletSyncStatus)
            .where(
                WalletSyncStatus.status == SyncStatus.IN_PROGRESS,
                or_(WalletSyncStatus.lease_expires_at.is_(None), WalletSyncStatus.lease_expires_at < now)
            )
            .values(
                status=SyncStatus.FAILED,
                last_error=STALE_LEASE_MESSAGE,
                error_count=WalletSyncStatus.error_count + 1,
                lease_expires_at=None,
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()

        if result.rowcount:
            logger.warning(f"Released {result.rowcount} stale sync leases")
        return result.rowcount
