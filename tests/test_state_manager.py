from datetime import datetime, timedelta

import pytest

from wallet_ledger.database.state_manager import STALE_LEASE_MESSAGE, StateManager
from wallet_ledger.models import SyncStatus, Wallet
from wallet_ledger.models.ledger import TransactionDirection

from helpers import NETWORK, OTHER_WALLET


@pytest.fixture
def manager(session):
    return StateManager(session, lease_timeout=timedelta(minutes=30))


def set_running(session, state, lease_expires_at):
    state.status = SyncStatus.IN_PROGRESS
    state.lease_expires_at = lease_expires_at
    session.add(state)
    session.commit()


class TestGetOrCreate:
    def test_creates_pending_state_once(self, manager, wallet):
        first = manager.get_or_create(wallet.id, NETWORK)
        second = manager.get_or_create(wallet.id, NETWORK)

        assert first.id == second.id
        assert first.status == SyncStatus.PENDING
        assert first.auto_sync is True
        assert first.last_synced_block is None

    def test_get_state_missing(self, manager, wallet):
        assert manager.get_state(wallet.id, NETWORK) is None


class TestClaim:
    def test_claim_pending_state(self, session, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)

        assert manager.claim(state.id) is True

        session.refresh(state)
        assert state.status == SyncStatus.IN_PROGRESS
        assert state.lease_expires_at > datetime.utcnow() + timedelta(minutes=29)
        assert state.last_attempt_at is not None

    def test_second_claim_fails_while_lease_is_live(self, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)

        assert manager.claim(state.id) is True
        assert manager.claim(state.id) is False

    def test_expired_lease_can_be_claimed(self, session, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)
        set_running(session, state, datetime.utcnow() - timedelta(seconds=1))

        assert manager.claim(state.id) is True

    def test_in_progress_without_lease_can_be_claimed(self, session, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)
        set_running(session, state, None)

        assert manager.claim(state.id) is True

    @pytest.mark.parametrize("status", [SyncStatus.COMPLETED, SyncStatus.FAILED])
    def test_finished_states_can_be_claimed(self, session, manager, wallet, status):
        state = manager.get_or_create(wallet.id, NETWORK)
        state.status = status
        session.add(state)
        session.commit()

        assert manager.claim(state.id) is True


class TestRunLifecycle:
    def test_heartbeat_extends_lease(self, session, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)
        set_running(session, state, datetime.utcnow() + timedelta(minutes=1))

        assert manager.heartbeat(state.id) is True

        session.refresh(state)
        assert state.lease_expires_at > datetime.utcnow() + timedelta(minutes=29)

    def test_heartbeat_on_idle_state(self, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)
        assert manager.heartbeat(state.id) is False

    def test_page_progress_only_moves_forward(self, session, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)
        manager.claim(state.id)

        manager.record_page_progress(state.id, TransactionDirection.INCOMING, 120)
        manager.record_page_progress(state.id, TransactionDirection.INCOMING, 90)
        manager.record_page_progress(state.id, TransactionDirection.OUTGOING, 70)

        session.refresh(state)
        assert state.incoming_resume_block == 120
        assert state.outgoing_resume_block == 70

    def test_complete_clears_run_fields(self, session, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)
        manager.claim(state.id)
        manager.record_page_progress(state.id, TransactionDirection.INCOMING, 120)
        manager.fail(state.id, "boom")
        manager.claim(state.id)

        completed = manager.complete(state.id, 150, 4)

        assert completed.status == SyncStatus.COMPLETED
        assert completed.last_synced_block == "0x96"
        assert completed.last_synced_block_decimal == 150
        assert completed.transaction_count == 4
        assert completed.error_count == 0
        assert completed.last_error is None
        assert completed.incoming_resume_block is None
        assert completed.lease_expires_at is None
        assert completed.last_synced_at is not None

    def test_complete_without_checkpoint_keeps_previous(self, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)
        manager.complete(state.id, 150, 1)

        completed = manager.complete(state.id, None, 0)

        assert completed.last_synced_block_decimal == 150
        assert completed.transaction_count == 1

    def test_fail_keeps_checkpoint_and_markers(self, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)
        manager.complete(state.id, 150, 1)
        manager.claim(state.id)
        manager.record_page_progress(state.id, TransactionDirection.OUTGOING, 160)

        failed = manager.fail(state.id, "provider unavailable")

        assert failed.status == SyncStatus.FAILED
        assert failed.error_count == 1
        assert failed.last_error == "provider unavailable"
        assert failed.last_synced_block_decimal == 150
        assert failed.outgoing_resume_block == 160
        assert failed.lease_expires_at is None


class TestScheduling:
    def test_new_pairs_are_eligible(self, session, manager, wallet):
        wallet.networks = [NETWORK, "polygon-mainnet", "solana-mainnet"]
        session.add(wallet)
        session.commit()

        assert manager.get_pairs_for_sync() == [(wallet.id, NETWORK), (wallet.id, "polygon-mainnet")]

    def test_inactive_wallets_are_ignored(self, session, manager, wallet):
        wallet.active = False
        session.add(wallet)
        session.commit()

        assert manager.get_pairs_for_sync() == []

    def test_running_and_auto_sync_off_pairs_are_excluded(self, session, manager, wallet):
        other = Wallet(address=OTHER_WALLET, networks=[NETWORK])
        session.add(other)
        session.commit()

        running = manager.get_or_create(wallet.id, NETWORK)
        set_running(session, running, datetime.utcnow() + timedelta(minutes=5))
        manager.set_auto_sync(other.id, NETWORK, False)

        assert manager.get_pairs_for_sync() == []

    def test_expired_run_is_eligible(self, session, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)
        set_running(session, state, datetime.utcnow() - timedelta(minutes=5))

        assert manager.get_pairs_for_sync() == [(wallet.id, NETWORK)]

    def test_completed_and_failed_pairs_are_eligible(self, session, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)
        manager.fail(state.id, "boom")

        assert manager.get_pairs_for_sync() == [(wallet.id, NETWORK)]

    def test_release_stale_leases(self, session, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)
        set_running(session, state, datetime.utcnow() - timedelta(minutes=5))

        assert manager.release_stale_leases() == 1

        session.refresh(state)
        assert state.status == SyncStatus.FAILED
        assert state.last_error == STALE_LEASE_MESSAGE
        assert state.error_count == 1
        assert state.lease_expires_at is None

    def test_release_ignores_live_leases(self, session, manager, wallet):
        state = manager.get_or_create(wallet.id, NETWORK)
        set_running(session, state, datetime.utcnow() + timedelta(minutes=5))

        assert manager.release_stale_leases() == 0

    def test_sync_status_lists_most_recent_first(self, session, manager, wallet):
        eth = manager.get_or_create(wallet.id, NETWORK)
        polygon = manager.get_or_create(wallet.id, "polygon-mainnet")
        manager.get_or_create(wallet.id, "base-mainnet")
        manager.complete(eth.id, 10, 0)
        manager.complete(polygon.id, 20, 0)

        networks = [s.network for s in manager.get_sync_status(wallet.id)]

        assert networks == ["polygon-mainnet", NETWORK, "base-mainnet"]
        assert [s.network for s in manager.get_sync_status(wallet.id, NETWORK)] == [NETWORK]
