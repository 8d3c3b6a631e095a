from datetime import datetime, timedelta
from unittest.mock import call, patch

import pytest

from wallet_ledger.config.settings import TransactionSyncConfig
from wallet_ledger.database.state_manager import StateManager
from wallet_ledger.models import SyncStatus, Wallet
from wallet_ledger.tasks.transaction_sync import TransactionSyncScheduler

from helpers import NETWORK, OTHER_WALLET, WALLET_ADDRESS, FakeTransferFeed, make_transfer


@pytest.fixture
def other_wallet(session):
    other = Wallet(address=OTHER_WALLET, networks=[NETWORK])
    session.add(other)
    session.commit()
    session.refresh(other)
    return other


@pytest.fixture
def scheduler_for(sync_config, session_factory, sleep):
    def build(provider, config=None):
        return TransactionSyncScheduler(provider, config or sync_config, session_factory=session_factory, sleep=sleep)
    return build


class TestRunCycle:
    def test_cycle_syncs_every_eligible_pair(self, wallet, other_wallet, sleep, scheduler_for):
        provider = FakeTransferFeed(incoming=[make_transfer("0xabc", 10)])

        summary = scheduler_for(provider).run_cycle()

        assert summary["status"] == "completed"
        assert summary["pairs"] == 2
        assert summary["successful"] == 2
        assert summary["failed"] == 0
        # The fake serves the same transfer to both wallets; it is stored once per network
        assert (summary["new"], summary["skipped"]) == (1, 1)
        assert "duration_seconds" in summary
        assert call(0.3) in sleep.call_args_list
        assert sleep.call_args_list.count(call(0.3)) == 1

    def test_failing_pair_does_not_stop_the_cycle(self, session, wallet, other_wallet, scheduler_for):
        provider = FakeTransferFeed(incoming=[make_transfer("0xabc", 10)], fail_addresses=[WALLET_ADDRESS])

        summary = scheduler_for(provider).run_cycle()

        assert (summary["successful"], summary["failed"]) == (1, 1)
        manager = StateManager(session)
        assert manager.get_state(wallet.id, NETWORK).status == SyncStatus.FAILED
        assert manager.get_state(other_wallet.id, NETWORK).status == SyncStatus.COMPLETED

    def test_no_eligible_pairs(self, session, wallet, scheduler_for):
        StateManager(session).set_auto_sync(wallet.id, NETWORK, False)

        summary = scheduler_for(FakeTransferFeed()).run_cycle()

        assert summary["pairs"] == 0
        assert summary["successful"] == 0

    def test_stale_lease_is_released_and_resynced(self, session, wallet, scheduler_for):
        manager = StateManager(session)
        state = manager.get_or_create(wallet.id, NETWORK)
        state.status = SyncStatus.IN_PROGRESS
        state.lease_expires_at = datetime.utcnow() - timedelta(hours=1)
        session.add(state)
        session.commit()

        summary = scheduler_for(FakeTransferFeed()).run_cycle()

        assert summary["successful"] == 1
        assert manager.get_state(wallet.id, NETWORK).status == SyncStatus.COMPLETED

    def test_disabled_scheduler_skips_cycle(self, wallet, scheduler_for):
        provider = FakeTransferFeed()

        summary = scheduler_for(provider, TransactionSyncConfig(enabled=False)).run_cycle()

        assert summary == {"status": "disabled"}
        assert provider.calls == []

    def test_manual_trigger_runs_when_disabled(self, wallet, scheduler_for):
        provider = FakeTransferFeed(incoming=[make_transfer("0xabc", 10)])

        summary = scheduler_for(provider, TransactionSyncConfig(enabled=False)).trigger_manual_sync()

        assert summary["status"] == "completed"
        assert summary["new"] == 1

    def test_overlapping_cycle_is_skipped(self, wallet, scheduler_for):
        provider = FakeTransferFeed()
        scheduler = scheduler_for(provider)
        nested = {}

        original = scheduler._dispatch

        def dispatch_and_reenter(session, summary):
            nested["result"] = scheduler.run_cycle()
            original(session, summary)

        with patch.object(scheduler, "_dispatch", side_effect=dispatch_and_reenter):
            summary = scheduler.run_cycle()

        assert nested["result"] == {"status": "skipped"}
        assert summary["status"] == "completed"
        assert not scheduler.is_syncing

    def test_latch_is_released_after_an_error(self, wallet, scheduler_for):
        scheduler = scheduler_for(FakeTransferFeed())

        with patch.object(scheduler, "_dispatch", side_effect=RuntimeError("database gone")):
            with pytest.raises(RuntimeError):
                scheduler.run_cycle()

        assert not scheduler.is_syncing


def test_run_forever_returns_when_disabled(scheduler_for):
    scheduler = scheduler_for(FakeTransferFeed(), TransactionSyncConfig(enabled=False))
    with patch.object(scheduler, "run_cycle") as run_cycle:
        scheduler.run_forever()
    run_cycle.assert_not_called()
