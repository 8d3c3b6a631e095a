from datetime import datetime

import pytest

from wallet_ledger.exceptions import WalletNotFoundError
from wallet_ledger.models import WhitelistToken
from wallet_ledger.services.transaction_history import (
    Pagination,
    TransactionHistoryFilters,
    TransactionHistoryService,
)
from wallet_ledger.sync.ledger_writer import LedgerWriter

from helpers import COUNTERPARTY, NETWORK, USDC, WALLET_ADDRESS, make_transfer


@pytest.fixture
def history(session, wallet):
    session.add(WhitelistToken(token_address=USDC, network=NETWORK, symbol="USDC", name="USD Coin"))
    session.commit()

    writer = LedgerWriter(session)
    writer.write_page([
        make_transfer("0xa", 100),
        make_transfer("0xb", 110, from_address=WALLET_ADDRESS, to_address=COUNTERPARTY),
        make_transfer("0xc", 120, category="erc20", token=USDC, raw_value="0xf4240", decimals=6),
        make_transfer("0xd", 130, category="erc721", token=COUNTERPARTY, value=None),
    ], wallet, NETWORK)
    writer.write_page([make_transfer("0xe", 90)], wallet, "polygon-mainnet")
    return TransactionHistoryService(session)


class TestTransactionHistory:
    def test_newest_block_first(self, history):
        records, total = history.get_transaction_history(WALLET_ADDRESS)

        assert total == 5
        assert [r.hash for r in records] == ["0xd", "0xc", "0xb", "0xa", "0xe"]

    def test_pagination_keeps_total(self, history):
        records, total = history.get_transaction_history(WALLET_ADDRESS, pagination=Pagination(limit=2, offset=1))

        assert total == 5
        assert [r.hash for r in records] == ["0xc", "0xb"]

    def test_network_and_direction_filters(self, history):
        filters = TransactionHistoryFilters(network=NETWORK, direction="outgoing")

        records, total = history.get_transaction_history(WALLET_ADDRESS, filters)

        assert total == 1
        assert records[0].hash == "0xb"

    def test_category_and_whitelist_filters(self, history):
        records, _ = history.get_transaction_history(WALLET_ADDRESS, TransactionHistoryFilters(category="erc20"))
        assert [r.hash for r in records] == ["0xc"]

        records, _ = history.get_transaction_history(WALLET_ADDRESS, TransactionHistoryFilters(whitelisted_only=True))
        assert [r.hash for r in records] == ["0xc"]

    def test_block_and_date_bounds_are_inclusive(self, history):
        by_block = TransactionHistoryFilters(start_block=100, end_block=120)
        records, _ = history.get_transaction_history(WALLET_ADDRESS, by_block)
        assert [r.hash for r in records] == ["0xc", "0xb", "0xa"]

        # Block 110 was mined at 01:50 in the test fixtures
        by_date = TransactionHistoryFilters(start_date=datetime(2024, 1, 1, 1, 50))
        records, _ = history.get_transaction_history(WALLET_ADDRESS, by_date)
        assert [r.hash for r in records] == ["0xd", "0xc", "0xb"]

    def test_address_lookup_is_case_insensitive(self, history):
        _, total = history.get_transaction_history(WALLET_ADDRESS.upper().replace("0X", "0x"))
        assert total == 5

    def test_unknown_wallet(self, history):
        with pytest.raises(WalletNotFoundError):
            history.get_transaction_history("0x9999999999999999999999999999999999999999")


class TestTransactionStats:
    def test_stats_for_network(self, history, wallet):
        stats = history.get_transaction_stats(wallet.id, NETWORK)

        assert stats["total_transactions"] == 4
        assert stats["incoming_count"] == 3
        assert stats["outgoing_count"] == 1
        assert stats["by_category"] == {"external": 2, "erc20": 1, "erc721": 1}
        assert stats["oldest_transaction"] == datetime(2024, 1, 1, 1, 40)
        assert stats["latest_transaction"] == datetime(2024, 1, 1, 2, 10)

    def test_stats_across_networks(self, history, wallet):
        assert history.get_transaction_stats(wallet.id)["total_transactions"] == 5

    def test_stats_for_unknown_wallet(self, history):
        with pytest.raises(WalletNotFoundError):
            history.get_transaction_stats(404)

    def test_sync_status_for_unknown_wallet(self, history):
        with pytest.raises(WalletNotFoundError):
            history.get_sync_status(404)
