import json
from unittest.mock import patch

import pytest

from wallet_ledger import cli

from helpers import NETWORK, WALLET_ADDRESS, FakeTransferFeed, make_transfer


@pytest.fixture
def run_cli(session_factory, capsys):
    provider = FakeTransferFeed(incoming=[make_transfer("0xabc", 100)])

    def run(*argv):
        with patch.object(cli, "get_db_session", session_factory), \
                patch.object(cli, "AlchemyAPIClient", return_value=provider), \
                patch.object(cli, "close_database_connection"):
            code = cli.main(list(argv))
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    run.provider = provider
    return run


def test_sync_then_history(run_cli, wallet):
    code, out, _ = run_cli("sync", WALLET_ADDRESS, "--to-block", "0xc8")

    assert code == 0
    assert json.loads(out) == {
        NETWORK: {"synced": 1, "skipped": 0, "total_fetched": 1, "skipped_run": False}
    }

    code, out, _ = run_cli("history", WALLET_ADDRESS, "--direction", "incoming")
    body = json.loads(out)
    assert code == 0
    assert body["total"] == 1
    assert body["records"][0]["hash"] == "0xabc"


def test_status_and_stats(run_cli, wallet):
    run_cli("sync", WALLET_ADDRESS)

    code, out, _ = run_cli("status", WALLET_ADDRESS)
    states = json.loads(out)
    assert code == 0
    assert states[0]["network"] == NETWORK
    assert states[0]["last_synced_block_decimal"] == 100

    code, out, _ = run_cli("stats", WALLET_ADDRESS, "--network", NETWORK)
    assert json.loads(out)["incoming_count"] == 1


def test_unknown_wallet_exits_with_error(run_cli, wallet):
    code, _, err = run_cli("status", "0x9999999999999999999999999999999999999999")

    assert code == 1
    assert json.loads(err)["error_type"] == "WalletNotFoundError"


def test_invalid_block_reference(run_cli, wallet):
    code, _, err = run_cli("sync", WALLET_ADDRESS, "--from-block", "yesterday")

    assert code == 2
    assert "Invalid block reference" in json.loads(err)["message"]
    assert run_cli.provider.calls == []


def test_refresh_single_wallet(run_cli, wallet):
    run_cli.provider.tokens[WALLET_ADDRESS] = [{
        "network": NETWORK,
        "tokenAddress": None,
        "tokenBalance": "0xde0b6b3a7640000",
        "tokenMetadata": {"symbol": "ETH", "decimals": 18},
        "tokenPrices": [],
    }]

    code, out, _ = run_cli("refresh-balances", "--wallet", WALLET_ADDRESS)

    assert code == 0
    assert json.loads(out) == {"wallet": WALLET_ADDRESS, "balance_count": 1}
