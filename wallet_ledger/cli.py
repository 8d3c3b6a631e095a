"""CLI for the wallet ledger."""

import argparse
import json
import logging
import os
import sys
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from wallet_ledger.config.settings import reload_settings
from wallet_ledger.database.connection import close_database_connection, get_db_session, health_check
from wallet_ledger.database.init_tables import init_database
from wallet_ledger.exceptions import WalletLedgerError
from wallet_ledger.services.alchemy_client import AlchemyAPIClient
from wallet_ledger.services.transaction_history import (
    Pagination,
    TransactionHistoryFilters,
    TransactionHistoryService,
)
from wallet_ledger.services.wallets import WalletService
from wallet_ledger.sync.coordinator import SyncCoordinator
from wallet_ledger.sync.options import SyncOptions
from wallet_ledger.tasks.balance_refresh import BalanceRefresher
from wallet_ledger.tasks.transaction_sync import TransactionSyncScheduler

logger = logging.getLogger(__name__)


def _row_to_dict(row) -> Dict[str, Any]:
    return {column.name: getattr(row, column.name) for column in row.__table__.columns}


def _print_json(data: Any):
    print(json.dumps(data, indent=2, default=str))


def _parse_date(value: str) -> datetime:
    return datetime.fromisoformat(value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wallet-ledger")
    parser.add_argument("--config", help="Path to YAML configuration file")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create all database tables")
    subparsers.add_parser("health", help="Check database connectivity")

    sync_parser = subparsers.add_parser("sync", help="Sync transaction history for a wallet")
    sync_parser.add_argument("wallet_address")
    sync_parser.add_argument("--network", help="Sync one network instead of every tracked network")
    sync_parser.add_argument("--from-block", help="Inclusive start block (decimal or hex)")
    sync_parser.add_argument("--to-block", help="Inclusive end block (decimal, hex or 'latest')")
    sync_parser.add_argument("--full", action="store_true", help="Resync from genesis")

    refresh_parser = subparsers.add_parser("refresh-balances", help="Refresh balance snapshots")
    refresh_parser.add_argument("--wallet", help="Refresh a single wallet by address")

    status_parser = subparsers.add_parser("status", help="Show sync status for a wallet")
    status_parser.add_argument("wallet_address")
    status_parser.add_argument("--network")

    stats_parser = subparsers.add_parser("stats", help="Show transaction statistics for a wallet")
    stats_parser.add_argument("wallet_address")
    stats_parser.add_argument("--network")

    history_parser = subparsers.add_parser("history", help="List stored transactions for a wallet")
    history_parser.add_argument("wallet_address")
    history_parser.add_argument("--network")
    history_parser.add_argument("--category", choices=["external", "internal", "erc20", "erc721", "erc1155"])
    history_parser.add_argument("--direction", choices=["incoming", "outgoing"])
    history_parser.add_argument("--start-block", type=int)
    history_parser.add_argument("--end-block", type=int)
    history_parser.add_argument("--start-date", type=_parse_date, help="ISO date or datetime")
    history_parser.add_argument("--end-date", type=_parse_date, help="ISO date or datetime")
    history_parser.add_argument("--whitelisted-only", action="store_true")
    history_parser.add_argument("--limit", type=int, default=50)
    history_parser.add_argument("--offset", type=int, default=0)

    subparsers.add_parser("schedule", help="Run the transaction sync and balance refresh loops")

    return parser


def _init_db(args) -> int:
    result = init_database()
    _print_json(result)
    return 0 if result["status"] == "success" else 1


def _health(args) -> int:
    result = health_check()
    _print_json(result)
    return 0 if result["status"] == "healthy" else 1


def _sync(args) -> int:
    client = AlchemyAPIClient()
    options = SyncOptions(
        from_checkpoint=args.from_block,
        to_checkpoint=args.to_block,
        force_full_resync=args.full
    )
    results: Dict[str, Any] = {}
    exit_code = 0

    with get_db_session() as session:
        wallet = WalletService(session).get_by_address(args.wallet_address)
        networks: List[str] = [args.network] if args.network else list(wallet.networks or [])
        wallet_id = wallet.id
        coordinator = SyncCoordinator(session, client)

        for network in networks:
            try:
                results[network] = coordinator.run_sync(wallet_id, network, options).to_dict()
            except WalletLedgerError as e:
                results[network] = e.to_dict()
                exit_code = 1

    _print_json(results)
    return exit_code


def _refresh_balances(args) -> int:
    refresher = BalanceRefresher(AlchemyAPIClient(), session_factory=get_db_session)

    if args.wallet:
        with get_db_session() as session:
            wallet_id = WalletService(session).get_by_address(args.wallet).id
        _print_json({"wallet": args.wallet.lower(), "balance_count": refresher.force_refresh(wallet_id)})
        return 0

    _print_json(refresher.run_cycle().to_dict())
    return 0


def _status(args) -> int:
    with get_db_session() as session:
        wallet = WalletService(session).get_by_address(args.wallet_address)
        states = TransactionHistoryService(session).get_sync_status(wallet.id, args.network)
        _print_json([_row_to_dict(state) for state in states])
    return 0


def _stats(args) -> int:
    with get_db_session() as session:
        wallet = WalletService(session).get_by_address(args.wallet_address)
        _print_json(TransactionHistoryService(session).get_transaction_stats(wallet.id, args.network))
    return 0


def _history(args) -> int:
    filters = TransactionHistoryFilters(
        network=args.network,
        category=args.category,
        direction=args.direction,
        start_block=args.start_block,
        end_block=args.end_block,
        start_date=args.start_date,
        end_date=args.end_date,
        whitelisted_only=args.whitelisted_only
    )
    with get_db_session() as session:
        records, total = TransactionHistoryService(session).get_transaction_history(
            args.wallet_address, filters, Pagination(limit=args.limit, offset=args.offset)
        )
        _print_json({
            "total": total,
            "limit": args.limit,
            "offset": args.offset,
            "records": [_row_to_dict(record) for record in records]
        })
    return 0


def _schedule(args) -> int:
    stop_event = threading.Event()
    loops = [
        threading.Thread(
            target=TransactionSyncScheduler(AlchemyAPIClient()).run_forever, args=(stop_event,), name="transaction-sync"
        ),
        threading.Thread(
            target=BalanceRefresher(AlchemyAPIClient()).run_forever, args=(stop_event,), name="balance-refresh"
        ),
    ]
    for thread in loops:
        thread.start()

    try:
        while any(thread.is_alive() for thread in loops):
            for thread in loops:
                thread.join(timeout=1)
    except KeyboardInterrupt:
        logger.info("Stopping scheduler loops...")
        stop_event.set()
        for thread in loops:
            thread.join()
    return 0


COMMANDS = {
    "init-db": _init_db,
    "health": _health,
    "sync": _sync,
    "refresh-balances": _refresh_balances,
    "status": _status,
    "stats": _stats,
    "history": _history,
    "schedule": _schedule,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    if args.config:
        os.environ["WALLET_LEDGER_CONFIG"] = args.config
        reload_settings()

    try:
        return COMMANDS[args.command](args)
    except WalletLedgerError as e:
        print(json.dumps(e.to_dict(), default=str), file=sys.stderr)
        return 1
    except ValueError as e:
        print(json.dumps({"error_type": "ValueError", "message": str(e)}), file=sys.stderr)
        return 2
    finally:
        close_database_connection()


if __name__ == "__main__":
    raise SystemExit(main())
