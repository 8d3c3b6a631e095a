"""
Schema bootstrap for the ledger tables.
"""

import logging
from typing import List, Optional
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from wallet_ledger.database.connection import DatabaseConnection, get_database_connection
from wallet_ledger.models import (
    Wallet,
    WalletBalance,
    WhitelistToken,
    TransactionHistory,
    WalletSyncStatus,
)

logger = logging.getLogger(__name__)

LEDGER_TABLES = [
    Wallet.__tablename__,
    WhitelistToken.__tablename__,
    WalletBalance.__tablename__,
    TransactionHistory.__tablename__,
    WalletSyncStatus.__tablename__,
]


def missing_tables(db: DatabaseConnection) -> List[str]:
    existing = set(inspect(db.engine).get_table_names())
    return [name for name in LEDGER_TABLES if name not in existing]


def init_database(db: Optional[DatabaseConnection] = None) -> dict:
    """Create whichever ledger tables do not exist yet.

    Returns:
        Status dictionary with the tables that were created
    """
    db = db or get_database_connection()

    try:
        to_create = missing_tables(db)
        db.create_all_tables()
    except SQLAlchemyError as e:
        logger.error(f"Ledger schema setup failed: {e}")
        return {"status": "failed", "message": str(e), "created": []}

    if to_create:
        logger.info(f"Created ledger tables: {', '.join(to_create)}")
    else:
        logger.info("All ledger tables already exist")
    return {"status": "success", "message": "Ledger schema ready", "created": to_create}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print(f"Ledger schema: {init_database()}")
