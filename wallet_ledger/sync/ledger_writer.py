"""
Deduplicator and ledger writer for fetched transfer pages.
Maps raw provider transfers to ledger rows, drops those already stored for
the network and inserts the rest.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlmodel import Session, select

from wallet_ledger.database.operations import DatabaseOperations, unique_positions
from wallet_ledger.models.ledger import TransactionCategory, TransactionDirection, TransactionHistory
from wallet_ledger.models.wallet import Wallet
from wallet_ledger.services.alchemy_client import hex_to_decimal, to_block_number
from wallet_ledger.services.whitelist import WhitelistService

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    written: int = 0
    skipped: int = 0


def parse_block_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 block timestamp into naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable block timestamp {value!r}")
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def transfer_direction(from_address: str, wallet_address: str) -> TransactionDirection:
    """Outgoing when the wallet is the sender, incoming otherwise."""
    if from_address and from_address.lower() == wallet_address.lower():
        return TransactionDirection.OUTGOING
    return TransactionDirection.INCOMING


def transfer_value(raw: Dict[str, Any]) -> Optional[str]:
    """Exact decimal amount from rawContract when available, else the provider's value."""
    raw_contract = raw.get("rawContract") or {}
    raw_value = raw_contract.get("value")
    raw_decimals = raw_contract.get("decimal")

    if raw_value and raw_decimals is not None:
        decimals = to_block_number(raw_decimals)
        return hex_to_decimal(raw_value, decimals)

    value = raw.get("value")
    return str(value) if value is not None else None


class LedgerWriter:
    """Writes transfer pages into the transaction ledger exactly once per (hash, network)."""

    def __init__(self, session: Session, whitelist: Optional[WhitelistService] = None):
        self.session = session
        self.operations = DatabaseOperations(session)
        self.whitelist = whitelist or WhitelistService(session)

    def map_transfer(self, raw: Dict[str, Any], wallet: Wallet, network: str) -> Optional[Dict[str, Any]]:
        """Map a raw provider transfer to a TransactionHistory row.

        Args:
            raw: Transfer as returned by alchemy_getAssetTransfers
            wallet: Wallet being synced
            network: Network identifier

        Returns:
            Column dictionary, or None if the transfer cannot be stored
        """
        tx_hash = raw.get("hash")
        block_num = raw.get("blockNum")
        if not tx_hash or not block_num:
            logger.warning(f"Dropping transfer without hash or block on {network}")
            return None

        try:
            category = TransactionCategory(raw.get("category"))
        except ValueError:
            logger.warning(f"Dropping transfer {tx_hash} with unknown category {raw.get('category')!r}")
            return None

        from_address = (raw.get("from") or "").lower()
        # Contract creations have no recipient
        to_address = (raw.get("to") or from_address).lower()

        metadata = raw.get("metadata") or {}
        timestamp = parse_block_timestamp(metadata.get("blockTimestamp"))
        if timestamp is None:
            logger.debug(f"Transfer {tx_hash} has no block timestamp, using current time")
            timestamp = datetime.utcnow()

        raw_contract = raw.get("rawContract") or {}
        token_address = (raw_contract.get("address") or "").lower() or None
        if category in (TransactionCategory.EXTERNAL, TransactionCategory.INTERNAL):
            token_address = None

        return {
            "hash": tx_hash,
            "network": network,
            "from_address": from_address,
            "to_address": to_address,
            "block_num": block_num,
            "block_num_decimal": to_block_number(block_num),
            "timestamp": timestamp,
            "category": category,
            "direction": transfer_direction(from_address, wallet.address),
            "value": transfer_value(raw),
            "asset": raw.get("asset"),
            "token_address": token_address,
            "token_id": raw.get("tokenId"),
            "erc721_token_id": raw.get("erc721TokenId"),
            "erc1155_metadata": raw.get("erc1155Metadata"),
            "raw_contract": raw.get("rawContract"),
            "block_metadata": raw.get("metadata"),
            "is_whitelisted": self.whitelist.is_token_whitelisted(token_address, network),
            "wallet_id": wallet.id,
            "wallet_address": wallet.address.lower(),
        }

    def filter_new(self, records: List[Dict[str, Any]], network: str) -> List[Dict[str, Any]]:
        """Drop in-batch repeats and hashes already stored for the network."""
        records = [records[i] for i in unique_positions(records, ["hash"], keep="first")]
        existing = self.operations.existing_values(
            TransactionHistory.hash,
            [record["hash"] for record in records],
            TransactionHistory.network == network
        )
        return [record for record in records if record["hash"] not in existing]

    def _exists(self, session: Session, record: Dict[str, Any]) -> bool:
        return session.exec(
            select(TransactionHistory.id).where(
                TransactionHistory.hash == record["hash"],
                TransactionHistory.network == record["network"]
            )
        ).first() is not None

    def write_page(self, raw_records: List[Dict[str, Any]], wallet: Wallet, network: str) -> WriteResult:
        """Deduplicate and persist one page of raw transfers.

        Args:
            raw_records: Raw transfers from one provider page
            wallet: Wallet being synced
            network: Network identifier

        Returns:
            WriteResult where skipped = fetched - written
        """
        if not raw_records:
            return WriteResult()

        mapped = [record for record in (self.map_transfer(raw, wallet, network) for raw in raw_records) if record]
        new_records = self.filter_new(mapped, network)
        written = self.operations.insert_tolerating_duplicates(TransactionHistory, new_records, self._exists)

        return WriteResult(written=written, skipped=len(raw_records) - written)
