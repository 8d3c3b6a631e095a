"""Shared fakes and record factories for the test suite."""

from datetime import datetime, timedelta

from wallet_ledger.exceptions import ProviderTransientError
from wallet_ledger.models.ledger import TransactionDirection
from wallet_ledger.services.alchemy_client import TransferPage

WALLET_ADDRESS = "0x1111111111111111111111111111111111111111"
COUNTERPARTY = "0x2222222222222222222222222222222222222222"
OTHER_WALLET = "0x3333333333333333333333333333333333333333"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
NETWORK = "eth-mainnet"
BASE_TIME = datetime(2024, 1, 1)


class FakeTransferFeed:
    """Scripted provider: serves transfer records per direction, paged by ``page_size``.

    When ``filter_blocks`` is set, records outside the requested block range
    are not served. The chain head is ``head`` when given, else the highest
    scripted block. ``fail_on`` maps (direction, page_index) to an exception
    raised once on that fetch.
    """

    def __init__(self, incoming=None, outgoing=None, page_size=2, filter_blocks=True, fail_on=None,
                 fail_addresses=None, tokens=None, head=None):
        self.records = {
            TransactionDirection.INCOMING: list(incoming or []),
            TransactionDirection.OUTGOING: list(outgoing or []),
        }
        self.page_size = page_size
        self.filter_blocks = filter_blocks
        self.fail_on = dict(fail_on or {})
        self.fail_addresses = set(fail_addresses or [])
        self.tokens = tokens if tokens is not None else {}
        self.calls = []
        self.token_calls = []
        self.head = head
        self.head_calls = 0

    def fetch_transfer_page(self, address, network, from_block=None, to_block=None,
                            direction=TransactionDirection.INCOMING, cursor=None):
        page_index = int(cursor) if cursor else 0
        self.calls.append({
            "address": address,
            "network": network,
            "from_block": from_block,
            "to_block": to_block,
            "direction": direction,
            "cursor": cursor,
        })

        if address in self.fail_addresses:
            raise self._failure()
        failure = self.fail_on.pop((direction, page_index), None)
        if failure is not None:
            raise failure

        records = self.records[direction]
        if self.filter_blocks:
            records = [
                r for r in records
                if int(r["blockNum"], 16) >= (from_block or 0)
                and (to_block is None or int(r["blockNum"], 16) <= to_block)
            ]

        start = page_index * self.page_size
        page = records[start:start + self.page_size]
        has_more = start + self.page_size < len(records)
        return TransferPage(records=page, next_cursor=str(page_index + 1) if has_more else None)

    def get_block_number(self, network):
        self.head_calls += 1
        if self.head is not None:
            return self.head
        blocks = [int(r["blockNum"], 16) for records in self.records.values() for r in records]
        return max(blocks, default=0)

    def get_tokens_for_wallet(self, address, networks, max_pages=10, **options):
        self.token_calls.append({"address": address, "networks": networks, "options": options})
        if address in self.fail_addresses:
            raise self._failure()
        return list(self.tokens.get(address, []))

    @staticmethod
    def _failure():
        return ProviderTransientError("provider unavailable", network=NETWORK, status_code=503)


def make_transfer(tx_hash, block, from_address=COUNTERPARTY, to_address=WALLET_ADDRESS, category="external",
                  value=1.5, asset="ETH", token=None, raw_value=None, decimals=None):
    return {
        "blockNum": hex(block),
        "uniqueId": f"{tx_hash}:{category}",
        "hash": tx_hash,
        "from": from_address,
        "to": to_address,
        "value": value,
        "erc721TokenId": None,
        "erc1155Metadata": None,
        "tokenId": None,
        "asset": asset,
        "category": category,
        "rawContract": {"value": raw_value, "address": token, "decimal": decimals},
        "metadata": {"blockTimestamp": (BASE_TIME + timedelta(minutes=block)).strftime("%Y-%m-%dT%H:%M:%S.000Z")},
    }


