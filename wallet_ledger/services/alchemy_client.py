"""
Alchemy API client for EVM wallet data.
Provides paginated asset transfers (JSON-RPC) and token balances (Data API).
"""

import re
import logging
import requests
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, List, Optional, Union
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from wallet_ledger.config.networks import get_network
from wallet_ledger.config.settings import ProviderConfig, get_settings
from wallet_ledger.exceptions import (
    ProviderRequestError,
    ProviderTransientError,
    RateLimitError,
)
from wallet_ledger.models.ledger import TransactionCategory, TransactionDirection

logger = logging.getLogger(__name__)

BlockRef = Union[int, str, None]

# JSON-RPC error codes Alchemy uses for throttling
RATE_LIMIT_RPC_CODES = {429, -32005}

SPAM_PATTERNS = [
    re.compile(r"visit|claim|airdrop|reward|bonus"),
    re.compile(r"\$\s*(usdt|usdc|eth|btc)"),
    re.compile(r"www\."),
    re.compile(r"\.com|\.net|\.org|\.io"),
    re.compile(r"https?://"),
    re.compile(r"t\.ly|t\.me"),
    re.compile(r"access|check|get"),
]


@dataclass
class TransferPage:
    """One page of raw transfer records plus the continuation cursor."""
    records: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None


@dataclass
class BalancePage:
    """One page of raw token balance entries plus the continuation cursor."""
    tokens: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None


# Conversion helpers

def hex_to_decimal(raw: Union[str, int, None], decimals: Optional[int] = 18) -> str:
    """Convert a provider large-integer amount to a human-readable decimal string.

    Uses exact integer division. Trailing fractional zeros are trimmed and a
    zero fraction collapses to an integer string.

    Args:
        raw: Hex string ('0x...'), decimal string or int
        decimals: Token decimal places

    Returns:
        Decimal string, e.g. '1.5' or '0.000001'
    """
    if raw is None:
        return "0"

    if isinstance(raw, int):
        value = raw
    else:
        text = raw.strip().lower()
        if text.startswith("0x"):
            value = int(text[2:] or "0", 16)
        else:
            value = int(text or "0")

    decimals = 18 if decimals is None else int(decimals)
    if decimals <= 0:
        return str(value)

    whole, fraction = divmod(value, 10 ** decimals)
    if fraction == 0:
        return str(whole)

    fraction_text = str(fraction).rjust(decimals, "0").rstrip("0")
    return f"{whole}.{fraction_text}"


def to_block_number(value: BlockRef) -> Optional[int]:
    """Parse a block reference into an integer.

    Accepts ints, hex strings and decimal strings. None and 'latest' map to None.

    Raises:
        ValueError: if the value is not a block reference
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid block reference: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Block number cannot be negative: {value}")
        return value

    text = str(value).strip().lower()
    if text in ("", "latest"):
        return None
    if text.startswith("0x"):
        return int(text, 16)
    if text.isdigit():
        return int(text)
    raise ValueError(f"Invalid block reference: {value!r}")


def to_hex_block(number: int) -> str:
    return hex(number)


def get_usd_value(token_prices: Optional[List[Dict[str, Any]]]) -> Optional[float]:
    """Return the USD price from a provider price list, if present."""
    for price in token_prices or []:
        if str(price.get("currency", "")).lower() == "usd":
            try:
                return float(price.get("value"))
            except (TypeError, ValueError):
                return None
    return None


def usd_amount(balance_decimal: str, price: Optional[float]) -> Optional[float]:
    """Multiply a decimal balance string by a USD price."""
    if price is None:
        return None
    try:
        return float(Decimal(balance_decimal) * Decimal(str(price)))
    except InvalidOperation:
        return None


def is_likely_spam_token(token: Dict[str, Any]) -> bool:
    """Heuristic spam/dust check on token name and symbol. Native tokens are never spam."""
    if not token.get("tokenAddress"):
        return False

    metadata = token.get("tokenMetadata") or {}
    name = (metadata.get("name") or "").lower()
    symbol = (metadata.get("symbol") or "").lower()

    return any(pattern.search(name) or pattern.search(symbol) for pattern in SPAM_PATTERNS)


class AlchemyAPIClient:
    """Alchemy API client for EVM transfer history and token balances."""

    def __init__(self, api_key: Optional[str] = None, config: Optional[ProviderConfig] = None):
        """Initialize Alchemy API client.

        Args:
            api_key: Alchemy API key. If None, read from the environment.
            config: Provider settings. If None, taken from settings.

        Raises:
            ConfigurationError: if no API key is available
        """
        settings = None
        if api_key is None or config is None:
            settings = get_settings()
        self.api_key = api_key or settings.get_alchemy_api_key()
        self.config = config or settings.provider
        self.session = requests.Session()
        self.session.headers.update({
            "accept": "application/json",
            "content-type": "application/json"
        })

    def _retryer(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(max(1, self.config.max_retries)),
            wait=wait_exponential(
                multiplier=self.config.backoff_factor,
                min=self.config.backoff_min_seconds,
                max=self.config.backoff_max_seconds
            ),
            retry=retry_if_exception_type(ProviderTransientError),
            reraise=True
        )

    def _make_request(self, url: str, payload: Dict[str, Any], operation: str,
                      network: Optional[str] = None) -> Dict[str, Any]:
        """POST to the provider with retry on transient errors.

        Args:
            url: Full endpoint URL (contains the API key, never logged)
            payload: JSON body
            operation: Name used in log lines
            network: Network the call targets

        Returns:
            JSON response data
        """
        return self._retryer()(self._send, url, payload, operation, network)

    def _send(self, url: str, payload: Dict[str, Any], operation: str,
              network: Optional[str]) -> Dict[str, Any]:
        try:
            response = self.session.post(url, json=payload, timeout=self.config.timeout_seconds)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.warning(f"{operation} on {network} failed: {type(e).__name__}")
            raise ProviderTransientError(
                f"{operation} request failed: {type(e).__name__}", network=network
            ) from None
        except requests.exceptions.RequestException as e:
            logger.error(f"{operation} on {network} could not be sent: {type(e).__name__}")
            raise ProviderRequestError(
                f"{operation} request could not be sent: {type(e).__name__}", network=network
            ) from None

        status = response.status_code
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            logger.warning(f"{operation} on {network} rate limited")
            raise RateLimitError(
                f"{operation} rate limited by provider",
                network=network,
                retry_after_seconds=float(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if status >= 500:
            logger.warning(f"{operation} on {network} returned HTTP {status}")
            raise ProviderTransientError(
                f"{operation} failed with HTTP {status}", network=network, status_code=status
            )
        if status >= 400:
            logger.error(f"{operation} on {network} rejected with HTTP {status}")
            raise ProviderRequestError(
                f"{operation} rejected with HTTP {status}",
                network=network,
                status_code=status,
                details={"body": response.text[:500]}
            )

        try:
            data = response.json()
        except ValueError:
            raise ProviderTransientError(
                f"{operation} returned a malformed JSON body", network=network, status_code=status
            ) from None

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            self._raise_for_payload_error(error, operation, network, status)

        return data

    def _raise_for_payload_error(self, error: Any, operation: str, network: Optional[str], status: int):
        code = error.get("code") if isinstance(error, dict) else None
        message = error.get("message") if isinstance(error, dict) else str(error)

        if code in RATE_LIMIT_RPC_CODES:
            logger.warning(f"{operation} on {network} rate limited (code {code})")
            raise RateLimitError(f"{operation} rate limited: {message}", network=network, status_code=status)

        logger.error(f"{operation} on {network} returned error {code}: {message}")
        raise ProviderRequestError(
            f"{operation} error {code}: {message}",
            network=network,
            status_code=status,
            details={"code": code}
        )

    def _rpc_url(self, network: str) -> str:
        host = get_network(network).rpc_host
        return f"{self.config.base_url_template.format(network=host)}/{self.api_key}"

    def fetch_transfer_page(
        self,
        address: str,
        network: str,
        from_block: BlockRef = None,
        to_block: BlockRef = None,
        direction: TransactionDirection = TransactionDirection.INCOMING,
        cursor: Optional[str] = None
    ) -> TransferPage:
        """Fetch one page of asset transfers into or out of an address.

        Args:
            address: Wallet address
            network: Network identifier
            from_block: Inclusive start block (None = genesis)
            to_block: Inclusive end block (None or 'latest' = chain head)
            direction: INCOMING filters on toAddress, OUTGOING on fromAddress
            cursor: Continuation cursor from the previous page

        Returns:
            TransferPage with raw records in ascending block order
        """
        network_config = get_network(network)

        categories = [
            TransactionCategory.EXTERNAL.value,
            TransactionCategory.ERC20.value,
            TransactionCategory.ERC721.value,
            TransactionCategory.ERC1155.value
        ]
        if network_config.supports_internal_transfers:
            categories.insert(1, TransactionCategory.INTERNAL.value)

        start = to_block_number(from_block)
        end = to_block_number(to_block)

        params: Dict[str, Any] = {
            "fromBlock": to_hex_block(start or 0),
            "toBlock": to_hex_block(end) if end is not None else "latest",
            "category": categories,
            "withMetadata": True,
            "excludeZeroValue": False,
            "order": "asc",
            "maxCount": hex(self.config.page_size)
        }
        if direction == TransactionDirection.OUTGOING:
            params["fromAddress"] = address
        else:
            params["toAddress"] = address
        if cursor:
            params["pageKey"] = cursor

        payload = {
            "id": 1,
            "jsonrpc": "2.0",
            "method": "alchemy_getAssetTransfers",
            "params": [params]
        }

        logger.debug(
            f"Fetching {direction.value} transfers for {address} on {network} "
            f"from {params['fromBlock']} to {params['toBlock']}"
        )
        data = self._make_request(self._rpc_url(network), payload, "alchemy_getAssetTransfers", network)

        result = data.get("result") or {}
        return TransferPage(
            records=result.get("transfers") or [],
            next_cursor=result.get("pageKey") or None
        )

    def get_block_number(self, network: str) -> int:
        """Current chain head for a network (eth_blockNumber)."""
        get_network(network)
        payload = {"id": 1, "jsonrpc": "2.0", "method": "eth_blockNumber", "params": []}
        data = self._make_request(self._rpc_url(network), payload, "eth_blockNumber", network)

        head = data.get("result")
        if not isinstance(head, str) or not head.startswith("0x"):
            raise ProviderTransientError(
                f"eth_blockNumber returned an unusable result: {head!r}", network=network
            )
        return int(head, 16)

    def fetch_balances(
        self,
        addresses: List[str],
        networks: List[str],
        cursor: Optional[str] = None,
        with_prices: bool = True,
        include_erc20_tokens: bool = True,
        include_native_tokens: bool = True
    ) -> BalancePage:
        """Fetch one page of token balances for addresses across networks.

        Args:
            addresses: Wallet addresses
            networks: Network identifiers queried for every address
            cursor: Continuation cursor from the previous page
            with_prices: Include USD prices
            include_erc20_tokens: Include ERC20 balances
            include_native_tokens: Include native asset balances

        Returns:
            BalancePage with raw token entries
        """
        for network in networks:
            get_network(network)

        payload: Dict[str, Any] = {
            "addresses": [{"address": address, "networks": list(networks)} for address in addresses],
            "withPrices": with_prices,
            "includeErc20Tokens": include_erc20_tokens,
            "includeNativeTokens": include_native_tokens
        }
        if cursor:
            payload["pageKey"] = cursor

        logger.debug(f"Fetching balances for {len(addresses)} address(es) on {len(networks)} network(s)")
        url = f"{self.config.data_api_url}/{self.api_key}/assets/tokens/by-address"
        data = self._make_request(url, payload, "assets/tokens/by-address")

        body = data.get("data") or {}
        return BalancePage(
            tokens=body.get("tokens") or [],
            next_cursor=body.get("pageKey") or None
        )

    def get_tokens_for_wallet(
        self,
        address: str,
        networks: List[str],
        max_pages: int = 10,
        **options
    ) -> List[Dict[str, Any]]:
        """Fetch every balance page for a single wallet.

        Args:
            address: Wallet address
            networks: Networks to query
            max_pages: Cursor-following ceiling
            options: Passed through to fetch_balances

        Returns:
            List of raw token entries
        """
        tokens: List[Dict[str, Any]] = []
        cursor = None

        for _ in range(max_pages):
            page = self.fetch_balances([address], networks, cursor=cursor, **options)
            tokens.extend(page.tokens)
            cursor = page.next_cursor
            if not cursor:
                break
        else:
            logger.warning(f"Balance pagination for {address} stopped at {max_pages} pages")

        logger.debug(f"Found {len(tokens)} tokens for wallet {address}")
        return tokens

    def close(self):
        self.session.close()
