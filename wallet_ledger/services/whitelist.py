"""
Whitelist lookup used when flagging balances and transaction records.
"""

import logging
from typing import Dict, Optional, Tuple
from sqlmodel import Session, select

from wallet_ledger.models.whitelist import WhitelistToken

logger = logging.getLogger(__name__)


class WhitelistService:
    """Answers whether a (token, network) pair is on the active whitelist.

    Answers are memoized per instance, so one instance should live no longer
    than a sync run or a refresh cycle.
    """

    def __init__(self, session: Session):
        self.session = session
        self._memo: Dict[Tuple[Optional[str], str], bool] = {}

    def is_token_whitelisted(self, token_address: Optional[str], network: str) -> bool:
        """Check a token against the whitelist.

        Args:
            token_address: Token contract address, or None for the native asset
            network: Network identifier

        Returns:
            True if an active whitelist entry matches
        """
        key = (token_address.lower() if token_address else None, network)
        if key in self._memo:
            return self._memo[key]

        query = select(WhitelistToken.id).where(
            WhitelistToken.network == network,
            WhitelistToken.active == True  # noqa: E712
        )
        if key[0] is None:
            query = query.where(WhitelistToken.token_address.is_(None))
        else:
            query = query.where(WhitelistToken.token_address == key[0])

        whitelisted = self.session.exec(query).first() is not None
        self._memo[key] = whitelisted
        return whitelisted

    def clear(self):
        self._memo.clear()
