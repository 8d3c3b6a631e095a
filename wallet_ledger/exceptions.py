"""
Wallet ledger exceptions.

Provider errors carry enough detail for callers to tell transient failures
(network trouble, rate limiting, 5xx) from permanent request errors.
Duplicate-key errors are not part of this hierarchy: they surface as
SQLAlchemy IntegrityError and are absorbed by the ledger writer.
"""

from datetime import datetime
from typing import Any, Dict, Optional


class WalletLedgerError(Exception):
    """Base exception for all wallet ledger errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.utcnow()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


# Configuration errors: fatal, never retried

class ConfigurationError(WalletLedgerError):
    """Missing credentials or invalid configuration."""


class UnsupportedNetworkError(ConfigurationError):
    """Network identifier is not in the supported network registry."""

    def __init__(self, network: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"Unsupported network: {network}", details)
        self.network = network


# Lookup errors: surfaced directly, no retry

class NotFoundError(WalletLedgerError):
    """Requested entity does not exist."""


class WalletNotFoundError(NotFoundError):
    """Wallet lookup by id or address failed."""


class SyncTargetNotFoundError(NotFoundError):
    """Wallet exists but does not track the requested network."""


# Provider errors

class ProviderError(WalletLedgerError):
    """Error raised by the blockchain data provider client."""

    def __init__(
        self,
        message: str,
        network: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.network = network
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "network": self.network,
            "status_code": self.status_code,
            "transient": self.is_transient,
        })
        return data


class ProviderTransientError(ProviderError):
    """Network failure, timeout or 5xx response. Safe to retry later."""

    @property
    def is_transient(self) -> bool:
        return True


class RateLimitError(ProviderTransientError):
    """Provider rejected the request because of rate limiting."""

    def __init__(
        self,
        message: str,
        network: Optional[str] = None,
        status_code: Optional[int] = 429,
        retry_after_seconds: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, network, status_code, details)
        self.retry_after_seconds = retry_after_seconds


class ProviderRequestError(ProviderError):
    """Provider rejected the request itself (bad parameters, auth). Permanent."""
