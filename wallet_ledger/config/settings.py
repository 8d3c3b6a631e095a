"""
Runtime configuration for the wallet ledger.

Values are read from ledger_config.yaml, one mapping per section. Any key can
be overridden from the environment as SECTION_KEY (for example
TRANSACTION_SYNC_ENABLED=true); the override is coerced to the type of the
field's default. Credentials never live in the YAML file: the database URL and
the Alchemy key come from the environment (or a .env file) only.
"""

import os
import yaml
import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Type, TypeVar

from dotenv import load_dotenv

from wallet_ledger.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "WALLET_LEDGER_CONFIG"
CONFIG_FILENAME = "ledger_config.yaml"

TRUTHY = ("true", "1", "yes", "on")

SectionT = TypeVar("SectionT")


@dataclass
class DatabaseConfig:
    pool_size: int = 10
    max_overflow: int = 20
    pool_recycle_hours: int = 1
    connection_timeout_seconds: int = 30
    echo: bool = False


@dataclass
class ProviderConfig:
    """Alchemy endpoints, paging and retry policy."""
    base_url_template: str = "https://{network}.g.alchemy.com/v2"
    data_api_url: str = "https://api.g.alchemy.com/data/v1"
    timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_factor: float = 1.0
    backoff_min_seconds: float = 2.0
    backoff_max_seconds: float = 10.0
    page_size: int = 1000


@dataclass
class TransactionSyncConfig:
    """Periodic transfer-history sweep. Off until explicitly enabled."""
    enabled: bool = False
    interval_seconds: int = 600
    max_pages_per_sweep: int = 200
    page_delay_seconds: float = 0.1
    pair_delay_seconds: float = 0.3
    lease_timeout_minutes: int = 30


@dataclass
class BalanceRefreshConfig:
    enabled: bool = True
    interval_seconds: int = 300
    wallet_delay_seconds: float = 1.0
    with_prices: bool = True
    include_erc20_tokens: bool = True
    include_native_tokens: bool = True
    max_pages: int = 10


def _coerce(raw: str, default: Any) -> Any:
    """Convert an environment string to the type of default; unparseable numbers stay strings."""
    if isinstance(default, bool):
        return raw.strip().lower() in TRUTHY
    for kind in (int, float):
        if isinstance(default, kind):
            try:
                return kind(raw)
            except ValueError:
                logger.warning(f"Ignoring non-numeric override {raw!r}")
                return raw
    return raw


def _find_config_file() -> str:
    explicit = os.getenv(CONFIG_ENV_VAR)
    if explicit:
        return explicit

    package_root = os.path.join(os.path.dirname(__file__), "..", "..")
    candidates = [
        os.path.join("config", CONFIG_FILENAME),
        os.path.join(package_root, "config", CONFIG_FILENAME),
    ]
    return next((path for path in candidates if os.path.exists(path)), candidates[0])


class Settings:
    """Sections of the ledger configuration, resolved once at construction."""

    def __init__(self, config_path: Optional[str] = None):
        load_dotenv()
        self.config_path = config_path or _find_config_file()
        self.config_data: Dict[str, Any] = self._read_yaml(self.config_path)

        self.database = self._section("database", DatabaseConfig)
        self.provider = self._section("provider", ProviderConfig)
        self.transaction_sync = self._section("transaction_sync", TransactionSyncConfig)
        self.balance_refresh = self._section("balance_refresh", BalanceRefreshConfig)

    @staticmethod
    def _read_yaml(path: str) -> Dict[str, Any]:
        if not os.path.exists(path):
            logger.warning(f"No ledger config at {path}; running on defaults")
            return {}

        try:
            with open(path, "r") as handle:
                data = yaml.safe_load(handle)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Unreadable ledger config {path}, running on defaults: {e}")
            return {}

        logger.debug(f"Ledger config loaded from {path}")
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a dotted key such as 'transaction_sync.enabled'.

        The environment wins over the file: 'transaction_sync.enabled' is
        overridden by TRANSACTION_SYNC_ENABLED.
        """
        override = os.getenv(key.upper().replace(".", "_"))
        if override is not None:
            return _coerce(override, default)

        node: Any = self.config_data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def _section(self, name: str, section_type: Type[SectionT]) -> SectionT:
        defaults = section_type()
        values = {
            f.name: self.get(f"{name}.{f.name}", getattr(defaults, f.name))
            for f in fields(section_type)
        }
        return section_type(**values)

    def get_database_url(self) -> str:
        """DATABASE_URL, or a psycopg2 URL assembled from the POSTGRES_* variables."""
        url = os.getenv("DATABASE_URL")
        if url:
            return url

        return "postgresql+psycopg2://{user}:{password}@{host}:{port}/{db}".format(
            user=os.getenv("POSTGRES_USER", "ledger"),
            password=os.getenv("POSTGRES_PASSWORD", "ledger_password"),
            host=os.getenv("POSTGRES_HOST", "localhost"),
            port=os.getenv("POSTGRES_PORT", "5432"),
            db=os.getenv("POSTGRES_DB", "wallet_ledger"),
        )

    def get_alchemy_api_key(self) -> str:
        """
        Raises:
            ConfigurationError: ALCHEMY_API_KEY is unset or blank
        """
        api_key = (os.getenv("ALCHEMY_API_KEY") or "").strip()
        if not api_key:
            raise ConfigurationError("ALCHEMY_API_KEY must be set in the environment")
        return api_key


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Drop the cached settings and read the configuration again."""
    global _settings
    _settings = Settings()
    logger.info(f"Ledger settings reloaded from {_settings.config_path}")
    return _settings


def get_transaction_sync_config() -> TransactionSyncConfig:
    return get_settings().transaction_sync


def get_balance_refresh_config() -> BalanceRefreshConfig:
    return get_settings().balance_refresh
