"""
Engine and session handling for the ledger database.

PostgreSQL is the production target. SQLite URLs are accepted for local runs
and tests; an in-memory SQLite database is pinned to a single connection so
every session sees the same tables.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlmodel import Session, SQLModel
from tenacity import retry, stop_after_attempt, wait_exponential

from wallet_ledger.config.settings import DatabaseConfig, get_settings

logger = logging.getLogger(__name__)

APPLICATION_NAME = "wallet_ledger"


def _engine_options(database_url: str, config: DatabaseConfig) -> Dict[str, Any]:
    """create_engine keyword arguments for the URL's backend."""
    if not database_url.startswith("sqlite"):
        return {
            "poolclass": QueuePool,
            "pool_size": config.pool_size,
            "max_overflow": config.max_overflow,
            "pool_pre_ping": True,
            "pool_recycle": config.pool_recycle_hours * 3600,
            "connect_args": {
                "connect_timeout": config.connection_timeout_seconds,
                "application_name": APPLICATION_NAME
            }
        }

    options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///") or ":memory:" in database_url:
        options["poolclass"] = StaticPool
    return options


def _display_host(database_url: str) -> str:
    """Host part of a server URL, without credentials."""
    if "@" not in database_url:
        return "local"
    return database_url.split("@", 1)[1].split("/", 1)[0]


class DatabaseConnection:
    """Owns the ledger engine and hands out sessions."""

    def __init__(self, database_url: Optional[str] = None, config: Optional[DatabaseConfig] = None):
        """Initialize the engine.

        Args:
            database_url: SQLAlchemy URL. If None, DATABASE_URL or the POSTGRES_* variables are used.
            config: Pool settings. If None, taken from settings.
        """
        settings = get_settings() if database_url is None or config is None else None
        self.database_url = database_url or settings.get_database_url()
        self.config = config or settings.database
        self.engine: Engine = create_engine(
            self.database_url,
            echo=self.config.echo,
            **_engine_options(self.database_url, self.config)
        )

        @event.listens_for(self.engine, "connect")
        def on_connect(dbapi_conn, connection_record):
            logger.debug(f"Opened ledger database connection to {_display_host(self.database_url)}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        reraise=True
    )
    def test_connection(self) -> bool:
        """Run SELECT 1, retrying while the database comes up.

        Returns:
            True when the database answered
        """
        try:
            with self.engine.connect() as conn:
                ok = conn.execute(text("SELECT 1")).scalar() == 1
        except Exception as e:
            logger.error(f"Ledger database unreachable at {_display_host(self.database_url)}: {e}")
            raise

        logger.info("Ledger database connection OK")
        return ok

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Session scope: rolled back if the block raises, always closed.

        Yields:
            SQLModel Session instance
        """
        session = Session(self.engine)
        try:
            yield session
        except Exception as e:
            logger.error(f"Rolling back ledger session after error: {e}")
            session.rollback()
            raise
        finally:
            session.close()

    def create_all_tables(self):
        # Importing the models registers every ledger table on SQLModel.metadata
        import wallet_ledger.models  # noqa: F401

        SQLModel.metadata.create_all(self.engine)
        logger.info("Ledger tables are in place")

    def get_pool_status(self) -> dict:
        """Pool counters for server databases; SQLite engines report no_pool."""
        pool = self.engine.pool
        if not isinstance(pool, QueuePool):
            return {"status": "no_pool"}

        return {
            "pool_size": pool.size(),
            "checked_in": pool.checkedin(),
            "checked_out": pool.checkedout(),
            "overflow": pool.overflow()
        }

    def dispose(self):
        self.engine.dispose()


_db_connection: Optional[DatabaseConnection] = None


def get_database_connection() -> DatabaseConnection:
    """Process-wide connection, created on first use from settings."""
    global _db_connection
    if _db_connection is None:
        _db_connection = DatabaseConnection()
    return _db_connection


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Session from the process-wide connection.

    Yields:
        SQLModel Session instance
    """
    with get_database_connection().get_session() as session:
        yield session


def close_database_connection():
    global _db_connection
    if _db_connection is not None:
        _db_connection.dispose()
        _db_connection = None
        logger.info("Ledger database connection closed")


def health_check() -> dict:
    """Connectivity and pool report for the process-wide connection.

    Returns:
        Dictionary with status, connection_test, pool_status and host
    """
    try:
        db = get_database_connection()
        connected = db.test_connection()
    except Exception as e:
        logger.error(f"Ledger database health check failed: {e}")
        return {"status": "unhealthy", "error": str(e), "connection_test": False}

    return {
        "status": "healthy" if connected else "unhealthy",
        "connection_test": connected,
        "pool_status": db.get_pool_status(),
        "database_url_host": _display_host(db.database_url)
    }
