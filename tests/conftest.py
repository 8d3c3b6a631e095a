from contextlib import contextmanager
from unittest.mock import Mock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

import wallet_ledger.models  # noqa: F401
from wallet_ledger.config.settings import BalanceRefreshConfig, TransactionSyncConfig
from wallet_ledger.models import Wallet

from helpers import NETWORK, WALLET_ADDRESS


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def session_factory(session):
    """Stands in for get_db_session, yielding the test session."""
    @contextmanager
    def factory():
        yield session
    return factory


@pytest.fixture
def wallet(session):
    wallet = Wallet(address=WALLET_ADDRESS, name="Treasury", networks=[NETWORK])
    session.add(wallet)
    session.commit()
    session.refresh(wallet)
    return wallet


@pytest.fixture
def sync_config():
    return TransactionSyncConfig(
        enabled=True,
        interval_seconds=600,
        max_pages_per_sweep=200,
        page_delay_seconds=0.1,
        pair_delay_seconds=0.3,
        lease_timeout_minutes=30,
    )


@pytest.fixture
def balance_config():
    return BalanceRefreshConfig(enabled=True, wallet_delay_seconds=1.0)


@pytest.fixture
def sleep():
    return Mock()
