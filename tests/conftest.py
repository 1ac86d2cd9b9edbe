"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime, timedelta
from typing import List, Tuple

from sqlalchemy import select

from addrmigrate.database import Address, Order, get_session, init_database
from addrmigrate.logger import StructuredLogger, reset_logger
from addrmigrate.migration import Migration
from addrmigrate.resolver import MockResolver, RetryingResolver
from addrmigrate.retry import RetryPolicy
from addrmigrate.storage import AddressStore


@pytest.fixture(autouse=True)
def _reset_global_logger():
    yield
    reset_logger()


@pytest.fixture
def database_url(tmp_path) -> str:
    """SQLite database with the schema created."""
    url = f"sqlite:///{tmp_path / 'orders.db'}"
    init_database(url)
    return url


@pytest.fixture
def db_session(database_url):
    session = get_session(database_url)
    yield session
    session.close()


@pytest.fixture
def store(db_session) -> AddressStore:
    return AddressStore(db_session)


@pytest.fixture
def quiet_logger(tmp_path) -> StructuredLogger:
    """Logger writing only to a temporary directory."""
    return StructuredLogger(
        name="addrmigrate.test",
        level="DEBUG",
        log_dir=tmp_path / "logs",
        enable_console=False,
    )


@pytest.fixture
def add_orders(db_session):
    """Insert (id, tenant_id, legacy_address_text) rows in creation order."""
    def _add(rows: List[Tuple[str, str, str]]):
        base = datetime(2024, 1, 1)
        for i, (order_id, tenant_id, text) in enumerate(rows):
            db_session.add(Order(
                id=order_id,
                tenant_id=tenant_id,
                legacy_address_text=text,
                created_at=base + timedelta(minutes=i),
            ))
        db_session.commit()
    return _add


@pytest.fixture
def sleeps() -> List[float]:
    """Delays recorded instead of slept."""
    return []


@pytest.fixture
def make_migration(store, quiet_logger, sleeps):
    """Build a Migration over the test store with instant, recorded backoff."""
    def _make(resolver=None, batch_size=50, max_attempts=3, base_delay=0.01, store_override=None, **kwargs):
        retrying = RetryingResolver(
            resolver or MockResolver(),
            policy=RetryPolicy(max_attempts=max_attempts, base_delay=base_delay),
            sleep=sleeps.append,
            logger=quiet_logger,
        )
        return Migration(
            store=store_override or store,
            resolver=retrying,
            batch_size=batch_size,
            logger=quiet_logger,
            **kwargs,
        )
    return _make


@pytest.fixture
def db_snapshot(db_session):
    """Full dump of both tables, for before/after comparisons."""
    def _snapshot():
        db_session.expire_all()
        orders = [
            (o.id, o.tenant_id, o.legacy_address_text, o.delivery_address_id,
             o.delivery_address_country_code, o.delivery_address_snapshot,
             o.delivery_validation_status, o.created_at)
            for o in db_session.scalars(select(Order).order_by(Order.id))
        ]
        addresses = [
            (a.id, a.tenant_id, a.hash, a.country_code, a.structured_data,
             a.formatted_address, a.latitude, a.longitude, a.validation_status,
             a.last_validated_at, a.created_at)
            for a in db_session.scalars(select(Address).order_by(Address.id))
        ]
        db_session.rollback()
        return orders, addresses
    return _snapshot
