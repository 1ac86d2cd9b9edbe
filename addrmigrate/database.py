"""
Database schema and connection management.

SQLAlchemy models for legacy orders and the canonical address catalog.
Works against SQLite (local runs, tests) and PostgreSQL.
"""

from datetime import datetime
from pathlib import Path
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()

DEDUP_CONSTRAINT = "uq_addresses_tenant_country_hash"


class Address(Base):
    """Canonical, deduplicated delivery address."""

    __tablename__ = "addresses"
    __table_args__ = (
        UniqueConstraint("tenant_id", "country_code", "hash", name=DEDUP_CONSTRAINT),
    )

    id = Column(String(36), primary_key=True)
    tenant_id = Column(String, nullable=False)
    hash = Column(String(64), nullable=False)  # sha256 hex of canonical key
    country_code = Column(String(2), nullable=False)
    structured_data = Column(JSON, nullable=False)
    formatted_address = Column(String, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    validation_status = Column(String, nullable=False)  # verified_rooftop, verified_approximate, ...
    last_validated_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class Order(Base):
    """Order carrying a legacy free-text delivery address."""

    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_unlinked", "delivery_address_id"),
    )

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False)
    legacy_address_text = Column(String, nullable=True)
    delivery_address_id = Column(String(36), ForeignKey("addresses.id"), nullable=True)
    delivery_address_country_code = Column(String(2), nullable=True)
    delivery_address_snapshot = Column(JSON, nullable=True)
    delivery_validation_status = Column(String, nullable=True)  # verified, failed
    created_at = Column(DateTime, nullable=False, default=datetime.now)


def get_engine(database_url: str) -> Engine:
    """
    Create an engine for the given SQLAlchemy URL.

    SQLite parent directories are created so a fresh checkout can run.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url)


def init_database(database_url: str) -> Engine:
    """
    Initialize database and create tables.

    Args:
        database_url: SQLAlchemy URL, e.g. sqlite:///data/orders.db

    Returns:
        The engine used to create the schema
    """
    engine = get_engine(database_url)
    Base.metadata.create_all(engine)
    return engine


def get_session(database_url: str) -> Session:
    """
    Get database session.

    Args:
        database_url: SQLAlchemy URL

    Returns:
        SQLAlchemy session
    """
    engine = get_engine(database_url)
    Session = sessionmaker(bind=engine)
    return Session()
