"""
Address store: canonical address catalog and order linkage.

Every write method assumes the caller holds the unit of work opened with
``transaction()``; the orchestrator opens one per batch.
"""

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .database import Address, Order
from .normalize import address_validation_status, content_hash, normalize_component
from .schema import (
    CanonicalAddress,
    Coordinate,
    LegacyRecord,
    LinkageUpdate,
    ResolvedAddress,
    ValidationStatus,
)

DEDUP_COLUMNS = ["tenant_id", "country_code", "hash"]

# Dialects with a native INSERT ... ON CONFLICT DO NOTHING
_CONFLICT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def build_candidate(tenant_id: str, resolved: ResolvedAddress) -> CanonicalAddress:
    """New catalog entry for a resolved address, not yet persisted."""
    return CanonicalAddress(
        id=str(uuid.uuid4()),
        tenant_id=tenant_id,
        hash=content_hash(resolved.components),
        country_code=normalize_component(resolved.components.country_code),
        components=resolved.components.to_dict(),
        formatted=resolved.formatted,
        location=resolved.location,
        validation_status=address_validation_status(resolved.precision),
        last_validated_at=datetime.now(),
    )


def _to_canonical(row: Address) -> CanonicalAddress:
    return CanonicalAddress(
        id=row.id,
        tenant_id=row.tenant_id,
        hash=row.hash,
        country_code=row.country_code,
        components=dict(row.structured_data),
        formatted=row.formatted_address,
        location=Coordinate(lat=row.latitude, lng=row.longitude),
        validation_status=row.validation_status,
        last_validated_at=row.last_validated_at,
    )


class AddressStore:
    """SQLAlchemy-backed store for orders and canonical addresses."""

    def __init__(self, session: Session):
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def transaction(self):
        """Context manager: commit on clean exit, roll back on exception."""
        if self._session.in_transaction():
            return self._session.begin_nested()
        return self._session.begin()

    def rollback(self) -> None:
        self._session.rollback()

    def fetch_candidates(self) -> List[LegacyRecord]:
        """
        Snapshot every order still waiting for a canonical address.

        Orders without text (NULL or blank) are skipped. The list is built
        up front, so orders created during the run wait for the next one.
        """
        stmt = (
            select(Order.id, Order.tenant_id, Order.legacy_address_text)
            .where(Order.delivery_address_id.is_(None))
            .where(Order.legacy_address_text.is_not(None))
            .where(func.trim(Order.legacy_address_text) != "")
            .order_by(Order.created_at, Order.id)
        )
        with self.transaction():
            rows = self._session.execute(stmt).all()
        return [LegacyRecord(id=r.id, tenant_id=r.tenant_id, raw_address=r.legacy_address_text) for r in rows]

    def find_by_hash(self, tenant_id: str, hash_: str, country_code: str) -> Optional[CanonicalAddress]:
        stmt = select(Address).where(
            Address.tenant_id == tenant_id,
            Address.hash == hash_,
            Address.country_code == country_code,
        )
        row = self._session.execute(stmt).scalar_one_or_none()
        return _to_canonical(row) if row is not None else None

    def insert_if_absent(self, candidate: CanonicalAddress) -> Tuple[CanonicalAddress, bool]:
        """
        Insert candidate unless its (tenant, country, hash) already exists.

        Returns the row that ends up in the catalog and whether this call
        created it. A writer losing a race gets the winner's row back.
        """
        values = {
            "id": candidate.id,
            "tenant_id": candidate.tenant_id,
            "hash": candidate.hash,
            "country_code": candidate.country_code,
            "structured_data": dict(candidate.components),
            "formatted_address": candidate.formatted,
            "latitude": candidate.location.lat,
            "longitude": candidate.location.lng,
            "validation_status": candidate.validation_status,
            "last_validated_at": candidate.last_validated_at,
        }

        dialect = self._session.get_bind().dialect.name
        conflict_insert = _CONFLICT_INSERTS.get(dialect)
        if conflict_insert is not None:
            stmt = conflict_insert(Address).values(**values).on_conflict_do_nothing(
                index_elements=DEDUP_COLUMNS
            )
            created = self._session.execute(stmt).rowcount == 1
        else:
            try:
                with self._session.begin_nested():
                    self._session.execute(insert(Address).values(**values))
                created = True
            except IntegrityError:
                created = False

        if created:
            return candidate, True

        winner = self.find_by_hash(candidate.tenant_id, candidate.hash, candidate.country_code)
        if winner is None:
            raise LookupError(
                f"Address insert for tenant {candidate.tenant_id} conflicted "
                f"but no row matches hash {candidate.hash}"
            )
        return winner, False

    def link_record(self, linkage: LinkageUpdate) -> None:
        self._session.execute(
            update(Order)
            .where(Order.id == linkage.record_id)
            .values(
                delivery_address_id=linkage.address_id,
                delivery_address_country_code=linkage.country_code,
                delivery_address_snapshot=linkage.snapshot,
                delivery_validation_status=linkage.status.value,
            )
        )

    def mark_failed(self, record_id: str) -> bool:
        """Flag an order as failed. Returns False when it already was."""
        result = self._session.execute(
            update(Order)
            .where(Order.id == record_id)
            .where(
                or_(
                    Order.delivery_validation_status.is_(None),
                    Order.delivery_validation_status != ValidationStatus.FAILED.value,
                )
            )
            .values(delivery_validation_status=ValidationStatus.FAILED.value)
        )
        return result.rowcount == 1


class DryRunAddressStore:
    """
    Read-through wrapper that never writes.

    Inserts land in an in-memory overlay so later records in the same run
    deduplicate against them, exactly as they would in a live run.
    """

    def __init__(self, store: AddressStore):
        self._store = store
        self._pending: Dict[tuple, CanonicalAddress] = {}

    @contextmanager
    def transaction(self):
        try:
            yield
        finally:
            # Only reads happened; release them
            self._store.rollback()

    def fetch_candidates(self) -> List[LegacyRecord]:
        return self._store.fetch_candidates()

    def find_by_hash(self, tenant_id: str, hash_: str, country_code: str) -> Optional[CanonicalAddress]:
        pending = self._pending.get((tenant_id, country_code, hash_))
        if pending is not None:
            return pending
        return self._store.find_by_hash(tenant_id, hash_, country_code)

    def insert_if_absent(self, candidate: CanonicalAddress) -> Tuple[CanonicalAddress, bool]:
        existing = self.find_by_hash(candidate.tenant_id, candidate.hash, candidate.country_code)
        if existing is not None:
            return existing, False
        self._pending[candidate.dedup_key] = candidate
        return candidate, True

    def link_record(self, linkage: LinkageUpdate) -> None:
        pass

    def mark_failed(self, record_id: str) -> bool:
        return True
