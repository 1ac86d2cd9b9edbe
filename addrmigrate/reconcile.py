"""
Post-migration reconciliation checks.

Compares the persisted state with what a migration run reported and checks
the catalog invariants: one address per (tenant, country, hash), and every
linked order pointing at an address of its own tenant and country.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, aliased

from .database import Address, Order
from .migration import MigrationStats
from .schema import ValidationStatus


@dataclass
class ReconciliationResult:
    addresses: int = 0
    verified_orders: int = 0
    failed_orders: int = 0
    pending_orders: int = 0
    duplicate_keys: List[tuple] = field(default_factory=list)
    dangling_links: List[str] = field(default_factory=list)
    mismatched_links: List[str] = field(default_factory=list)
    problems: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


def reconcile(session: Session, stats: Optional[MigrationStats] = None, sample: int = 5) -> ReconciliationResult:
    """
    Run all checks against the database behind session.

    Args:
        session: SQLAlchemy session
        stats: Stats from a live run to cross-check against, if any
        sample: How many offending ids to keep per check
    """
    result = ReconciliationResult()

    result.addresses = session.scalar(select(func.count()).select_from(Address))

    status_counts = dict(
        session.execute(
            select(Order.delivery_validation_status, func.count())
            .group_by(Order.delivery_validation_status)
        ).all()
    )
    result.verified_orders = status_counts.get(ValidationStatus.VERIFIED.value, 0)
    result.failed_orders = status_counts.get(ValidationStatus.FAILED.value, 0)
    result.pending_orders = session.scalar(
        select(func.count())
        .select_from(Order)
        .where(Order.delivery_address_id.is_(None))
        .where(Order.legacy_address_text.is_not(None))
        .where(func.trim(Order.legacy_address_text) != "")
        .where(
            or_(
                Order.delivery_validation_status.is_(None),
                Order.delivery_validation_status != ValidationStatus.FAILED.value,
            )
        )
    )

    duplicates = session.execute(
        select(Address.tenant_id, Address.country_code, Address.hash, func.count())
        .group_by(Address.tenant_id, Address.country_code, Address.hash)
        .having(func.count() > 1)
    ).all()
    result.duplicate_keys = [tuple(row[:3]) for row in duplicates]
    if duplicates:
        result.problems.append(f"{len(duplicates)} duplicate (tenant, country, hash) keys in addresses")

    dangling = session.scalars(
        select(Order.id)
        .outerjoin(Address, Order.delivery_address_id == Address.id)
        .where(Order.delivery_address_id.is_not(None))
        .where(Address.id.is_(None))
        .limit(sample)
    ).all()
    result.dangling_links = list(dangling)
    if dangling:
        result.problems.append("Orders linked to missing addresses")

    linked = aliased(Address)
    mismatched = session.scalars(
        select(Order.id)
        .join(linked, Order.delivery_address_id == linked.id)
        .where(
            (linked.tenant_id != Order.tenant_id)
            | (linked.country_code != Order.delivery_address_country_code)
        )
        .limit(sample)
    ).all()
    result.mismatched_links = list(mismatched)
    if mismatched:
        result.problems.append("Orders linked across tenant or country")

    if stats is not None and not stats.dry_run:
        if result.verified_orders < stats.success:
            result.problems.append(
                f"Run reported {stats.success} successes but only "
                f"{result.verified_orders} orders are verified"
            )
        if result.addresses < stats.new_addresses:
            result.problems.append(
                f"Run reported {stats.new_addresses} new addresses but catalog holds {result.addresses}"
            )

    return result


def format_reconciliation(result: ReconciliationResult) -> str:
    lines = [
        "Reconciliation",
        "-" * 35,
        f"Addresses:        {result.addresses}",
        f"Verified Orders:  {result.verified_orders}",
        f"Failed Orders:    {result.failed_orders}",
        f"Pending Orders:   {result.pending_orders}",
        "-" * 35,
    ]
    if result.ok:
        lines.append("All checks passed")
    else:
        lines.extend(f"PROBLEM: {p}" for p in result.problems)
        for key in result.duplicate_keys:
            lines.append(f"  duplicate key: {key}")
        for order_id in result.dangling_links:
            lines.append(f"  dangling link: {order_id}")
        for order_id in result.mismatched_links:
            lines.append(f"  mismatched link: {order_id}")
    return "\n".join(lines)
