import argparse
import json
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path

from sqlalchemy import select

from . import __version__
from .config import MigrationConfig
from .database import Order, get_session, init_database
from .env import load_env
from .logger import get_logger
from .migration import BatchFailedError, Migration, format_report
from .reconcile import format_reconciliation, reconcile
from .resolver import HttpResolver, MockResolver, RetryingResolver
from .storage import AddressStore


def parse_timestamp(ts_str):
    """Parse ISO timestamp string, handle missing timestamps."""
    if not ts_str:
        return datetime.now()
    try:
        return datetime.fromisoformat(ts_str)
    except (ValueError, TypeError):
        return datetime.now()


def load_config(args: argparse.Namespace) -> MigrationConfig:
    return MigrationConfig.from_env().with_overrides(
        database_url=getattr(args, "db", None),
        batch_size=getattr(args, "batch_size", None),
        max_attempts=getattr(args, "max_attempts", None),
        resolver_url=getattr(args, "resolver_url", None),
    )


def build_resolver(config: MigrationConfig, logger) -> RetryingResolver:
    if config.resolver_url:
        base = HttpResolver(config.resolver_url, timeout=config.resolver_timeout, logger=logger)
    else:
        logger.warning("No resolver URL configured, using the deterministic mock resolver")
        base = MockResolver()
    return RetryingResolver(base, policy=config.retry_policy(), logger=logger)


def seed_orders(input_path: Path, database_url: str) -> dict:
    """
    Load legacy orders from a JSON file into the orders table.

    Accepts either a list of orders or {"orders": [...]}. Orders whose id
    already exists are skipped, so the file can be loaded repeatedly.
    """
    with input_path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    orders = data.get("orders", []) if isinstance(data, dict) else data

    init_database(database_url)
    session = get_session(database_url)

    inserted = 0
    skipped = 0
    try:
        existing = set(session.scalars(select(Order.id)).all())
        for item in orders:
            order_id = item.get("id")
            tenant_id = item.get("tenant_id")
            if not order_id or not tenant_id:
                print(f"Skipping order without id/tenant_id: {item}")
                skipped += 1
                continue
            if order_id in existing:
                skipped += 1
                continue
            session.add(Order(
                id=order_id,
                tenant_id=tenant_id,
                legacy_address_text=item.get("legacy_address_text"),
                created_at=parse_timestamp(item.get("created_at")),
            ))
            existing.add(order_id)
            inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    return {"inserted": inserted, "skipped": skipped}


def cmd_init_db(args: argparse.Namespace) -> None:
    config = load_config(args)
    init_database(config.database_url)
    print(f"Database ready: {config.database_url}")


def cmd_seed(args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    config = load_config(args)
    outcome = seed_orders(input_path, config.database_url)
    print(f"Inserted: {outcome['inserted']}")
    print(f"Skipped:  {outcome['skipped']}")


def cmd_migrate(args: argparse.Namespace) -> None:
    config = load_config(args)
    logger = get_logger(level=config.log_level)

    init_database(config.database_url)
    session = get_session(config.database_url)

    try:
        stop_event = threading.Event()
        migration = Migration(
            store=AddressStore(session),
            resolver=build_resolver(config, logger),
            batch_size=config.batch_size,
            batch_pause=config.batch_pause,
            stop_event=stop_event,
            logger=logger,
        )

        # Ctrl-C stops the run after the current batch commits
        previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: stop_event.set())
        try:
            stats = migration.run(dry_run=args.dry_run)
        except BatchFailedError as e:
            print(format_report(e.stats))
            print(f"Fatal migration error: {e}", file=sys.stderr)
            print(
                f"{e.stats.batches} earlier batch(es) stay committed. "
                f"Rerun to pick up the remaining orders.",
                file=sys.stderr,
            )
            raise SystemExit(1)
        finally:
            signal.signal(signal.SIGINT, previous_handler)

        print(format_report(stats))
        if args.json:
            print(json.dumps(stats.to_dict(), indent=2))
        if not args.dry_run:
            result = reconcile(session, stats)
            print(format_reconciliation(result))
            if not result.ok:
                raise SystemExit(2)
    finally:
        session.close()


def cmd_reconcile(args: argparse.Namespace) -> None:
    config = load_config(args)
    session = get_session(config.database_url)
    try:
        result = reconcile(session)
    finally:
        session.close()
    print(format_reconciliation(result))
    raise SystemExit(0 if result.ok else 1)


def main():
    # Load .env if present (ADDRMIGRATE_DATABASE_URL, ADDRMIGRATE_RESOLVER_URL, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="addrmigrate", description="Legacy delivery address migration")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("init-db", help="Create the orders and addresses tables")
    ini.add_argument("--db", help="SQLAlchemy database URL (or set ADDRMIGRATE_DATABASE_URL)")
    ini.set_defaults(func=cmd_init_db)

    sed = subparsers.add_parser("seed", help="Load legacy orders from a JSON file")
    sed.add_argument("--input", required=True, help="Path to orders JSON")
    sed.add_argument("--db", help="SQLAlchemy database URL (or set ADDRMIGRATE_DATABASE_URL)")
    sed.set_defaults(func=cmd_seed)

    mig = subparsers.add_parser("migrate", help="Resolve, deduplicate and link legacy addresses")
    mig.add_argument("--dry-run", action="store_true", help="Compute everything, write nothing")
    mig.add_argument("--batch-size", type=int, help="Orders per transaction (default 50)")
    mig.add_argument("--max-attempts", type=int, help="Resolver attempts per order (default 3)")
    mig.add_argument("--resolver-url", help="Resolution service base URL (default: mock resolver)")
    mig.add_argument("--db", help="SQLAlchemy database URL (or set ADDRMIGRATE_DATABASE_URL)")
    mig.add_argument("--json", action="store_true", help="Also print the stats as JSON")
    mig.set_defaults(func=cmd_migrate)

    rec = subparsers.add_parser("reconcile", help="Check catalog invariants and order linkage")
    rec.add_argument("--db", help="SQLAlchemy database URL (or set ADDRMIGRATE_DATABASE_URL)")
    rec.set_defaults(func=cmd_reconcile)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
