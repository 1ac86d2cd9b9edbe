#!/usr/bin/env python3
"""
Validate the address catalog and order linkage after a migration.

Usage:
    python scripts/validate_migration.py --db sqlite:///data/orders.db
"""

import argparse
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from addrmigrate.database import get_session
from addrmigrate.reconcile import format_reconciliation, reconcile


def main():
    parser = argparse.ArgumentParser(description="Validate migrated addresses")
    parser.add_argument("--db", default="sqlite:///data/orders.db",
                       help="SQLAlchemy database URL")

    args = parser.parse_args()

    session = get_session(args.db)
    try:
        result = reconcile(session)
    finally:
        session.close()

    print(format_reconciliation(result))
    sys.exit(0 if result.ok else 1)


if __name__ == "__main__":
    main()
