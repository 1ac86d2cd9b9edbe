#!/usr/bin/env python3
"""
Load legacy orders from a JSON file into the orders table.

Usage:
    python scripts/seed_legacy_orders.py --json data/orders.json --db sqlite:///data/orders.db
"""

import argparse
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from addrmigrate.app import seed_orders


def main():
    parser = argparse.ArgumentParser(description="Seed legacy orders from JSON")
    parser.add_argument("--json", type=Path, default=Path("data/orders.json"),
                       help="Path to orders JSON file")
    parser.add_argument("--db", default="sqlite:///data/orders.db",
                       help="SQLAlchemy database URL")

    args = parser.parse_args()

    if not args.json.exists():
        print(f"JSON file not found: {args.json}")
        sys.exit(1)

    outcome = seed_orders(args.json, args.db)
    print(f"Inserted: {outcome['inserted']}")
    print(f"Skipped:  {outcome['skipped']}")


if __name__ == "__main__":
    main()
