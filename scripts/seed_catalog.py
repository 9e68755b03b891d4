#!/usr/bin/env python3
"""
Seed the benefit catalog (and optionally subscribers) from a JSON file.

Usage:
    python scripts/seed_catalog.py catalog.json
    python scripts/seed_catalog.py catalog.json --database-url sqlite:///benefits.db

File format:
    {
      "plans": [
        {"plan_id": "basic", "name": "Basic Care",
         "stripe_product_id": "prod_...", "stripe_price_id": "price_...",
         "items": [{"name": "dental", "limit": 2}]}
      ],
      "subscribers": [{"subscriber_id": "u1", "points": 50}]
    }

Safe to run repeatedly: plans are upserted, existing subscribers are kept.
"""
import argparse
import sys

from benefits.core.database import create_all_tables, get_db_session, init_engine
from benefits.features.catalog.service import load_catalog_file, upsert_plan
from benefits.features.subscribers.service import ensure_subscriber


def seed(path: str) -> dict:
    data = load_catalog_file(path)
    counts = {"plans": 0, "subscribers": 0}
    with get_db_session() as session:
        for entry in data["plans"]:
            upsert_plan(
                session,
                entry["plan_id"],
                entry["name"],
                entry.get("items", []),
                stripe_product_id=entry.get("stripe_product_id"),
                stripe_price_id=entry.get("stripe_price_id"),
            )
            counts["plans"] += 1
        for entry in data["subscribers"]:
            ensure_subscriber(session, entry["subscriber_id"], points=entry.get("points", 0))
            counts["subscribers"] += 1
    return counts


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Seed plans and subscribers")
    parser.add_argument("path", help="Path to catalog JSON file")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    args = parser.parse_args(argv)

    init_engine(args.database_url)
    create_all_tables()
    counts = seed(args.path)
    print(f"Seeded {counts['plans']} plan(s), {counts['subscribers']} subscriber(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
