"""Seed the database with demo products and build the pool from them."""

from __future__ import annotations

import sys

from dotenv import load_dotenv

from linkpool.db.migrate import run_migrations
from linkpool.db.session import create_engine_from_env
from linkpool.db.tables import products
from linkpool.jobs.backfill import backfill_link_pool
from linkpool.utils.dates import utc_now

DEMO_PRODUCTS = [
    {"id": "demo-1", "user_id": "alice", "url": "https://shop.example.com/p/blue-shirt", "title": "Blue Shirt", "price": 499.9, "currency": "TRY"},
    {"id": "demo-2", "user_id": "bob", "url": "https://shop.example.com/p/blue-shirt", "title": "Blue Shirt", "price": 499.9, "currency": "TRY"},
    {"id": "demo-3", "user_id": "alice", "url": "https://store.example.org/item/42", "title": "Desk Lamp", "price": 1250.0, "currency": "TRY"},
]


def main() -> None:
    load_dotenv()
    try:
        engine = create_engine_from_env()
    except KeyError as exc:
        print(f"Missing environment variable: {exc}", file=sys.stderr)
        sys.exit(1)
    run_migrations(engine)
    now = utc_now()
    with engine.begin() as conn:
        existing = {row[0] for row in conn.execute(products.select().with_only_columns(products.c.id))}
        rows = [
            {**item, "highest_price": item["price"], "in_stock": True, "created_at": now}
            for item in DEMO_PRODUCTS
            if item["id"] not in existing
        ]
        if rows:
            conn.execute(products.insert(), rows)
    report = backfill_link_pool(engine)
    print(f"Seed complete: {report.processed} products pooled")


if __name__ == "__main__":
    main()
