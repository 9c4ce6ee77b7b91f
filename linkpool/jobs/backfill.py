"""Build the link pool from existing products.

Safe to run again: product ids are added to each link's set with a union and
scalar fields are merged, so the last product seen for a URL decides the
link's title and image.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from linkpool.db.session import create_engine_from_env
from linkpool.logic.keys import derive_key, is_trackable_url
from linkpool.logic.pricing import DEFAULT_CURRENCY
from linkpool.pool.models import Product
from linkpool.pool.store import LinkPoolStore
from linkpool.utils.dates import utc_now

logger = logging.getLogger(__name__)

MIGRATION_BATCH_SIZE = int(os.environ.get("MIGRATION_BATCH_SIZE", 500))


@dataclass(slots=True)
class BackfillReport:
    processed: int = 0
    skipped: int = 0
    batches: int = 0


def link_fields_for(product: Product) -> dict[str, object]:
    return {
        "url": product.url.strip(),
        "title": product.title or "",
        "image": product.image or "",
        "description": product.description or "",
        "source": product.source or "unknown",
        "price": product.price or 0.0,
        "currency": product.currency or DEFAULT_CURRENCY,
        "in_stock": True if product.in_stock is None else product.in_stock,
        "last_checked": product.last_stock_check or product.created_at or utc_now(),
    }


def backfill_link_pool(engine: Engine, *, batch_size: int = MIGRATION_BATCH_SIZE) -> BackfillReport:
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    store = LinkPoolStore(engine)
    report = BackfillReport()
    batch = store.batch()

    for product in store.iter_products():
        if not is_trackable_url(product.url):
            logger.info("Skipping invalid/mock product: %s", product.id)
            report.skipped += 1
            continue
        batch.upsert_link(derive_key(product.url), link_fields_for(product), product_ids=[product.id])
        report.processed += 1

        if len(batch) >= batch_size:
            count = batch.commit()
            report.batches += 1
            logger.info("Committed batch of %s operations", count)
            batch = store.batch()

    if len(batch):
        count = batch.commit()
        report.batches += 1
        logger.info("Committed final batch of %s operations", count)

    logger.info("Backfill complete: %s products processed, %s skipped", report.processed, report.skipped)
    return report


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        engine = create_engine_from_env()
    except KeyError as exc:
        print(f"Missing environment variable: {exc}", file=sys.stderr)
        sys.exit(1)
    try:
        backfill_link_pool(engine)
    except SQLAlchemyError as exc:
        print(f"Backfill failed: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
