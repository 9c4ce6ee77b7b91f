"""Scheduled link pool reconciliation."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from linkpool.db.session import create_engine_from_env
from linkpool.logic.reconcile import CycleReport, ReconciliationEngine, StalenessScheduler
from linkpool.pool.store import LinkPoolStore
from linkpool.scrape.client import ScrapeClient, Scraper

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = int(os.environ.get("CHECK_STOCK_LIMIT", 10))


def advance_on_failure_from_env() -> bool:
    return os.environ.get("ADVANCE_ON_FAILURE", "false").strip().lower() in {"1", "true", "yes"}


async def run_check_stock(
    limit: int | None = None,
    *,
    engine: Engine | None = None,
    scraper: Scraper | None = None,
    advance_on_failure: bool | None = None,
) -> CycleReport:
    load_dotenv()
    engine = engine or create_engine_from_env()
    store = LinkPoolStore(engine)
    scheduler = StalenessScheduler(store, batch_size=limit or DEFAULT_LIMIT)
    if advance_on_failure is None:
        advance_on_failure = advance_on_failure_from_env()

    client = None
    if scraper is None:
        client = scraper = ScrapeClient()
    try:
        reconciler = ReconciliationEngine(store, scraper, advance_on_failure=advance_on_failure)
        report = await reconciler.run_cycle(scheduler)
    finally:
        if client is not None:
            await client.close()

    for alert in report.alerts_ready:
        logger.info("Alert %s ready for %s (%s)", alert.id, alert.email, alert.product_url)
    return report


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Re-check the stalest links in the pool")
    parser.add_argument("--limit", "-n", type=int, default=DEFAULT_LIMIT, help="links to check this run")
    args = parser.parse_args(argv)
    if args.limit < 1:
        parser.error("--limit must be at least 1")

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        report = asyncio.run(run_check_stock(args.limit))
    except KeyError as exc:
        print(f"Missing environment variable: {exc}", file=sys.stderr)
        return 1
    print(report.as_dict())
    return 0


if __name__ == "__main__":
    sys.exit(main())
