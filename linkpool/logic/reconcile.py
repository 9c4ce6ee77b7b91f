"""Scheduling and reconciliation of pooled links.

One cycle picks the least recently checked links, scrapes each once and
writes the link plus every product derived from it in a single batch. Links
are processed one after another so outbound scraping stays sequential.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from linkpool.logic.pricing import compute_product_update
from linkpool.pool.models import MonitoredLink, PendingAlert
from linkpool.pool.store import LinkPoolStore, WriteBatch
from linkpool.scrape.client import Scraper
from linkpool.scrape.models import ScrapeResult
from linkpool.utils.dates import utc_now

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5

UPDATED = "updated"
SCRAPE_FAILED = "scrape_failed"
COMMIT_FAILED = "commit_failed"
SKIPPED = "skipped"


@dataclass(slots=True)
class LinkOutcome:
    hash: str
    url: str
    status: str
    products_updated: int = 0
    products_skipped: int = 0
    history_entries: int = 0
    alerts_ready: list[PendingAlert] = field(default_factory=list)
    error: str | None = None


@dataclass(slots=True)
class CycleReport:
    outcomes: list[LinkOutcome] = field(default_factory=list)

    @property
    def checked_links(self) -> int:
        return sum(1 for o in self.outcomes if o.status != SKIPPED)

    @property
    def updated_links(self) -> int:
        return sum(1 for o in self.outcomes if o.status == UPDATED)

    @property
    def failed_links(self) -> int:
        return sum(1 for o in self.outcomes if o.status in {SCRAPE_FAILED, COMMIT_FAILED})

    @property
    def alerts_ready(self) -> list[PendingAlert]:
        return [alert for o in self.outcomes for alert in o.alerts_ready]

    def as_dict(self) -> dict[str, Any]:
        return {
            "checkedLinks": self.checked_links,
            "updatedLinks": self.updated_links,
            "failedLinks": self.failed_links,
            "alertsReady": len(self.alerts_ready),
        }


class StalenessScheduler:
    """Chooses which links are due, oldest check first, bounded per cycle."""

    def __init__(self, store: LinkPoolStore, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.batch_size = batch_size

    def due_links(self) -> list[MonitoredLink]:
        return self.store.get_due_links(self.batch_size)


class ReconciliationEngine:
    def __init__(
        self,
        store: LinkPoolStore,
        scraper: Scraper,
        *,
        advance_on_failure: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.scraper = scraper
        self.advance_on_failure = advance_on_failure
        self.clock = clock

    async def run_cycle(self, scheduler: StalenessScheduler) -> CycleReport:
        report = CycleReport()
        alerts = await self._in_executor(self.store.pending_alerts_by_key)
        links = await self._in_executor(scheduler.due_links)
        logger.info("Found %s links to update", len(links))
        for link in links:
            if not link.url:
                report.outcomes.append(LinkOutcome(hash=link.hash, url="", status=SKIPPED))
                continue
            try:
                outcome = await self.reconcile_link(link, pending_alerts=alerts)
            except Exception as exc:
                logger.exception("Error processing %s", link.url)
                outcome = LinkOutcome(hash=link.hash, url=link.url, status=COMMIT_FAILED, error=str(exc))
            report.outcomes.append(outcome)
        logger.info(
            "Cycle finished: %s checked, %s updated, %s failed",
            report.checked_links,
            report.updated_links,
            report.failed_links,
        )
        return report

    async def reconcile_link(
        self,
        link: MonitoredLink,
        *,
        pending_alerts: Mapping[str, list[PendingAlert]] | None = None,
    ) -> LinkOutcome:
        outcome = LinkOutcome(hash=link.hash, url=link.url, status=UPDATED)
        logger.info("Scraping %s", link.url)
        try:
            result = await self.scraper.scrape(link.url)
        except Exception as exc:
            logger.exception("Scrape raised for %s", link.url)
            result = ScrapeResult.failure(link.url, str(exc) or exc.__class__.__name__)

        if not result.ok:
            outcome.status = SCRAPE_FAILED
            outcome.error = result.error or "scrape returned no title or price"
            logger.warning("Scrape failed for %s: %s", link.url, outcome.error)
            if self.advance_on_failure:
                await self._in_executor(self._mark_checked, link)
            return outcome

        try:
            batch = await self._in_executor(self._stage, link, result, outcome)
            await self._in_executor(batch.commit)
        except SQLAlchemyError as exc:
            logger.exception("Batch commit failed for %s", link.url)
            outcome.status = COMMIT_FAILED
            outcome.error = str(exc)
            outcome.products_updated = 0
            outcome.history_entries = 0
            return outcome

        in_stock = True if result.in_stock is None else result.in_stock
        if in_stock and pending_alerts:
            outcome.alerts_ready = list(pending_alerts.get(link.hash, []))
        logger.info(
            "Updated %s: %s products, %s price changes",
            link.url,
            outcome.products_updated,
            outcome.history_entries,
        )
        return outcome

    def _stage(self, link: MonitoredLink, result: ScrapeResult, outcome: LinkOutcome) -> WriteBatch:
        now = self.clock()
        new_price = result.numeric_price
        in_stock = True if result.in_stock is None else result.in_stock
        batch = self.store.batch()
        link_fields: dict[str, Any] = {
            "price": new_price,
            "in_stock": in_stock,
            "title": result.title or "",
            "image": result.image or "",
            "last_checked": now,
        }
        if result.currency:
            link_fields["currency"] = result.currency
        batch.update_link(link.hash, link_fields)

        product_ids = self.store.iter_link_products(link.hash)
        for product_id in product_ids:
            try:
                product = self.store.get_product(product_id)
                if product is None:
                    logger.warning("Product %s referenced by %s no longer exists", product_id, link.hash)
                    outcome.products_skipped += 1
                    continue
                update = compute_product_update(product, new_price, in_stock, now)
                batch.update_product(product_id, update.fields)
                outcome.products_updated += 1
                if update.history is not None:
                    batch.add_price_history(product_id, update.history)
                    outcome.history_entries += 1
                    logger.info("Price changed for product %s: %s -> %s", product_id, product.price, new_price)
            except Exception:
                logger.exception("Product update failed for %s", product_id)
                outcome.products_skipped += 1
        return batch

    def _mark_checked(self, link: MonitoredLink) -> None:
        batch = self.store.batch()
        batch.update_link(link.hash, {"last_checked": self.clock()})
        try:
            batch.commit()
        except SQLAlchemyError:
            logger.exception("Could not record failed check for %s", link.url)

    async def _in_executor(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))
