from datetime import datetime, timedelta

import pytest

from linkpool.db.migrate import run_migrations
from linkpool.db.session import create_database_engine
from linkpool.db.tables import stock_alerts
from linkpool.logic.keys import derive_key
from linkpool.pool.models import Product
from linkpool.pool.store import LinkPoolStore
from linkpool.scrape.models import ScrapeResult

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0)


class FakeScraper:
    """Returns canned results per URL and records every call."""

    def __init__(self, results=None, default=None):
        self.results = dict(results or {})
        self.default = default
        self.calls = []

    async def scrape(self, url):
        self.calls.append(url)
        result = self.results.get(url, self.default)
        if isinstance(result, Exception):
            raise result
        if result is None:
            return ScrapeResult.failure(url, "no canned result")
        if isinstance(result, dict):
            return ScrapeResult.from_payload(url, result)
        return result


@pytest.fixture()
def engine():
    engine = create_database_engine("sqlite:///:memory:")
    run_migrations(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def store(engine):
    return LinkPoolStore(engine)


@pytest.fixture()
def add_product(store):
    def _add(product_id, url, *, price=100.0, highest_price=None, user_id="user-1", currency="TRY", **extra):
        product = Product(
            id=product_id,
            user_id=user_id,
            url=url,
            price=price,
            highest_price=highest_price,
            currency=currency,
            created_at=BASE_TIME,
            **extra,
        )
        store.track_product(product)
        return product

    return _add


@pytest.fixture()
def add_link(store):
    def _add(url, *, product_ids=(), minutes_ago=None, **fields):
        key = derive_key(url)
        values = {"url": url, **fields}
        if minutes_ago is not None:
            values["last_checked"] = BASE_TIME - timedelta(minutes=minutes_ago)
        store.upsert_link(key, values, product_ids=product_ids)
        return key

    return _add


@pytest.fixture()
def add_alert(engine):
    def _add(product_url, email="someone@example.com", status="pending"):
        with engine.begin() as conn:
            conn.execute(
                stock_alerts.insert().values(
                    product_url=product_url, email=email, user_id="user-1", status=status
                )
            )

    return _add
