from datetime import timedelta

import pytest

from conftest import BASE_TIME, FakeScraper
from linkpool.logic import reconcile
from linkpool.logic.keys import derive_key
from linkpool.logic.pricing import ProductUpdate
from linkpool.logic.reconcile import ReconciliationEngine, StalenessScheduler
from linkpool.pool.models import PriceHistoryEntry

URL = "https://shop.example.com/p/1"
NOW = BASE_TIME + timedelta(hours=1)


def make_engine(store, scraper, **kwargs):
    return ReconciliationEngine(store, scraper, clock=lambda: NOW, **kwargs)


@pytest.mark.asyncio
async def test_fan_out_applies_drop_per_product(store, add_product):
    add_product("A", URL, price=100.0, highest_price=100.0)
    add_product("B", URL, price=150.0, highest_price=150.0, user_id="user-2")
    scraper = FakeScraper({URL: {"title": "Shirt", "price": 90, "inStock": True}})

    report = await make_engine(store, scraper).run_cycle(StalenessScheduler(store))

    a, b = store.get_product("A"), store.get_product("B")
    assert (a.price, a.highest_price, a.price_drop_percentage) == (90, 100, 10)
    assert (b.price, b.highest_price, b.price_drop_percentage) == (90, 150, 40)
    assert [e.price for e in store.price_history("A")] == [90]
    assert [e.price for e in store.price_history("B")] == [90]
    assert store.price_history("A")[0].currency == "TRY"
    assert report.updated_links == 1
    assert report.outcomes[0].products_updated == 2
    assert report.outcomes[0].history_entries == 2


@pytest.mark.asyncio
async def test_new_high_resets_drop(store, add_product):
    add_product("A", URL, price=80.0, highest_price=100.0, price_drop_percentage=20)
    scraper = FakeScraper({URL: {"title": "Shirt", "price": 120}})

    await make_engine(store, scraper).run_cycle(StalenessScheduler(store))

    product = store.get_product("A")
    assert product.highest_price == 120
    assert product.price_drop_percentage == 0


@pytest.mark.asyncio
async def test_return_to_highest_clears_drop(store, add_product):
    add_product("A", URL, price=90.0, highest_price=100.0, price_drop_percentage=10)
    scraper = FakeScraper({URL: {"title": "Shirt", "price": 100}})

    await make_engine(store, scraper).run_cycle(StalenessScheduler(store))

    product = store.get_product("A")
    assert (product.price, product.highest_price, product.price_drop_percentage) == (100, 100, 0)


@pytest.mark.asyncio
async def test_link_record_updated(store, add_product):
    add_product("A", URL, price=10.0)
    scraper = FakeScraper({URL: {"title": "New title", "price": 12.5, "image": "img.png", "currency": "EUR"}})

    await make_engine(store, scraper).run_cycle(StalenessScheduler(store))

    link = store.get_link(derive_key(URL))
    assert link.title == "New title"
    assert link.image == "img.png"
    assert link.price == 12.5
    assert link.currency == "EUR"
    # stock defaults to available when the scraper does not say
    assert link.in_stock is True
    assert link.last_checked == NOW
    product = store.get_product("A")
    assert product.in_stock is True
    assert product.last_stock_check == NOW


@pytest.mark.asyncio
async def test_small_price_change_writes_no_history(store, add_product):
    add_product("A", URL, price=100.0, highest_price=100.0)
    scraper = FakeScraper({URL: {"title": "Shirt", "price": 100.05}})

    await make_engine(store, scraper).run_cycle(StalenessScheduler(store))

    assert store.price_history("A") == []
    assert store.get_product("A").price == 100.05


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "canned",
    [
        {"error": "blocked"},
        {"title": "", "price": 0},
        {},
        RuntimeError("timeout"),
    ],
)
async def test_scrape_failure_mutates_nothing(store, add_product, add_link, canned):
    key = add_link(URL, minutes_ago=60)
    add_product("A", URL, price=100.0, highest_price=100.0)
    before = store.get_product("A")
    scraper = FakeScraper({URL: canned})

    report = await make_engine(store, scraper).run_cycle(StalenessScheduler(store))

    assert report.outcomes[0].status == reconcile.SCRAPE_FAILED
    assert store.get_product("A") == before
    assert store.get_link(key).last_checked == BASE_TIME - timedelta(minutes=60)
    assert store.price_history("A") == []


@pytest.mark.asyncio
async def test_scrape_failure_can_advance_last_checked(store, add_product, add_link):
    key = add_link(URL, minutes_ago=60)
    add_product("A", URL, price=100.0)
    before = store.get_product("A")
    scraper = FakeScraper({URL: {"error": "blocked"}})

    await make_engine(store, scraper, advance_on_failure=True).run_cycle(StalenessScheduler(store))

    assert store.get_link(key).last_checked == NOW
    assert store.get_product("A") == before


@pytest.mark.asyncio
async def test_missing_product_does_not_block_others(store, add_product, add_link):
    add_product("A", URL, price=100.0, highest_price=100.0)
    add_product("C", URL, price=100.0, highest_price=100.0)
    add_link(URL, product_ids=["B-deleted"])
    scraper = FakeScraper({URL: {"title": "Shirt", "price": 50}})

    report = await make_engine(store, scraper).run_cycle(StalenessScheduler(store))

    outcome = report.outcomes[0]
    assert outcome.status == reconcile.UPDATED
    assert outcome.products_updated == 2
    assert outcome.products_skipped == 1
    assert store.get_product("A").price == 50
    assert store.get_product("C").price == 50
    assert store.get_link(derive_key(URL)).price == 50


@pytest.mark.asyncio
async def test_failing_product_is_isolated(store, add_product, monkeypatch):
    add_product("A", URL, price=100.0)
    add_product("B", URL, price=100.0)
    real = reconcile.compute_product_update

    def flaky(product, *args):
        if product.id == "A":
            raise ValueError("corrupt product")
        return real(product, *args)

    monkeypatch.setattr(reconcile, "compute_product_update", flaky)
    scraper = FakeScraper({URL: {"title": "Shirt", "price": 70}})

    report = await make_engine(store, scraper).run_cycle(StalenessScheduler(store))

    assert report.outcomes[0].products_skipped == 1
    assert store.get_product("A").price == 100
    assert store.get_product("B").price == 70


@pytest.mark.asyncio
async def test_commit_failure_applies_nothing(store, add_product, add_link, monkeypatch):
    key = add_link(URL, minutes_ago=60)
    add_product("A", URL, price=100.0)

    def broken(product, new_price, in_stock, now):
        # a history row without a price violates the schema at commit time
        return ProductUpdate(
            product_id=product.id,
            fields={"price": new_price},
            history=PriceHistoryEntry(price=None, date="x", currency="TRY"),
        )

    monkeypatch.setattr(reconcile, "compute_product_update", broken)
    scraper = FakeScraper({URL: {"title": "Shirt", "price": 70}})

    report = await make_engine(store, scraper).run_cycle(StalenessScheduler(store))

    assert report.outcomes[0].status == reconcile.COMMIT_FAILED
    assert store.get_product("A").price == 100
    link = store.get_link(key)
    assert link.last_checked == BASE_TIME - timedelta(minutes=60)
    assert link.title == ""


@pytest.mark.asyncio
async def test_cycle_continues_after_failed_link(store, add_product, add_link):
    bad, good = "https://a.test/bad", "https://a.test/good"
    add_link(bad, minutes_ago=90)
    add_link(good, minutes_ago=30)
    add_product("G", good, price=10.0)
    scraper = FakeScraper({bad: RuntimeError("boom"), good: {"title": "ok", "price": 11}})

    report = await make_engine(store, scraper).run_cycle(StalenessScheduler(store))

    assert scraper.calls == [bad, good]
    assert report.checked_links == 2
    assert report.failed_links == 1
    assert report.updated_links == 1
    assert store.get_product("G").price == 11


@pytest.mark.asyncio
async def test_cycle_is_bounded_by_batch_size(store, add_link):
    urls = [f"https://a.test/{idx}" for idx in range(4)]
    for idx, url in enumerate(urls):
        add_link(url, minutes_ago=100 - idx)
    scraper = FakeScraper(default={"title": "t", "price": 1})

    report = await make_engine(store, scraper).run_cycle(StalenessScheduler(store, batch_size=3))

    assert scraper.calls == urls[:3]
    assert report.checked_links == 3


@pytest.mark.asyncio
async def test_in_stock_link_reports_pending_alerts(store, add_product, add_alert):
    add_product("A", URL, price=10.0)
    add_alert(URL, email="wants@example.com")
    scraper = FakeScraper({URL: {"title": "Shirt", "price": 10, "inStock": True}})

    report = await make_engine(store, scraper).run_cycle(StalenessScheduler(store))

    assert [a.email for a in report.alerts_ready] == ["wants@example.com"]
    assert report.as_dict()["alertsReady"] == 1


@pytest.mark.asyncio
async def test_out_of_stock_link_reports_no_alerts(store, add_product, add_alert):
    add_product("A", URL, price=10.0)
    add_alert(URL)
    scraper = FakeScraper({URL: {"title": "Shirt", "price": 10, "inStock": False}})

    report = await make_engine(store, scraper).run_cycle(StalenessScheduler(store))

    assert report.alerts_ready == []
    assert store.get_product("A").in_stock is False


def test_scheduler_rejects_empty_batches(store):
    with pytest.raises(ValueError):
        StalenessScheduler(store, batch_size=0)
