# tests/test_price_engine.py

"""Tests for cross-retailer aggregation, caching and persistence."""

import shutil
import tempfile
import threading
import unittest
from pathlib import Path

from src.adapters.base_adapter import Capability
from src.adapters.registry import AdapterRegistry
from src.config.settings import Settings
from src.models.price_quote import PriceQuote, QuoteSource
from src.models.product import Product
from src.models.retailer import Retailer
from src.services.errors import ProductNotFound, RetailerNotFound, SourceError
from src.services.health_tracker import RetailerHealthTracker
from src.services.price_engine import PriceEngine
from src.services.source_resolver import SourceResolver
from src.storage.cache_store import CacheStore, prices_key
from src.storage.price_store import PriceStore


class FakeAdapter:
    """Stub adapter returning canned prices per retailer id."""

    def __init__(
        self,
        name: str,
        capability: Capability,
        prices: dict[str, float] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.adapter_name = name
        self.capability = capability
        self.prices = prices or {}
        self.error = error
        self.calls = 0
        self._lock = threading.Lock()

    def get_price(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        with self._lock:
            self.calls += 1
        if self.error is not None:
            raise self.error
        price = self.prices.get(retailer.id)
        if price is None:
            return None
        return PriceQuote(
            product_id=product.id,
            retailer_id=retailer.id,
            price=price,
            product_url=product_url or "",
            source=(
                QuoteSource.API
                if self.capability is Capability.FETCH_BY_API
                else QuoteSource.SCRAPER
            ),
        )


class SlowAdapter(FakeAdapter):
    """Tracks how many calls overlap in time."""

    def __init__(self) -> None:
        super().__init__("slow", Capability.FETCH_BY_API)
        self.in_flight = 0
        self.max_in_flight = 0

    def get_price(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        with self._lock:
            self.calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        threading.Event().wait(0.05)
        with self._lock:
            self.in_flight -= 1
        return PriceQuote(
            product_id=product.id, retailer_id=retailer.id, price=10.0,
        )


class _EngineTestCase(unittest.IsolatedAsyncioTestCase):
    """Temp-file store seeded with product p1 and three retailers.

    amazon answers by API at 79.99, walmart's API raises, and ebay is
    scrape-only at 84.50.
    """

    def setUp(self) -> None:
        self.tmp_dir = tempfile.mkdtemp()
        self.store = PriceStore(db_path=Path(self.tmp_dir) / "prices.db")
        self.store.upsert_product(
            Product(id="p1", name="WH-1000XM5", brand="Sony")
        )
        self.store.upsert_retailer(
            Retailer(id="amazon", name="Amazon", has_api=True)
        )
        self.store.upsert_retailer(
            Retailer(id="walmart", name="Walmart", has_api=True)
        )
        self.store.upsert_retailer(
            Retailer(
                id="ebay",
                name="eBay",
                domain="ebay.com",
                has_scraper=True,
                selectors={"price": ".x-price"},
            )
        )

        self.amazon = FakeAdapter(
            "amazon", Capability.FETCH_BY_API, {"amazon": 79.99},
        )
        self.walmart = FakeAdapter(
            "walmart", Capability.FETCH_BY_API, error=SourceError("HTTP 500"),
        )
        self.html = FakeAdapter(
            "html", Capability.SCRAPE_BY_HTML, {"ebay": 84.50},
        )
        self.settings = Settings()
        self.cache = CacheStore(self.settings)
        self.tracker = RetailerHealthTracker()
        self.engine = self._engine()

    def tearDown(self) -> None:
        self.store.close()
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def _engine(self) -> PriceEngine:
        registry = AdapterRegistry(
            {"amazon": self.amazon, "walmart": self.walmart},  # type: ignore[dict-item]
            [self.html],  # type: ignore[list-item]
        )
        resolver = SourceResolver(registry, self.tracker)
        return PriceEngine(self.store, resolver, self.cache, self.settings)

    def _total_calls(self) -> int:
        return self.amazon.calls + self.walmart.calls + self.html.calls


class TestGetComparison(_EngineTestCase):

    async def test_partial_failure_scenario(self) -> None:
        """Two of three retailers answer; the failure is contained."""
        result = await self.engine.get_comparison("p1")

        self.assertEqual(len(result.prices), 2)
        self.assertEqual(result.total_retailers, 2)
        assert result.lowest_price is not None
        assert result.highest_price is not None
        self.assertEqual(result.lowest_price.retailer_id, "amazon")
        self.assertEqual(result.lowest_price.price, 79.99)
        self.assertEqual(result.highest_price.retailer_id, "ebay")
        self.assertEqual(result.highest_price.price, 84.50)
        self.assertAlmostEqual(result.average_price or 0.0, 82.245)
        self.assertEqual(len(self.store.get_price_history("p1")), 2)

    async def test_quotes_persisted(self) -> None:
        await self.engine.get_comparison("p1")
        quotes = self.store.get_quotes_for_product("p1")
        self.assertEqual(
            [(q.retailer_id, q.price) for q in quotes],
            [("amazon", 79.99), ("ebay", 84.50)],
        )
        self.assertIsNone(self.store.get_quote("p1", "walmart"))

    async def test_second_call_served_from_cache(self) -> None:
        first = await self.engine.get_comparison("p1")
        calls = self._total_calls()
        second = await self.engine.get_comparison("p1")
        self.assertEqual(self._total_calls(), calls)
        self.assertEqual(second.total_retailers, first.total_retailers)
        self.assertEqual(second.average_price, first.average_price)
        self.assertEqual(len(self.store.get_price_history("p1")), 2)

    async def test_cache_file_serves_next_engine(self) -> None:
        """A later run sharing the cache file skips every adapter."""
        cache_path = Path(self.tmp_dir) / "cache.db"
        self.cache = CacheStore(self.settings, cache_path)
        first = await self._engine().get_comparison("p1")
        self.cache.close()
        calls = self._total_calls()

        self.cache = CacheStore(self.settings, cache_path)
        try:
            second = await self._engine().get_comparison("p1")
        finally:
            self.cache.close()
        self.assertEqual(self._total_calls(), calls)
        self.assertEqual(second.total_retailers, first.total_retailers)
        self.assertEqual(len(self.store.get_price_history("p1")), 2)

    async def test_empty_result_not_cached(self) -> None:
        self.amazon.error = SourceError("down")
        self.html.prices = {}
        result = await self.engine.get_comparison("p1")
        self.assertEqual(result.prices, [])
        self.assertIsNone(result.average_price)
        self.assertIsNone(self.cache.get(prices_key("p1")))

        calls = self._total_calls()
        await self.engine.get_comparison("p1")
        self.assertGreater(self._total_calls(), calls)
        self.assertEqual(self.store.get_price_history("p1"), [])

    async def test_unknown_product_raises(self) -> None:
        with self.assertRaises(ProductNotFound):
            await self.engine.get_comparison("nope")
        self.assertEqual(self._total_calls(), 0)

    async def test_corrupt_cache_entry_recomputed(self) -> None:
        self.cache.set(prices_key("p1"), {"garbage": True}, 600)
        result = await self.engine.get_comparison("p1")
        self.assertEqual(result.total_retailers, 2)
        self.assertGreater(self._total_calls(), 0)

    async def test_each_refresh_appends_history(self) -> None:
        """N uncached comparisons leave N history rows per pair."""
        cycles = 3
        for _ in range(cycles):
            await self.engine.get_comparison("p1")
            self.engine.invalidate("p1")
        history = self.store.get_price_history("p1", "amazon")
        self.assertEqual(len(history), cycles)
        self.assertEqual(self.store.counts()["quotes"], 2)

    async def test_inactive_retailer_skipped(self) -> None:
        self.store.upsert_retailer(
            Retailer(id="amazon", name="Amazon", has_api=True, is_active=False)
        )
        result = await self.engine.get_comparison("p1")
        self.assertEqual(
            [q.retailer_id for q in result.prices], ["ebay"]
        )
        self.assertEqual(self.amazon.calls, 0)

    async def test_fan_out_is_bounded(self) -> None:
        slow = SlowAdapter()
        for idx in range(6):
            self.store.upsert_retailer(
                Retailer(id=f"r{idx}", name="Slow", has_api=True)
            )
        self.settings.FANOUT_CONCURRENCY = 2
        registry = AdapterRegistry({"slow": slow})  # type: ignore[dict-item]
        engine = PriceEngine(
            self.store,
            SourceResolver(registry, self.tracker),
            CacheStore(self.settings),
            self.settings,
        )
        result = await engine.get_comparison("p1")
        self.assertEqual(slow.calls, 6)
        self.assertEqual(result.total_retailers, 6)
        self.assertLessEqual(slow.max_in_flight, 2)

    async def test_health_recorded_per_attempt(self) -> None:
        await self.engine.get_comparison("p1")
        self.assertEqual(self.tracker.snapshot("walmart").errors, 1)
        self.assertEqual(self.tracker.snapshot("amazon").successes, 1)
        self.assertEqual(self.tracker.snapshot("ebay").successes, 1)


class TestSingleRetailerRefresh(_EngineTestCase):

    async def test_update_product_price_invalidates(self) -> None:
        await self.engine.get_comparison("p1")
        self.amazon.prices["amazon"] = 74.99
        quote = await self.engine.update_product_price("p1", "amazon")
        assert quote is not None
        self.assertEqual(quote.price, 74.99)
        self.assertIsNone(self.cache.get(prices_key("p1")))

        result = await self.engine.get_comparison("p1")
        assert result.lowest_price is not None
        self.assertEqual(result.lowest_price.price, 74.99)

    async def test_update_without_result_persists_nothing(self) -> None:
        quote = await self.engine.update_product_price("p1", "walmart")
        self.assertIsNone(quote)
        self.assertEqual(self.store.get_price_history("p1"), [])

    async def test_update_unknown_retailer(self) -> None:
        with self.assertRaises(RetailerNotFound):
            await self.engine.update_product_price("p1", "target")

    async def test_scrape_one_uses_chain_and_url(self) -> None:
        url = "https://ebay.com/itm/42"
        quote = await self.engine.scrape_one("ebay", url, "p1")
        assert quote is not None
        self.assertEqual(quote.price, 84.50)
        self.assertEqual(quote.product_url, url)
        self.assertEqual(self.amazon.calls, 0)
        stored = self.store.get_quote("p1", "ebay")
        assert stored is not None
        self.assertEqual(stored.product_url, url)

    async def test_scrape_one_invalidates_cache(self) -> None:
        await self.engine.get_comparison("p1")
        await self.engine.scrape_one("ebay", "https://ebay.com/itm/42", "p1")
        self.assertIsNone(self.cache.get(prices_key("p1")))

    async def test_scrape_one_unknown_product(self) -> None:
        with self.assertRaises(ProductNotFound):
            await self.engine.scrape_one("ebay", "https://x", "nope")


class TestHistoryAndStats(_EngineTestCase):

    async def test_price_history_window(self) -> None:
        await self.engine.get_comparison("p1")
        rows = await self.engine.get_price_history("p1", "amazon", days=7)
        self.assertEqual([r.price for r in rows], [79.99])

    async def test_trend_summary(self) -> None:
        await self.engine.get_comparison("p1")
        summary = await self.engine.get_trend_summary("p1", "ebay")
        assert summary is not None
        self.assertEqual(summary["latest"], 84.50)

    async def test_engine_stats(self) -> None:
        await self.engine.get_comparison("p1")
        stats = await self.engine.get_engine_stats()
        self.assertEqual(stats["products"], 1)
        self.assertEqual(stats["active_retailers"], 3)
        self.assertEqual(stats["history"], 2)
        self.assertEqual(stats["attempts"], 3)
        self.assertAlmostEqual(stats["success_rate"], 2 / 3)
        self.assertIn("cache", stats)
        self.assertIn("timestamp", stats)


if __name__ == "__main__":
    unittest.main()
