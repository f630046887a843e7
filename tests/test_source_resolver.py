# tests/test_source_resolver.py

"""Tests for API-first source resolution and the scraping fallback."""

import unittest

from src.adapters.base_adapter import Capability
from src.adapters.registry import AdapterRegistry
from src.models.price_quote import PriceQuote, QuoteSource
from src.models.product import Product
from src.models.retailer import Retailer
from src.services.errors import SourceError, SourceUnavailable
from src.services.health_tracker import RetailerHealthTracker
from src.services.source_resolver import SourceResolver

PRODUCT = Product(id="p1", name="Headphones", brand="Sony")


class FakeAdapter:
    """Stub adapter returning a canned price or raising."""

    def __init__(
        self,
        name: str,
        capability: Capability,
        price: float | None = None,
        error: Exception | None = None,
    ) -> None:
        self.adapter_name = name
        self.capability = capability
        self.price = price
        self.error = error
        self.calls: list[str | None] = []

    def get_price(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        self.calls.append(product_url)
        if self.error is not None:
            raise self.error
        if self.price is None:
            return None
        return PriceQuote(
            product_id="",
            retailer_id="",
            price=self.price,
            source=(
                QuoteSource.API
                if self.capability is Capability.FETCH_BY_API
                else QuoteSource.SCRAPER
            ),
        )


def _api(price: float | None = None, error: Exception | None = None) -> FakeAdapter:
    return FakeAdapter("api", Capability.FETCH_BY_API, price, error)


def _scraper(
    name: str,
    capability: Capability,
    price: float | None = None,
    error: Exception | None = None,
) -> FakeAdapter:
    return FakeAdapter(name, capability, price, error)


class TestSourceResolver(unittest.TestCase):

    def setUp(self) -> None:
        self.tracker = RetailerHealthTracker()

    def _resolver(
        self,
        api: FakeAdapter | None = None,
        scrapers: list[FakeAdapter] | None = None,
    ) -> SourceResolver:
        registry = AdapterRegistry(
            {"amazon": api} if api else {},  # type: ignore[dict-item]
            scrapers or [],  # type: ignore[arg-type]
        )
        return SourceResolver(registry, self.tracker)

    def _retailer(self, has_api: bool, has_scraper: bool) -> Retailer:
        return Retailer(
            id="r-amazon",
            name="Amazon",
            domain="amazon.com",
            has_api=has_api,
            has_scraper=has_scraper,
        )

    def test_api_hit_skips_scrapers(self) -> None:
        crawler = _scraper("crawler", Capability.SCRAPE_BY_MANAGED_CRAWLER, 1.0)
        resolver = self._resolver(_api(79.99), [crawler])
        quote = resolver.resolve(PRODUCT, self._retailer(True, True))
        assert quote is not None
        self.assertEqual(quote.price, 79.99)
        self.assertEqual(crawler.calls, [])

    def test_quote_stamped_with_ids(self) -> None:
        resolver = self._resolver(_api(79.99))
        quote = resolver.resolve(PRODUCT, self._retailer(True, False))
        assert quote is not None
        self.assertEqual(quote.product_id, "p1")
        self.assertEqual(quote.retailer_id, "r-amazon")

    def test_api_failure_falls_back_to_scraping(self) -> None:
        html = _scraper("html", Capability.SCRAPE_BY_HTML, 84.50)
        resolver = self._resolver(_api(error=SourceError("503")), [html])
        quote = resolver.resolve(PRODUCT, self._retailer(True, True))
        assert quote is not None
        self.assertEqual(quote.price, 84.50)
        self.assertIs(quote.source, QuoteSource.SCRAPER)

    def test_api_failure_without_scraper_is_none(self) -> None:
        resolver = self._resolver(_api(error=SourceError("503")))
        self.assertIsNone(
            resolver.resolve(PRODUCT, self._retailer(True, False))
        )

    def test_unexpected_exception_is_contained(self) -> None:
        resolver = self._resolver(_api(error=KeyError("Offers")))
        with self.assertLogs("price_engine.resolver", level="ERROR"):
            quote = resolver.resolve(PRODUCT, self._retailer(True, False))
        self.assertIsNone(quote)

    def test_has_api_false_never_calls_api(self) -> None:
        api = _api(79.99)
        html = _scraper("html", Capability.SCRAPE_BY_HTML, 84.50)
        resolver = self._resolver(api, [html])
        quote = resolver.resolve(PRODUCT, self._retailer(False, True))
        assert quote is not None
        self.assertEqual(api.calls, [])
        self.assertEqual(quote.price, 84.50)

    def test_no_capabilities_is_none(self) -> None:
        api = _api(79.99)
        resolver = self._resolver(api)
        self.assertIsNone(
            resolver.resolve(PRODUCT, self._retailer(False, False))
        )
        self.assertEqual(api.calls, [])

    def test_missing_api_adapter_falls_through(self) -> None:
        html = _scraper("html", Capability.SCRAPE_BY_HTML, 84.50)
        resolver = self._resolver(None, [html])
        quote = resolver.resolve(PRODUCT, self._retailer(True, True))
        assert quote is not None
        self.assertEqual(quote.price, 84.50)

    def test_scraping_chain_first_hit_wins(self) -> None:
        crawler = _scraper(
            "crawler",
            Capability.SCRAPE_BY_MANAGED_CRAWLER,
            error=SourceUnavailable("no token"),
        )
        browser = _scraper(
            "browser", Capability.SCRAPE_BY_HEADLESS_BROWSER, None,
        )
        html = _scraper("html", Capability.SCRAPE_BY_HTML, 84.50)
        later = _scraper("html-2", Capability.SCRAPE_BY_HTML, 1.0)
        resolver = self._resolver(None, [html, later, browser, crawler])
        quote = resolver.scrape(
            PRODUCT, self._retailer(False, True), "https://amazon.com/dp/X",
        )
        assert quote is not None
        self.assertEqual(quote.price, 84.50)
        self.assertEqual(crawler.calls, ["https://amazon.com/dp/X"])
        self.assertEqual(browser.calls, ["https://amazon.com/dp/X"])
        self.assertEqual(later.calls, [])

    def test_chain_exhausted_is_none(self) -> None:
        html = _scraper("html", Capability.SCRAPE_BY_HTML, None)
        resolver = self._resolver(None, [html])
        self.assertIsNone(
            resolver.scrape(PRODUCT, self._retailer(False, True))
        )


class TestHealthRecording(unittest.TestCase):
    """Every real attempt lands in the tracker; skips do not."""

    def setUp(self) -> None:
        self.tracker = RetailerHealthTracker()
        self.retailer = Retailer(
            id="r1", name="Amazon", has_api=True, has_scraper=True,
        )

    def _resolve(self, api: FakeAdapter, scrapers: list[FakeAdapter]) -> None:
        registry = AdapterRegistry(
            {"amazon": api},  # type: ignore[dict-item]
            scrapers,  # type: ignore[arg-type]
        )
        SourceResolver(registry, self.tracker).resolve(PRODUCT, self.retailer)

    def test_failure_then_success_recorded(self) -> None:
        self._resolve(
            _api(error=SourceError("down")),
            [_scraper("html", Capability.SCRAPE_BY_HTML, 10.0)],
        )
        counters = self.tracker.snapshot("r1")
        self.assertEqual(counters.errors, 1)
        self.assertEqual(counters.successes, 1)

    def test_unconfigured_adapter_not_recorded(self) -> None:
        self._resolve(
            _api(error=SourceUnavailable("no key")),
            [_scraper("html", Capability.SCRAPE_BY_HTML, 10.0)],
        )
        counters = self.tracker.snapshot("r1")
        self.assertEqual(counters.attempts, 1)
        self.assertEqual(counters.errors, 0)

    def test_clean_miss_counts_as_success(self) -> None:
        self._resolve(_api(None), [])
        self.assertEqual(self.tracker.snapshot("r1").successes, 1)


if __name__ == "__main__":
    unittest.main()
