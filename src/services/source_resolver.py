# src/services/source_resolver.py

"""Per-retailer source selection: API first, then the scraping chain."""

import logging
import time

from src.adapters.base_adapter import BaseAdapter
from src.adapters.registry import AdapterRegistry
from src.models.price_quote import PriceQuote
from src.models.product import Product
from src.models.retailer import Retailer
from src.services.errors import SourceUnavailable
from src.services.health_tracker import RetailerHealthTracker

logger = logging.getLogger("price_engine.resolver")


class SourceResolver:
    """Turns (product, retailer) into at most one quote.

    No method here raises: every adapter failure is logged, recorded
    in the health tracker and treated as "no result".
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        tracker: RetailerHealthTracker | None = None,
    ) -> None:
        self.registry = registry
        self.tracker = tracker or RetailerHealthTracker()

    def resolve(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        """Try the retailer's API adapter, then scrape if allowed."""
        if retailer.has_api:
            adapter = self.registry.api_for(retailer.adapter_key)
            if adapter is None:
                logger.debug(
                    "No API adapter registered for %s", retailer.adapter_key,
                )
            else:
                quote = self._attempt(adapter, product, retailer, product_url)
                if quote is not None:
                    return quote

        if retailer.has_scraper:
            return self.scrape(product, retailer, product_url)

        logger.info(
            "No source produced a price for %s at %s",
            product.id,
            retailer.id,
        )
        return None

    def scrape(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        """Walk the scraping chain; the first non-null quote wins."""
        for adapter in self.registry.scraping_chain():
            quote = self._attempt(adapter, product, retailer, product_url)
            if quote is not None:
                return quote
        logger.info(
            "Scraping chain exhausted for %s at %s", product.id, retailer.id,
        )
        return None

    def _attempt(
        self,
        adapter: BaseAdapter,
        product: Product,
        retailer: Retailer,
        product_url: str | None,
    ) -> PriceQuote | None:
        start = time.monotonic()
        try:
            quote = adapter.get_price(product, retailer, product_url)
        except SourceUnavailable as exc:
            logger.warning(
                "[%s] skipped for %s: %s",
                adapter.adapter_name,
                retailer.id,
                exc,
            )
            return None
        except Exception as exc:
            elapsed_ms = (time.monotonic() - start) * 1000
            self.tracker.record(retailer.id, False, elapsed_ms)
            logger.error(
                "[%s] failed for %s at %s: %s",
                adapter.adapter_name,
                product.id,
                retailer.id,
                exc,
                exc_info=True,
            )
            return None

        elapsed_ms = (time.monotonic() - start) * 1000
        self.tracker.record(retailer.id, True, elapsed_ms)
        if quote is None:
            logger.debug(
                "[%s] no listing for %s at %s",
                adapter.adapter_name,
                product.id,
                retailer.id,
            )
            return None

        quote.product_id = product.id
        quote.retailer_id = retailer.id
        logger.info(
            "[%s] %s at %s: %.2f %s",
            adapter.adapter_name,
            product.id,
            retailer.id,
            quote.price,
            quote.currency,
        )
        return quote
