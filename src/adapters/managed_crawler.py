# src/adapters/managed_crawler.py

"""Managed crawling service adapter (Apify actor runs)."""

import time
from typing import Any

from src.adapters.base_adapter import BaseAdapter, Capability, search_url
from src.config.settings import Settings
from src.models.price_quote import DataQuality, PriceQuote, QuoteSource
from src.models.product import Product
from src.models.retailer import Retailer
from src.services.errors import SourceError

_TERMINAL_FAILURES = ("FAILED", "ABORTED", "TIMED-OUT")


class ManagedCrawlerAdapter(BaseAdapter):
    """Starts a crawler run for the product URL and reads its dataset.

    The run is polled every ``APIFY_POLL_INTERVAL`` seconds, at most
    ``APIFY_MAX_POLLS`` times.
    """

    capability = Capability.SCRAPE_BY_MANAGED_CRAWLER
    source = QuoteSource.SCRAPER
    confidence = 0.80
    data_quality = DataQuality.HIGH

    def __init__(self, settings: Settings | None = None) -> None:
        super().__init__("managed_crawler", settings)

    def is_configured(self) -> bool:
        return bool(self.settings.APIFY_API_TOKEN)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.APIFY_API_TOKEN}",
            "Content-Type": "application/json",
        }

    def _health_url(self) -> str:
        return f"{self.settings.APIFY_BASE_URL}/users/me"

    def _health_headers(self) -> dict[str, str]:
        return self._headers()

    def get_price(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        self._require_configured()
        actor = self.settings.APIFY_ACTORS.get(retailer.adapter_key)
        if not actor:
            self.logger.debug("No crawler actor for %s", retailer.name)
            return None
        url = product_url or search_url(product, retailer)
        if not url:
            return None

        self.logger.info("Starting crawler run %s for %s", actor, url)
        item = self._run_actor(actor, url)
        if item is None:
            return None
        return self._parse_item(product, retailer, url, item)

    def _run_actor(self, actor: str, url: str) -> dict[str, Any] | None:
        """Start a run, wait for it, and return its first dataset item."""
        base = self.settings.APIFY_BASE_URL
        started = self._fetch_json(
            "POST",
            f"{base}/acts/{actor}/runs",
            self._headers(),
            json={
                "startUrls": [{"url": url}],
                "maxRequestsPerCrawl": 1,
                "maxConcurrency": 1,
            },
        )
        run_id = ((started or {}).get("data") or {}).get("id")
        if not run_id:
            raise SourceError(f"crawler run for {url} returned no id")

        for _ in range(self.settings.APIFY_MAX_POLLS):
            time.sleep(self.settings.APIFY_POLL_INTERVAL)
            run = self._fetch_json(
                "GET", f"{base}/actor-runs/{run_id}", self._headers(),
            )
            status = ((run or {}).get("data") or {}).get("status")
            if status == "SUCCEEDED":
                items = self._fetch_json(
                    "GET",
                    f"{base}/actor-runs/{run_id}/dataset/items",
                    self._headers(),
                )
                if isinstance(items, list) and items:
                    first: dict[str, Any] = items[0]
                    return first
                return None
            if status in _TERMINAL_FAILURES:
                raise SourceError(f"crawler run {run_id} ended {status}")
            self.logger.debug("Crawler run %s status %s", run_id, status)

        raise SourceError(
            f"crawler run {run_id} still running after "
            f"{self.settings.APIFY_MAX_POLLS} polls"
        )

    def _parse_item(
        self,
        product: Product,
        retailer: Retailer,
        url: str,
        item: dict[str, Any],
    ) -> PriceQuote | None:
        price = self.extract_price(
            item.get("price")
            or item.get("currentPrice")
            or item.get("salePrice")
        )
        if not price:
            return None

        availability = item.get("availability") or item.get("stockStatus")
        if availability is None:
            availability = item.get("inStock")
        in_stock, status = self.determine_stock_status(availability)
        return self._build_quote(
            product,
            retailer,
            price,
            product_url=url,
            in_stock=in_stock,
            stock_status=status,
            availability_message=(
                availability if isinstance(availability, str) else ""
            ),
            original_price=self.extract_price(
                item.get("originalPrice") or item.get("regularPrice")
            ),
            image_url=str(
                item.get("image")
                or item.get("imageUrl")
                or item.get("thumbnail")
                or ""
            ),
            shipping_cost=self.extract_price(
                item.get("shippingCost") or item.get("shipping")
            ),
            estimated_delivery=str(
                item.get("estimatedDelivery")
                or item.get("deliveryTime")
                or ""
            ),
        )
