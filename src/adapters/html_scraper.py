# src/adapters/html_scraper.py

"""Lightweight HTML adapter driven by the retailer's CSS selectors."""

import time
from typing import Any

import cloudscraper  # type: ignore[import-untyped]
from bs4 import BeautifulSoup, Tag

from src.adapters.base_adapter import BaseAdapter, Capability, search_url
from src.config.settings import Settings
from src.models.price_quote import DataQuality, PriceQuote, QuoteSource
from src.models.product import Product
from src.models.retailer import Retailer
from src.services.errors import SourceError, SourceUnavailable


class HtmlScraperAdapter(BaseAdapter):
    """Fetches the page over curl_cffi and reads fields with bs4."""

    capability = Capability.SCRAPE_BY_HTML
    source = QuoteSource.SCRAPER
    confidence = 0.75
    data_quality = DataQuality.MEDIUM

    def __init__(self, settings: Settings | None = None) -> None:
        super().__init__("html_scraper", settings)

    def _get_page(self, url: str, referer: str) -> BeautifulSoup | None:
        """Fetch a page, falling back to cloudscraper on failure.

        Returns ``None`` when the page does not exist.

        Raises:
            SourceError: both transports failed.
        """
        headers: dict[str, str] = {
            **self.settings.DEFAULT_HEADERS,
            "Referer": referer,
        }
        time.sleep(self._current_delay(url))

        resp = self._fetch_get(url, headers)
        if resp is not None:
            if resp.status_code == 404:
                return None
            return BeautifulSoup(resp.text, "lxml")

        self.logger.info(
            "[%s] curl_cffi exhausted, falling back to cloudscraper",
            self.adapter_name,
        )
        try:
            _cs: Any = cloudscraper
            scraper: Any = _cs.create_scraper()
            fallback: Any = scraper.get(
                url, headers=headers, timeout=self._request_timeout,
            )
        except Exception as exc:
            raise SourceError(
                f"cloudscraper fallback failed for {url}: {exc}"
            ) from exc
        if fallback.status_code != 200:
            raise SourceError(
                f"HTTP {fallback.status_code} from {url} via cloudscraper"
            )
        return BeautifulSoup(str(fallback.text), "lxml")

    def get_price(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        selectors = retailer.selectors
        if not selectors.get("price"):
            raise SourceUnavailable(
                f"no price selector configured for {retailer.id}"
            )
        url = product_url or search_url(product, retailer)
        if not url:
            return None

        referer = f"https://{retailer.domain}/" if retailer.domain else url
        soup = self._get_page(url, referer)
        if soup is None:
            return None

        price_el = soup.select_one(selectors["price"])
        price = self.extract_price(
            price_el.get_text(strip=True) if price_el else None
        )
        if not price:
            self.logger.info("No price found on %s", url)
            return None

        availability = self._select_text(soup, selectors.get("availability"))
        in_stock, status = self.determine_stock_status(availability)

        image_url = ""
        image_sel = selectors.get("image")
        if image_sel:
            img = soup.select_one(image_sel)
            if isinstance(img, Tag):
                image_url = str(img.get("src") or img.get("data-src") or "")

        return self._build_quote(
            product,
            retailer,
            price,
            product_url=url,
            in_stock=in_stock,
            stock_status=status,
            availability_message=availability or "",
            original_price=self.extract_price(
                self._select_text(soup, selectors.get("original_price"))
            ),
            image_url=image_url,
        )

    @staticmethod
    def _select_text(soup: BeautifulSoup, selector: str | None) -> str | None:
        if not selector:
            return None
        el = soup.select_one(selector)
        return el.get_text(" ", strip=True) if el else None
