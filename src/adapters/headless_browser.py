# src/adapters/headless_browser.py

"""Headless Chromium adapter for JavaScript-rendered product pages."""

from typing import Any

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page, sync_playwright

from src.adapters.base_adapter import BaseAdapter, Capability, search_url
from src.config.settings import Settings
from src.models.price_quote import DataQuality, PriceQuote, QuoteSource
from src.models.product import Product
from src.models.retailer import Retailer
from src.services.errors import SourceError, SourceUnavailable

# Fallbacks for fields retailers rarely configure selectors for
ORIGINAL_PRICE_SELECTOR = (
    '[data-testid="original-price"], .original-price, .was-price, .list-price'
)
SHIPPING_SELECTOR = (
    '[data-testid="shipping-cost"], .shipping-cost, .delivery-cost'
)

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
]


class HeadlessBrowserAdapter(BaseAdapter):
    """Renders the page in Chromium and reads the retailer's selectors.

    Uses the sync Playwright API with one browser per call; the engine
    invokes adapters from worker threads.
    """

    capability = Capability.SCRAPE_BY_HEADLESS_BROWSER
    source = QuoteSource.SCRAPER
    confidence = 0.85
    data_quality = DataQuality.HIGH

    def __init__(self, settings: Settings | None = None) -> None:
        super().__init__("headless_browser", settings)

    def get_price(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        if not retailer.selectors.get("price"):
            raise SourceUnavailable(
                f"no price selector configured for {retailer.id}"
            )
        url = product_url or search_url(product, retailer)
        if not url:
            return None

        self.logger.info("Rendering %s", url)
        try:
            with sync_playwright() as pw:
                browser = pw.chromium.launch(
                    headless=True, args=_LAUNCH_ARGS,
                )
                try:
                    page = browser.new_page(
                        user_agent=self._user_agent(),
                    )
                    page.goto(
                        url,
                        wait_until="domcontentloaded",
                        timeout=self.settings.BROWSER_NAV_TIMEOUT_MS,
                    )
                    page.wait_for_timeout(self.settings.BROWSER_SETTLE_MS)
                    fields = self._extract(page, retailer.selectors)
                finally:
                    browser.close()
        except PlaywrightError as exc:
            raise SourceError(
                f"headless browser failed on {url}: {exc}"
            ) from exc

        price = self.extract_price(fields.get("price"))
        if not price:
            self.logger.info("No price rendered on %s", url)
            return None

        in_stock, status = self.determine_stock_status(
            fields.get("availability")
        )
        return self._build_quote(
            product,
            retailer,
            price,
            product_url=url,
            in_stock=in_stock,
            stock_status=status,
            availability_message=str(fields.get("availability") or ""),
            original_price=self.extract_price(fields.get("original_price")),
            image_url=str(fields.get("image") or ""),
            shipping_cost=self.extract_price(fields.get("shipping")),
        )

    def _user_agent(self) -> str:
        return (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/131.0.0.0 Safari/537.36"
        )

    @staticmethod
    def _text(page: Page, selector: str | None) -> str | None:
        if not selector:
            return None
        element = page.query_selector(selector)
        if element is None:
            return None
        text = element.text_content()
        return text.strip() if text else None

    def _extract(
        self, page: Page, selectors: dict[str, str],
    ) -> dict[str, Any]:
        image: str | None = None
        image_sel = selectors.get("image")
        if image_sel:
            element = page.query_selector(image_sel)
            if element is not None:
                image = element.get_attribute("src")
        return {
            "name": self._text(page, selectors.get("product_name")),
            "price": self._text(page, selectors["price"]),
            "availability": self._text(page, selectors.get("availability")),
            "original_price": self._text(
                page,
                selectors.get("original_price") or ORIGINAL_PRICE_SELECTOR,
            ),
            "shipping": self._text(page, SHIPPING_SELECTOR),
            "image": image,
        }
