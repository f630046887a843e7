# src/adapters/ebay_api.py

"""eBay Browse API adapter (search, then item detail)."""

from typing import Any

from src.adapters.base_adapter import BaseAdapter, Capability
from src.config.settings import Settings
from src.models.price_quote import DataQuality, PriceQuote, QuoteSource
from src.models.product import Product
from src.models.retailer import Retailer

BASE_URL = "https://api.ebay.com/buy/browse/v1"


class EbayApiAdapter(BaseAdapter):
    """Quotes the first fixed-price listing returned by the Browse API."""

    capability = Capability.FETCH_BY_API
    source = QuoteSource.API
    confidence = 0.85
    data_quality = DataQuality.MEDIUM

    def __init__(self, settings: Settings | None = None) -> None:
        super().__init__("ebay", settings)

    def is_configured(self) -> bool:
        return bool(self.settings.EBAY_APP_ID)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.EBAY_APP_ID}",
            "Content-Type": "application/json",
            "X-EBAY-C-MARKETPLACE-ID": "EBAY_US",
        }

    def _health_url(self) -> str:
        return f"{BASE_URL}/item_summary/search?q=test&limit=1"

    def _health_headers(self) -> dict[str, str]:
        return self._headers()

    def get_price(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        self._require_configured()
        self.logger.info(
            "Fetching eBay price for '%s'", product.search_terms,
        )
        search = self._fetch_json(
            "GET",
            f"{BASE_URL}/item_summary/search",
            self._headers(),
            params={
                "q": product.search_terms,
                "limit": 1,
                "filter": "deliveryCountry:US",
            },
        )
        summaries: list[dict[str, Any]] = (
            (search or {}).get("itemSummaries") or []
        )
        if not summaries or not summaries[0].get("itemId"):
            self.logger.info("No eBay listing for '%s'", product.name)
            return None

        item_id = summaries[0]["itemId"]
        details = self._fetch_json(
            "GET", f"{BASE_URL}/item/{item_id}", self._headers(),
        )
        if not details:
            return None
        return self._parse_item(product, retailer, details)

    def _parse_item(
        self,
        product: Product,
        retailer: Retailer,
        item: dict[str, Any],
    ) -> PriceQuote | None:
        price_info = item.get("price") or {}
        price = self.extract_price(price_info.get("value"))
        if not price:
            return None

        in_stock = "FIXED_PRICE" in (item.get("buyingOptions") or [])
        fixed = next(
            (
                opt for opt in item.get("shippingOptions") or []
                if opt.get("shippingCostType") == "FIXED"
            ),
            {},
        )
        shipping_cost = self.extract_price(
            (fixed.get("shippingCost") or {}).get("value")
        )
        return self._build_quote(
            product,
            retailer,
            price,
            product_url=str(item.get("itemWebUrl", "")),
            currency=str(price_info.get("currency") or "USD"),
            in_stock=in_stock,
            availability_message=(
                "Available for purchase" if in_stock else "Not available"
            ),
            image_url=str((item.get("image") or {}).get("imageUrl", "")),
            shipping_cost=shipping_cost,
            estimated_delivery=str(
                fixed.get("maxEstimatedDeliveryDate")
                or fixed.get("estimatedDeliveryDate")
                or ""
            ),
        )
