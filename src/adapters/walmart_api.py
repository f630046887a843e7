# src/adapters/walmart_api.py

"""Walmart affiliate product API adapter."""

from typing import Any

from src.adapters.base_adapter import BaseAdapter, Capability
from src.config.settings import Settings
from src.models.price_quote import DataQuality, PriceQuote, QuoteSource
from src.models.product import Product
from src.models.retailer import Retailer

BASE_URL = "https://api.walmartlabs.com/v1"


class WalmartApiAdapter(BaseAdapter):
    """Search by brand + name, then read the first item's detail."""

    capability = Capability.FETCH_BY_API
    source = QuoteSource.API
    confidence = 0.90
    data_quality = DataQuality.HIGH

    def __init__(self, settings: Settings | None = None) -> None:
        super().__init__("walmart", settings)

    def is_configured(self) -> bool:
        return bool(self.settings.WALMART_API_KEY)

    def _health_url(self) -> str:
        return (
            f"{BASE_URL}/search?query=test&numItems=1&format=json"
            f"&apiKey={self.settings.WALMART_API_KEY}"
        )

    def get_price(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        self._require_configured()
        self.logger.info(
            "Fetching Walmart price for '%s'", product.search_terms,
        )
        headers = {"Accept": "application/json"}
        search = self._fetch_json(
            "GET",
            f"{BASE_URL}/search",
            headers,
            params={
                "apiKey": self.settings.WALMART_API_KEY,
                "query": product.search_terms,
                "format": "json",
                "numItems": 1,
            },
        )
        items: list[dict[str, Any]] = (search or {}).get("items") or []
        if not items or not items[0].get("itemId"):
            self.logger.info("No Walmart match for '%s'", product.name)
            return None

        detail = self._fetch_json(
            "GET",
            f"{BASE_URL}/items/{items[0]['itemId']}",
            headers,
            params={
                "apiKey": self.settings.WALMART_API_KEY,
                "format": "json",
            },
        )
        if not detail:
            return None
        # The detail endpoint has returned both wrapped and bare items
        item = detail.get("item", detail)
        return self._parse_item(product, retailer, item)

    def _parse_item(
        self,
        product: Product,
        retailer: Retailer,
        item: dict[str, Any],
    ) -> PriceQuote | None:
        price = self.extract_price(item.get("salePrice") or item.get("price"))
        if not price:
            return None
        in_stock = bool(item.get("availableOnline", False))
        return self._build_quote(
            product,
            retailer,
            price,
            product_url=str(item.get("productUrl", "")),
            currency="USD",
            in_stock=in_stock,
            availability_message=(
                "Available online" if in_stock else "Out of stock"
            ),
            original_price=self.extract_price(item.get("msrp")),
            image_url=str(item.get("largeImage", "") or ""),
            shipping_cost=self.extract_price(item.get("standardShipRate")),
        )
