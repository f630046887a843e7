# src/adapters/bestbuy_api.py

"""Best Buy Products API adapter."""

from typing import Any
from urllib.parse import quote

from src.adapters.base_adapter import BaseAdapter, Capability
from src.config.settings import Settings
from src.models.price_quote import DataQuality, PriceQuote, QuoteSource
from src.models.product import Product
from src.models.retailer import Retailer

BASE_URL = "https://api.bestbuy.com/v1"
_SHOW_FIELDS = (
    "sku,name,salePrice,regularPrice,url,image,onSale,"
    "onlineAvailability,shipping"
)


class BestBuyApiAdapter(BaseAdapter):
    """Searches the Best Buy catalogue and quotes the first hit."""

    capability = Capability.FETCH_BY_API
    source = QuoteSource.API
    confidence = 0.88
    data_quality = DataQuality.HIGH

    def __init__(self, settings: Settings | None = None) -> None:
        super().__init__("bestbuy", settings)

    def is_configured(self) -> bool:
        return bool(self.settings.BESTBUY_API_KEY)

    def _health_url(self) -> str:
        return (
            f"{self._search_url('test')}?format=json&pageSize=1"
            f"&apiKey={self.settings.BESTBUY_API_KEY}"
        )

    def _search_url(self, terms: str) -> str:
        return f'{BASE_URL}/products(search="{quote(terms)}")'

    def get_price(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        self._require_configured()
        self.logger.info(
            "Fetching Best Buy price for '%s'", product.search_terms,
        )
        data = self._fetch_json(
            "GET",
            self._search_url(product.search_terms),
            {"Accept": "application/json"},
            params={
                "format": "json",
                "apiKey": self.settings.BESTBUY_API_KEY,
                "show": _SHOW_FIELDS,
            },
        )
        items: list[dict[str, Any]] = (data or {}).get("products") or []
        if not items:
            self.logger.info("No Best Buy match for '%s'", product.name)
            return None
        return self._parse_item(product, retailer, items[0])

    def _parse_item(
        self,
        product: Product,
        retailer: Retailer,
        item: dict[str, Any],
    ) -> PriceQuote | None:
        price = self.extract_price(
            item.get("salePrice") or item.get("regularPrice")
        )
        if not price:
            return None
        in_stock = item.get("onlineAvailability") in ("Available", True)
        shipping = item.get("shipping")
        shipping_cost: float | None = None
        if isinstance(shipping, dict):
            shipping_cost = self.extract_price(
                shipping.get("shippingCost")
            )
        elif isinstance(shipping, list) and shipping:
            shipping_cost = self.extract_price(
                shipping[0].get("ground")
            )
        return self._build_quote(
            product,
            retailer,
            price,
            product_url=str(item.get("url", "")),
            currency="USD",
            in_stock=in_stock,
            availability_message=(
                "Available online" if in_stock else "Out of stock"
            ),
            original_price=self.extract_price(item.get("regularPrice")),
            image_url=str(item.get("image", "") or ""),
            shipping_cost=shipping_cost,
        )
