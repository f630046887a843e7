# src/adapters/amazon_api.py

"""Amazon Product Advertising API 5.0 adapter."""

import json
from typing import Any

from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials

from src.adapters.base_adapter import BaseAdapter, Capability
from src.config.settings import Settings
from src.models.price_quote import DataQuality, PriceQuote, QuoteSource
from src.models.product import Product
from src.models.retailer import Retailer

HOST = "webservices.amazon.com"
REGION = "us-east-1"
SERVICE = "ProductAdvertisingAPI"
_TARGET_PREFIX = "com.amazon.paapi5.v1.ProductAdvertisingAPIv1"

_RESOURCES = [
    "Images.Primary.Large",
    "ItemInfo.Title",
    "Offers.Listings.Availability",
    "Offers.Listings.DeliveryInfo",
    "Offers.Listings.Price",
    "Offers.Listings.SavingBasis",
]


class AmazonApiAdapter(BaseAdapter):
    """SearchItems by brand + name, GetItems for the top ASIN."""

    capability = Capability.FETCH_BY_API
    source = QuoteSource.API
    confidence = 0.95
    data_quality = DataQuality.HIGH

    def __init__(self, settings: Settings | None = None) -> None:
        super().__init__("amazon", settings)

    def is_configured(self) -> bool:
        return bool(
            self.settings.AMAZON_ACCESS_KEY
            and self.settings.AMAZON_SECRET_KEY
            and self.settings.AMAZON_ASSOCIATE_TAG
        )

    def _health_url(self) -> str:
        return f"https://{HOST}/"

    # ── Signed calls ─────────────────────────────────────

    def _signed_headers(
        self, operation: str, url: str, body: str,
    ) -> dict[str, str]:
        request = AWSRequest(
            method="POST",
            url=url,
            data=body,
            headers={
                "host": HOST,
                "content-type": "application/json; charset=UTF-8",
                "content-encoding": "amz-1.0",
                "x-amz-target": f"{_TARGET_PREFIX}.{operation}",
            },
        )
        credentials = Credentials(
            self.settings.AMAZON_ACCESS_KEY,
            self.settings.AMAZON_SECRET_KEY,
        )
        SigV4Auth(credentials, SERVICE, REGION).add_auth(request)
        return dict(request.headers.items())

    def _call(self, operation: str, payload: dict[str, Any]) -> Any:
        url = f"https://{HOST}/paapi5/{operation.lower()}"
        body = json.dumps({
            "PartnerTag": self.settings.AMAZON_ASSOCIATE_TAG,
            "PartnerType": "Associates",
            "Marketplace": "www.amazon.com",
            "Resources": _RESOURCES,
            **payload,
        })
        return self._fetch_json(
            "POST",
            url,
            self._signed_headers(operation, url, body),
            data=body,
        )

    # ── Contract ─────────────────────────────────────────

    def get_price(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        self._require_configured()
        self.logger.info(
            "Fetching Amazon price for '%s'", product.search_terms,
        )
        search = self._call("SearchItems", {
            "Keywords": product.search_terms,
            "SearchIndex": "All",
            "ItemCount": 1,
        })
        found: list[dict[str, Any]] = (
            ((search or {}).get("SearchResult") or {}).get("Items") or []
        )
        if not found or not found[0].get("ASIN"):
            self.logger.info("No Amazon match for '%s'", product.name)
            return None

        item = found[0]
        if not (item.get("Offers") or {}).get("Listings"):
            details = self._call("GetItems", {"ItemIds": [item["ASIN"]]})
            items = (
                ((details or {}).get("ItemsResult") or {}).get("Items")
                or []
            )
            if not items:
                return None
            item = items[0]
        return self._parse_item(product, retailer, item)

    def _parse_item(
        self,
        product: Product,
        retailer: Retailer,
        item: dict[str, Any],
    ) -> PriceQuote | None:
        listings = (item.get("Offers") or {}).get("Listings") or []
        if not listings:
            return None
        offer = listings[0]
        price_info = offer.get("Price") or {}
        availability = offer.get("Availability") or {}
        price = self.extract_price(price_info.get("Amount"))
        if not price:
            return None

        # No Availability block: stock is unknown, read from the message
        if "Type" in availability:
            in_stock = availability["Type"] == "Now"
            stock_status = None
        else:
            in_stock, stock_status = self.determine_stock_status(
                availability.get("Message"),
            )
        saving = offer.get("SavingBasis") or {}
        image = (
            ((item.get("Images") or {}).get("Primary") or {})
            .get("Large") or {}
        )
        return self._build_quote(
            product,
            retailer,
            price,
            product_url=str(item.get("DetailPageURL", "")),
            currency=str(price_info.get("Currency") or "USD"),
            in_stock=in_stock,
            stock_status=stock_status,
            availability_message=str(availability.get("Message", "")),
            original_price=self.extract_price(saving.get("Amount")),
            image_url=str(image.get("URL", "")),
        )
