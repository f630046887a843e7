# tests/test_api_adapters.py

"""Tests for the retailer API adapters with a mocked HTTP session."""

import json
import unittest
from typing import Any
from unittest.mock import MagicMock, patch

from src.adapters.amazon_api import AmazonApiAdapter
from src.adapters.bestbuy_api import BestBuyApiAdapter
from src.adapters.ebay_api import EbayApiAdapter
from src.adapters.walmart_api import WalmartApiAdapter
from src.config.settings import Settings
from src.models.price_quote import DataQuality, QuoteSource, StockStatus
from src.models.product import Product
from src.models.retailer import Retailer
from src.services.errors import SourceError, SourceUnavailable

SESSION_PATH = "src.adapters.base_adapter.curl_requests.Session"

PRODUCT = Product(id="p1", name="WH-1000XM5", brand="Sony")


def _json_response(data: Any, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = json.dumps(data)
    resp.json.return_value = data
    return resp


def _settings(**overrides: str) -> Settings:
    settings = Settings()
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


@patch(SESSION_PATH)
class TestAmazonApiAdapter(unittest.TestCase):

    def setUp(self) -> None:
        self.settings = _settings(
            AMAZON_ACCESS_KEY="AKIDEXAMPLE",
            AMAZON_SECRET_KEY="secret",
            AMAZON_ASSOCIATE_TAG="tag-20",
        )
        self.retailer = Retailer(id="amazon", name="Amazon", has_api=True)

    def _item(self, **offer: Any) -> dict[str, Any]:
        listing = {
            "Price": {"Amount": 79.99, "Currency": "USD"},
            "Availability": {"Type": "Now", "Message": "In Stock."},
        }
        listing.update(offer)
        return {
            "ASIN": "B09XS7JWHH",
            "DetailPageURL": "https://www.amazon.com/dp/B09XS7JWHH",
            "Images": {"Primary": {"Large": {"URL": "https://img/x.jpg"}}},
            "Offers": {"Listings": [listing]},
        }

    def test_search_hit_with_offer(self, mock_session_cls: MagicMock) -> None:
        session = mock_session_cls.return_value
        session.request.return_value = _json_response(
            {"SearchResult": {"Items": [self._item()]}}
        )
        quote = AmazonApiAdapter(self.settings).get_price(
            PRODUCT, self.retailer,
        )
        assert quote is not None
        self.assertEqual(quote.price, 79.99)
        self.assertTrue(quote.in_stock)
        self.assertIs(quote.source, QuoteSource.API)
        self.assertEqual(quote.confidence, 0.95)
        self.assertIs(quote.data_quality, DataQuality.HIGH)
        self.assertEqual(quote.image_url, "https://img/x.jpg")
        self.assertEqual(session.request.call_count, 1)

    def test_request_is_signed(self, mock_session_cls: MagicMock) -> None:
        session = mock_session_cls.return_value
        session.request.return_value = _json_response(
            {"SearchResult": {"Items": [self._item()]}}
        )
        AmazonApiAdapter(self.settings).get_price(PRODUCT, self.retailer)
        method, url = session.request.call_args.args[:2]
        headers = session.request.call_args.kwargs["headers"]
        self.assertEqual(method, "POST")
        self.assertTrue(url.endswith("/paapi5/searchitems"))
        self.assertIn("Authorization", headers)
        self.assertIn("AWS4-HMAC-SHA256", headers["Authorization"])
        self.assertTrue(headers["x-amz-target"].endswith(".SearchItems"))

    def test_falls_back_to_get_items(
        self, mock_session_cls: MagicMock,
    ) -> None:
        session = mock_session_cls.return_value
        session.request.side_effect = [
            _json_response(
                {"SearchResult": {"Items": [{"ASIN": "B09XS7JWHH"}]}}
            ),
            _json_response({"ItemsResult": {"Items": [self._item()]}}),
        ]
        quote = AmazonApiAdapter(self.settings).get_price(
            PRODUCT, self.retailer,
        )
        assert quote is not None
        self.assertEqual(quote.price, 79.99)
        self.assertEqual(session.request.call_count, 2)

    def test_offer_without_availability_is_kept(
        self, mock_session_cls: MagicMock,
    ) -> None:
        item = self._item()
        del item["Offers"]["Listings"][0]["Availability"]
        mock_session_cls.return_value.request.return_value = _json_response(
            {"SearchResult": {"Items": [item]}}
        )
        quote = AmazonApiAdapter(self.settings).get_price(
            PRODUCT, self.retailer,
        )
        assert quote is not None
        self.assertEqual(quote.price, 79.99)
        self.assertFalse(quote.in_stock)
        self.assertIs(quote.stock_status, StockStatus.OUT_OF_STOCK)

    def test_saving_basis_becomes_original_price(
        self, mock_session_cls: MagicMock,
    ) -> None:
        session = mock_session_cls.return_value
        item = self._item(SavingBasis={"Amount": 99.99})
        session.request.return_value = _json_response(
            {"SearchResult": {"Items": [item]}}
        )
        quote = AmazonApiAdapter(self.settings).get_price(
            PRODUCT, self.retailer,
        )
        assert quote is not None
        self.assertEqual(quote.original_price, 99.99)
        self.assertEqual(quote.discount, 20.0)

    def test_no_results_is_none(self, mock_session_cls: MagicMock) -> None:
        mock_session_cls.return_value.request.return_value = _json_response(
            {"SearchResult": {"Items": []}}
        )
        self.assertIsNone(
            AmazonApiAdapter(self.settings).get_price(PRODUCT, self.retailer)
        )

    def test_unconfigured_raises(self, _mock: MagicMock) -> None:
        adapter = AmazonApiAdapter(_settings(AMAZON_ACCESS_KEY=""))
        with self.assertRaises(SourceUnavailable):
            adapter.get_price(PRODUCT, self.retailer)


@patch(SESSION_PATH)
class TestWalmartApiAdapter(unittest.TestCase):

    def setUp(self) -> None:
        self.settings = _settings(WALMART_API_KEY="wm-key")
        self.retailer = Retailer(id="walmart", name="Walmart", has_api=True)

    def test_search_then_detail(self, mock_session_cls: MagicMock) -> None:
        session = mock_session_cls.return_value
        session.request.side_effect = [
            _json_response({"items": [{"itemId": 123}]}),
            _json_response({
                "itemId": 123,
                "salePrice": 82.0,
                "msrp": 99.0,
                "availableOnline": True,
                "productUrl": "https://walmart.com/ip/123",
                "standardShipRate": 0,
            }),
        ]
        quote = WalmartApiAdapter(self.settings).get_price(
            PRODUCT, self.retailer,
        )
        assert quote is not None
        self.assertEqual(quote.price, 82.0)
        self.assertEqual(quote.original_price, 99.0)
        self.assertTrue(quote.in_stock)
        self.assertEqual(quote.confidence, 0.90)
        detail_url = session.request.call_args_list[1].args[1]
        self.assertTrue(detail_url.endswith("/items/123"))

    def test_no_match(self, mock_session_cls: MagicMock) -> None:
        mock_session_cls.return_value.request.return_value = _json_response(
            {"items": []}
        )
        self.assertIsNone(
            WalmartApiAdapter(self.settings).get_price(PRODUCT, self.retailer)
        )

    def test_http_failure_raises(self, mock_session_cls: MagicMock) -> None:
        mock_session_cls.return_value.request.return_value = _json_response(
            {}, status=500,
        )
        with self.assertRaises(SourceError):
            WalmartApiAdapter(self.settings).get_price(PRODUCT, self.retailer)


@patch(SESSION_PATH)
class TestEbayApiAdapter(unittest.TestCase):

    def setUp(self) -> None:
        self.settings = _settings(EBAY_APP_ID="ebay-token")
        self.retailer = Retailer(id="ebay", name="eBay", has_api=True)

    def test_fixed_price_listing(self, mock_session_cls: MagicMock) -> None:
        session = mock_session_cls.return_value
        session.request.side_effect = [
            _json_response({"itemSummaries": [{"itemId": "v1|42|0"}]}),
            _json_response({
                "price": {"value": "84.50", "currency": "USD"},
                "buyingOptions": ["FIXED_PRICE"],
                "itemWebUrl": "https://ebay.com/itm/42",
                "shippingOptions": [
                    {
                        "shippingCostType": "FIXED",
                        "shippingCost": {"value": "5.00"},
                        "maxEstimatedDeliveryDate": "2026-03-05",
                    },
                ],
            }),
        ]
        quote = EbayApiAdapter(self.settings).get_price(
            PRODUCT, self.retailer,
        )
        assert quote is not None
        self.assertEqual(quote.price, 84.50)
        self.assertEqual(quote.shipping_cost, 5.0)
        self.assertEqual(quote.estimated_delivery, "2026-03-05")
        self.assertIs(quote.data_quality, DataQuality.MEDIUM)
        headers = session.request.call_args_list[0].kwargs["headers"]
        self.assertEqual(headers["Authorization"], "Bearer ebay-token")

    def test_auction_only_is_not_in_stock(
        self, mock_session_cls: MagicMock,
    ) -> None:
        session = mock_session_cls.return_value
        session.request.side_effect = [
            _json_response({"itemSummaries": [{"itemId": "v1|42|0"}]}),
            _json_response({
                "price": {"value": "50.00"},
                "buyingOptions": ["AUCTION"],
            }),
        ]
        quote = EbayApiAdapter(self.settings).get_price(
            PRODUCT, self.retailer,
        )
        assert quote is not None
        self.assertFalse(quote.in_stock)
        self.assertIs(quote.stock_status, StockStatus.OUT_OF_STOCK)

    def test_listing_gone_is_none(self, mock_session_cls: MagicMock) -> None:
        session = mock_session_cls.return_value
        session.request.side_effect = [
            _json_response({"itemSummaries": [{"itemId": "v1|42|0"}]}),
            _json_response({}, status=404),
        ]
        self.assertIsNone(
            EbayApiAdapter(self.settings).get_price(PRODUCT, self.retailer)
        )


@patch(SESSION_PATH)
class TestBestBuyApiAdapter(unittest.TestCase):

    def setUp(self) -> None:
        self.settings = _settings(BESTBUY_API_KEY="bb-key")
        self.retailer = Retailer(id="bestbuy", name="BestBuy", has_api=True)

    def test_sale_price(self, mock_session_cls: MagicMock) -> None:
        session = mock_session_cls.return_value
        session.request.return_value = _json_response({
            "products": [{
                "sku": 6505727,
                "salePrice": 329.99,
                "regularPrice": 399.99,
                "onlineAvailability": True,
                "url": "https://bestbuy.com/site/6505727",
                "shipping": {"shippingCost": 0},
            }],
        })
        quote = BestBuyApiAdapter(self.settings).get_price(
            PRODUCT, self.retailer,
        )
        assert quote is not None
        self.assertEqual(quote.price, 329.99)
        self.assertEqual(quote.original_price, 399.99)
        self.assertTrue(quote.is_on_sale)
        params = session.request.call_args.kwargs["params"]
        self.assertEqual(params["apiKey"], "bb-key")

    def test_health_url_carries_key(self, _mock: MagicMock) -> None:
        adapter = BestBuyApiAdapter(self.settings)
        self.assertIn("apiKey=bb-key", adapter._health_url())


if __name__ == "__main__":
    unittest.main()
