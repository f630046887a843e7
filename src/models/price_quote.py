# src/models/price_quote.py

"""Live price quotes and their append-only history records."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class StockStatus(str, Enum):
    """Availability bucket reported by a source."""

    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    LIMITED = "limited"
    PRE_ORDER = "pre_order"


class QuoteSource(str, Enum):
    """Where a quote came from."""

    API = "api"
    SCRAPER = "scraper"
    MANUAL = "manual"


class DataQuality(str, Enum):
    """Coarse trust tier attached by the adapter."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def _opt_float(value: Any) -> float | None:
    return None if value is None else float(value)


@dataclass
class PriceQuote:
    """Current price snapshot for one (product, retailer) pair."""

    product_id: str
    retailer_id: str
    price: float
    currency: str = "USD"
    product_url: str = ""
    in_stock: bool = True
    stock_status: StockStatus = StockStatus.IN_STOCK
    availability_message: str = ""
    original_price: float | None = None
    discount: float | None = None
    discount_percentage: float | None = None
    image_url: str = ""
    shipping_cost: float | None = None
    estimated_delivery: str = ""
    source: QuoteSource = QuoteSource.API
    confidence: float = 1.0
    data_quality: DataQuality = DataQuality.MEDIUM
    fetched_at: datetime = field(default_factory=datetime.now)

    @property
    def is_on_sale(self) -> bool:
        return bool(
            self.original_price and self.original_price > self.price
        )

    @property
    def total_cost(self) -> float:
        return self.price + (self.shipping_cost or 0.0)

    @property
    def savings(self) -> float:
        if self.original_price and self.original_price > self.price:
            return self.original_price - self.price
        return 0.0

    @property
    def savings_percentage(self) -> float:
        if self.original_price and self.original_price > self.price:
            return (
                (self.original_price - self.price)
                / self.original_price
                * 100
            )
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-safe dict (enums by value, ISO timestamps)."""
        return {
            "product_id": self.product_id,
            "retailer_id": self.retailer_id,
            "price": self.price,
            "currency": self.currency,
            "product_url": self.product_url,
            "in_stock": self.in_stock,
            "stock_status": self.stock_status.value,
            "availability_message": self.availability_message,
            "original_price": self.original_price,
            "discount": self.discount,
            "discount_percentage": self.discount_percentage,
            "image_url": self.image_url,
            "shipping_cost": self.shipping_cost,
            "estimated_delivery": self.estimated_delivery,
            "source": self.source.value,
            "confidence": self.confidence,
            "data_quality": self.data_quality.value,
            "fetched_at": self.fetched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceQuote":
        return cls(
            product_id=str(data["product_id"]),
            retailer_id=str(data["retailer_id"]),
            price=float(data["price"]),
            currency=str(data.get("currency", "USD")),
            product_url=str(data.get("product_url", "")),
            in_stock=bool(data.get("in_stock", True)),
            stock_status=StockStatus(
                data.get("stock_status", StockStatus.IN_STOCK.value)
            ),
            availability_message=str(
                data.get("availability_message", "")
            ),
            original_price=_opt_float(data.get("original_price")),
            discount=_opt_float(data.get("discount")),
            discount_percentage=_opt_float(
                data.get("discount_percentage")
            ),
            image_url=str(data.get("image_url", "")),
            shipping_cost=_opt_float(data.get("shipping_cost")),
            estimated_delivery=str(data.get("estimated_delivery", "")),
            source=QuoteSource(data.get("source", QuoteSource.API.value)),
            confidence=float(data.get("confidence", 1.0)),
            data_quality=DataQuality(
                data.get("data_quality", DataQuality.MEDIUM.value)
            ),
            fetched_at=datetime.fromisoformat(str(data["fetched_at"])),
        )


@dataclass(frozen=True)
class PriceHistoryEntry:
    """Immutable record of one successful quote write."""

    id: int
    product_id: str
    retailer_id: str
    price: float
    currency: str
    original_price: float | None
    in_stock: bool
    shipping_cost: float | None
    source: QuoteSource
    confidence: float
    recorded_at: datetime
