# src/models/comparison.py

"""Ephemeral cross-retailer comparison built from resolved quotes."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.models.price_quote import PriceQuote
from src.models.product import Product


@dataclass
class ComparisonResult:
    """Lowest / highest / average over the quotes resolved for a product.

    Never persisted itself; only its quotes are.  An empty ``prices``
    list means the product exists but no retailer answered.
    """

    product: Product
    prices: list[PriceQuote] = field(
        default_factory=lambda: list[PriceQuote]()
    )
    lowest_price: PriceQuote | None = None
    highest_price: PriceQuote | None = None
    average_price: float | None = None
    total_retailers: int = 0
    last_updated: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_quotes(
        cls,
        product: Product,
        quotes: list[PriceQuote],
        now: datetime | None = None,
    ) -> "ComparisonResult":
        """Build a comparison with a single linear pass.

        Ties keep the first quote seen.  The average covers every
        quote regardless of stock status.
        """
        stamp = now or datetime.now()
        if not quotes:
            return cls(product=product, prices=[], last_updated=stamp)

        lowest = quotes[0]
        highest = quotes[0]
        total = 0.0
        for quote in quotes:
            if quote.price < lowest.price:
                lowest = quote
            if quote.price > highest.price:
                highest = quote
            total += quote.price

        return cls(
            product=product,
            prices=list(quotes),
            lowest_price=lowest,
            highest_price=highest,
            average_price=total / len(quotes),
            total_retailers=len(quotes),
            last_updated=stamp,
        )

    def to_dict(self) -> dict[str, Any]:
        prices = [q.to_dict() for q in self.prices]
        return {
            "product": self.product.to_dict(),
            "prices": prices,
            "lowest_index": self._index_of(self.lowest_price),
            "highest_index": self._index_of(self.highest_price),
            "average_price": self.average_price,
            "total_retailers": self.total_retailers,
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ComparisonResult":
        prices = [PriceQuote.from_dict(p) for p in data.get("prices", [])]
        lowest_idx = data.get("lowest_index")
        highest_idx = data.get("highest_index")
        average = data.get("average_price")
        return cls(
            product=Product.from_dict(data["product"]),
            prices=prices,
            lowest_price=(
                prices[lowest_idx] if lowest_idx is not None else None
            ),
            highest_price=(
                prices[highest_idx] if highest_idx is not None else None
            ),
            average_price=float(average) if average is not None else None,
            total_retailers=int(data.get("total_retailers", len(prices))),
            last_updated=datetime.fromisoformat(
                str(data["last_updated"])
            ),
        )

    def _index_of(self, quote: PriceQuote | None) -> int | None:
        if quote is None:
            return None
        for idx, candidate in enumerate(self.prices):
            if candidate is quote:
                return idx
        return None
