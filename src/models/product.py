# src/models/product.py

"""Catalog product as seen by the price engine (read-only)."""

from dataclasses import dataclass
from typing import Any


@dataclass
class Product:
    """A catalogued product owned by the external catalog service."""

    id: str
    name: str
    brand: str = ""
    category: str = ""

    @property
    def search_terms(self) -> str:
        """Brand + name, as sent to retailer search endpoints."""
        return f"{self.brand} {self.name}".strip()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Product":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            brand=str(data.get("brand", "") or ""),
            category=str(data.get("category", "") or ""),
        )
