# src/models/retailer.py

"""Retailer record: capability flags, scraper selectors, health counters."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Retailer:
    """A retailer the engine can quote prices from.

    ``has_api`` / ``has_scraper`` decide which adapters the source
    resolver may try.  The health counters are written by the health
    checker and only read elsewhere.
    """

    id: str
    name: str
    domain: str = ""
    currency: str = "USD"
    has_api: bool = False
    has_scraper: bool = False
    is_active: bool = True
    trust_score: float = 1.0
    selectors: dict[str, str] = field(
        default_factory=lambda: dict[str, str]()
    )
    error_count: int = 0
    success_count: int = 0
    average_latency_ms: float = 0.0
    last_health_check: datetime | None = None

    @property
    def adapter_key(self) -> str:
        """Registry key used to look up this retailer's API adapter."""
        return self.name.strip().lower()

    @property
    def health_status(self) -> str:
        """Classify by error rate: healthy < 10% <= degraded < 30%."""
        total = self.error_count + self.success_count
        if total == 0:
            return "unhealthy"
        error_rate = self.error_count / total
        if error_rate < 0.1:
            return "healthy"
        if error_rate < 0.3:
            return "degraded"
        return "unhealthy"
