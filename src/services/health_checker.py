# src/services/health_checker.py

"""Adapter connectivity checks and retailer health roll-up."""

import asyncio
import logging
from datetime import datetime
from typing import Any

from src.adapters.base_adapter import AdapterHealth
from src.adapters.registry import AdapterRegistry
from src.models.retailer import Retailer
from src.services.errors import CacheError
from src.services.health_tracker import RetailerHealthTracker
from src.storage.cache_store import CacheStore
from src.storage.price_store import PriceStore

logger = logging.getLogger("price_engine.health")


def health_payload(retailer: Retailer) -> dict[str, Any]:
    """Cacheable summary of one retailer's health."""
    return {
        "retailer_id": retailer.id,
        "status": retailer.health_status,
        "error_count": retailer.error_count,
        "success_count": retailer.success_count,
        "average_latency_ms": round(retailer.average_latency_ms, 1),
        "last_health_check": (
            retailer.last_health_check.isoformat()
            if retailer.last_health_check else None
        ),
    }


class HealthChecker:
    """Runs concurrent adapter health checks and flushes resolver counters."""

    def __init__(
        self,
        registry: AdapterRegistry,
        store: PriceStore,
        tracker: RetailerHealthTracker,
        cache: CacheStore | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.tracker = tracker
        self.cache = cache or CacheStore()

    async def check_all(self) -> list[AdapterHealth]:
        """Health-check every registered adapter concurrently."""
        adapters = self.registry.all_adapters()
        results: list[AdapterHealth] = list(await asyncio.gather(
            *(asyncio.to_thread(a.health_check) for a in adapters)
        ))
        for r in results:
            logger.info(
                "Health check %s: %s (%.0fms) %s",
                r.adapter,
                "ok" if r.healthy else "down",
                r.latency_ms,
                r.message,
            )
        return results

    async def refresh_retailer_health(self) -> dict[str, dict[str, Any]]:
        """Persist tracker counters onto retailer rows and cache them.

        Counters observed since the previous refresh are added to the
        stored totals; average latency is weighted by attempt count.
        """
        drained = self.tracker.drain()
        now = datetime.now()
        retailers = await asyncio.to_thread(self.store.list_active_retailers)
        report: dict[str, dict[str, Any]] = {}

        for retailer in retailers:
            counters = drained.get(retailer.id)
            if counters is not None and counters.attempts:
                prior = retailer.error_count + retailer.success_count
                total = prior + counters.attempts
                retailer.average_latency_ms = (
                    retailer.average_latency_ms * prior
                    + counters.total_latency_ms
                ) / total
                retailer.error_count += counters.errors
                retailer.success_count += counters.successes
            retailer.last_health_check = now
            await asyncio.to_thread(
                self.store.update_retailer_health,
                retailer.id,
                retailer.error_count,
                retailer.success_count,
                retailer.average_latency_ms,
                now,
            )
            payload = health_payload(retailer)
            try:
                self.cache.set_retailer_health(retailer.id, payload)
            except CacheError as exc:
                logger.warning("Could not cache health for %s: %s", retailer.id, exc)
            report[retailer.id] = payload
            logger.info(
                "Retailer %s is %s (%d ok / %d errors)",
                retailer.id,
                payload["status"],
                retailer.success_count,
                retailer.error_count,
            )
        return report

    async def get_retailer_health(self, retailer_id: str) -> dict[str, Any] | None:
        """Cached health when fresh, else read from the store."""
        try:
            cached = self.cache.get_retailer_health(retailer_id)
        except CacheError as exc:
            logger.warning("Ignoring cached health: %s", exc)
            cached = None
        if cached is not None:
            return cached
        retailer = await asyncio.to_thread(self.store.get_retailer, retailer_id)
        if retailer is None:
            return None
        payload = health_payload(retailer)
        try:
            self.cache.set_retailer_health(retailer_id, payload)
        except CacheError as exc:
            logger.warning("Could not cache health for %s: %s", retailer_id, exc)
        return payload
