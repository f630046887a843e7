# src/services/price_engine.py

"""Cross-retailer price aggregation with cache-aside reads."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any

from src.config.settings import Settings
from src.models.comparison import ComparisonResult
from src.models.price_quote import PriceHistoryEntry, PriceQuote
from src.models.product import Product
from src.models.retailer import Retailer
from src.services.errors import CacheError, ProductNotFound, RetailerNotFound
from src.services.source_resolver import SourceResolver
from src.storage.cache_store import CacheStore
from src.storage.price_store import PriceStore

logger = logging.getLogger("price_engine.engine")


class PriceEngine:
    """Fans a product out over every active retailer and aggregates.

    Adapters and SQLite calls are blocking, so each one runs in a worker
    thread via ``asyncio.to_thread``.  At most ``FANOUT_CONCURRENCY``
    adapter calls are in flight per comparison.
    """

    def __init__(
        self,
        store: PriceStore,
        resolver: SourceResolver,
        cache: CacheStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.store = store
        self.resolver = resolver
        self.cache = cache or CacheStore(self.settings)

    # ── Private helpers ──────────────────────────────────

    async def _load_product(self, product_id: str) -> Product:
        product = await asyncio.to_thread(self.store.get_product, product_id)
        if product is None:
            raise ProductNotFound(product_id)
        return product

    async def _load_retailer(self, retailer_id: str) -> Retailer:
        retailer = await asyncio.to_thread(
            self.store.get_retailer, retailer_id,
        )
        if retailer is None:
            raise RetailerNotFound(retailer_id)
        return retailer

    def _cached(self, product_id: str) -> ComparisonResult | None:
        try:
            return self.cache.get_comparison(product_id)
        except CacheError as exc:
            logger.warning("Ignoring cache entry: %s", exc)
            return None

    def _store_in_cache(self, result: ComparisonResult) -> None:
        try:
            self.cache.set_comparison(result)
        except CacheError as exc:
            logger.warning(
                "Could not cache comparison for %s: %s",
                result.product.id,
                exc,
            )

    async def _fan_out(
        self, product: Product, retailers: list[Retailer],
    ) -> list[PriceQuote]:
        """Resolve every retailer concurrently and keep the hits."""
        semaphore = asyncio.Semaphore(self.settings.FANOUT_CONCURRENCY)

        async def run_one(retailer: Retailer) -> PriceQuote | None:
            async with semaphore:
                return await asyncio.to_thread(
                    self.resolver.resolve, product, retailer,
                )

        outcomes = await asyncio.gather(
            *(run_one(r) for r in retailers), return_exceptions=True,
        )

        quotes: list[PriceQuote] = []
        for retailer, outcome in zip(retailers, outcomes):
            if isinstance(outcome, PriceQuote):
                quotes.append(outcome)
            elif isinstance(outcome, BaseException):
                logger.error(
                    "Resolver error for %s at %s: %s",
                    product.id,
                    retailer.id,
                    outcome,
                    exc_info=outcome,
                )
        return quotes

    async def _persist(
        self, product_id: str, quotes: list[PriceQuote],
    ) -> None:
        await asyncio.to_thread(self.store.save_quotes, quotes)
        self.invalidate(product_id)

    # ── Synchronous read path ────────────────────────────

    async def get_comparison(self, product_id: str) -> ComparisonResult:
        """Current cross-retailer comparison for one product.

        Served from cache when a result younger than ``PRICE_CACHE_TTL``
        exists.  Otherwise every active retailer is queried, the quotes
        are persisted with one history row each, and the result is
        cached.  An empty result is returned but not cached.

        Raises:
            ProductNotFound: ``product_id`` is not in the catalog.
        """
        cached = self._cached(product_id)
        if cached is not None:
            logger.debug("Cache hit for %s", product_id)
            return cached

        product = await self._load_product(product_id)
        retailers = await asyncio.to_thread(self.store.list_active_retailers)
        quotes = await self._fan_out(product, retailers)
        result = ComparisonResult.from_quotes(product, quotes)

        if not quotes:
            logger.warning(
                "No prices resolved for %s across %d retailers",
                product_id,
                len(retailers),
            )
            return result

        await asyncio.to_thread(self.store.save_quotes, quotes)
        self._store_in_cache(result)
        logger.info(
            "Compared %s: %d/%d retailers, lowest %.2f at %s",
            product_id,
            len(quotes),
            len(retailers),
            result.lowest_price.price if result.lowest_price else 0.0,
            result.lowest_price.retailer_id if result.lowest_price else "-",
        )
        return result

    # ── Single-retailer refreshes ────────────────────────

    async def scrape_one(
        self, retailer_id: str, product_url: str, product_id: str,
    ) -> PriceQuote | None:
        """Scrape one known product page and persist the quote.

        Raises:
            RetailerNotFound: unknown ``retailer_id``.
            ProductNotFound: unknown ``product_id``.
        """
        retailer = await self._load_retailer(retailer_id)
        product = await self._load_product(product_id)
        quote = await asyncio.to_thread(
            self.resolver.scrape, product, retailer, product_url,
        )
        if quote is not None:
            await self._persist(product_id, [quote])
        return quote

    async def update_product_price(
        self, product_id: str, retailer_id: str,
    ) -> PriceQuote | None:
        """Re-resolve one (product, retailer) pair and persist it.

        Raises:
            ProductNotFound: unknown ``product_id``.
            RetailerNotFound: unknown ``retailer_id``.
        """
        product = await self._load_product(product_id)
        retailer = await self._load_retailer(retailer_id)
        quote = await asyncio.to_thread(
            self.resolver.resolve, product, retailer,
        )
        if quote is not None:
            await self._persist(product_id, [quote])
        return quote

    def invalidate(self, product_id: str) -> bool:
        """Drop the cached comparison so the next read recomputes."""
        return self.cache.invalidate_comparison(product_id)

    # ── History & monitoring ─────────────────────────────

    async def get_price_history(
        self,
        product_id: str,
        retailer_id: str | None = None,
        days: int | None = None,
    ) -> list[PriceHistoryEntry]:
        """History rows from the last ``days`` days, newest first."""
        window = days if days is not None else self.settings.HISTORY_DEFAULT_DAYS
        since = datetime.now() - timedelta(days=window)
        return await asyncio.to_thread(
            self.store.get_price_history, product_id, retailer_id, since,
        )

    async def get_trend_summary(
        self, product_id: str, retailer_id: str,
    ) -> dict[str, object] | None:
        return await asyncio.to_thread(
            self.store.get_trend_summary, product_id, retailer_id,
        )

    async def get_engine_stats(self) -> dict[str, Any]:
        counts = await asyncio.to_thread(self.store.counts)
        return {
            **counts,
            **self.resolver.tracker.summary(),
            "cache": self.cache.stats(),
            "timestamp": datetime.now().isoformat(),
        }
