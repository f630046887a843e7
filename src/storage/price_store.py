# src/storage/price_store.py

"""SQLite persistence for catalog reads, live quotes and price history."""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, cast

from src.config.settings import Settings
from src.models.price_quote import (
    DataQuality,
    PriceHistoryEntry,
    PriceQuote,
    QuoteSource,
    StockStatus,
)
from src.models.product import Product
from src.models.retailer import Retailer

logger = logging.getLogger("price_engine.store")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS products (
    id       TEXT PRIMARY KEY,
    name     TEXT NOT NULL,
    brand    TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS retailers (
    id                 TEXT    PRIMARY KEY,
    name               TEXT    NOT NULL,
    domain             TEXT    NOT NULL DEFAULT '',
    currency           TEXT    NOT NULL DEFAULT 'USD',
    has_api            INTEGER NOT NULL DEFAULT 0,
    has_scraper        INTEGER NOT NULL DEFAULT 0,
    is_active          INTEGER NOT NULL DEFAULT 1,
    trust_score        REAL    NOT NULL DEFAULT 1.0,
    selectors          TEXT    NOT NULL DEFAULT '{}',
    error_count        INTEGER NOT NULL DEFAULT 0,
    success_count      INTEGER NOT NULL DEFAULT 0,
    average_latency_ms REAL    NOT NULL DEFAULT 0,
    last_health_check  TEXT
);

CREATE TABLE IF NOT EXISTS price_quotes (
    product_id           TEXT    NOT NULL,
    retailer_id          TEXT    NOT NULL,
    price                REAL    NOT NULL,
    currency             TEXT    NOT NULL DEFAULT 'USD',
    product_url          TEXT    NOT NULL DEFAULT '',
    in_stock             INTEGER NOT NULL DEFAULT 1,
    stock_status         TEXT    NOT NULL DEFAULT 'in_stock',
    availability_message TEXT    NOT NULL DEFAULT '',
    original_price       REAL,
    discount             REAL,
    discount_percentage  REAL,
    image_url            TEXT    NOT NULL DEFAULT '',
    shipping_cost        REAL,
    estimated_delivery   TEXT    NOT NULL DEFAULT '',
    source               TEXT    NOT NULL,
    confidence           REAL    NOT NULL,
    data_quality         TEXT    NOT NULL,
    fetched_at           TEXT    NOT NULL,
    created_at           TEXT    NOT NULL,
    updated_at           TEXT    NOT NULL,
    UNIQUE (product_id, retailer_id)
);

CREATE TABLE IF NOT EXISTS price_history (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id     TEXT    NOT NULL,
    retailer_id    TEXT    NOT NULL,
    price          REAL    NOT NULL,
    currency       TEXT    NOT NULL,
    original_price REAL,
    in_stock       INTEGER NOT NULL,
    shipping_cost  REAL,
    source         TEXT    NOT NULL,
    confidence     REAL    NOT NULL,
    recorded_at    TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_history_pair_date
    ON price_history(product_id, retailer_id, recorded_at);
"""

# Single-statement upsert: the unique (product_id, retailer_id)
# constraint resolves concurrent writers, last write wins.
_UPSERT_QUOTE = """\
INSERT INTO price_quotes (
    product_id, retailer_id, price, currency, product_url, in_stock,
    stock_status, availability_message, original_price, discount,
    discount_percentage, image_url, shipping_cost, estimated_delivery,
    source, confidence, data_quality, fetched_at, created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(product_id, retailer_id) DO UPDATE SET
    price=excluded.price,
    currency=excluded.currency,
    product_url=excluded.product_url,
    in_stock=excluded.in_stock,
    stock_status=excluded.stock_status,
    availability_message=excluded.availability_message,
    original_price=excluded.original_price,
    discount=excluded.discount,
    discount_percentage=excluded.discount_percentage,
    image_url=excluded.image_url,
    shipping_cost=excluded.shipping_cost,
    estimated_delivery=excluded.estimated_delivery,
    source=excluded.source,
    confidence=excluded.confidence,
    data_quality=excluded.data_quality,
    fetched_at=excluded.fetched_at,
    updated_at=excluded.updated_at
"""

_INSERT_HISTORY = """\
INSERT INTO price_history (
    product_id, retailer_id, price, currency, original_price,
    in_stock, shipping_cost, source, confidence, recorded_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_QUOTE_COLUMNS = (
    "product_id, retailer_id, price, currency, product_url, in_stock, "
    "stock_status, availability_message, original_price, discount, "
    "discount_percentage, image_url, shipping_cost, estimated_delivery, "
    "source, confidence, data_quality, fetched_at"
)

_HISTORY_COLUMNS = (
    "id, product_id, retailer_id, price, currency, original_price, "
    "in_stock, shipping_cost, source, confidence, recorded_at"
)

_RETAILER_COLUMNS = (
    "id, name, domain, currency, has_api, has_scraper, is_active, "
    "trust_score, selectors, error_count, success_count, "
    "average_latency_ms, last_health_check"
)


def _row_to_retailer(row: tuple[Any, ...]) -> Retailer:
    selectors = cast(dict[str, str], json.loads(row[8] or "{}"))
    return Retailer(
        id=row[0],
        name=row[1],
        domain=row[2],
        currency=row[3],
        has_api=bool(row[4]),
        has_scraper=bool(row[5]),
        is_active=bool(row[6]),
        trust_score=row[7],
        selectors=selectors,
        error_count=row[9],
        success_count=row[10],
        average_latency_ms=row[11],
        last_health_check=(
            datetime.fromisoformat(row[12]) if row[12] else None
        ),
    )


def _row_to_quote(row: tuple[Any, ...]) -> PriceQuote:
    return PriceQuote(
        product_id=row[0],
        retailer_id=row[1],
        price=row[2],
        currency=row[3],
        product_url=row[4],
        in_stock=bool(row[5]),
        stock_status=StockStatus(row[6]),
        availability_message=row[7],
        original_price=row[8],
        discount=row[9],
        discount_percentage=row[10],
        image_url=row[11],
        shipping_cost=row[12],
        estimated_delivery=row[13],
        source=QuoteSource(row[14]),
        confidence=row[15],
        data_quality=DataQuality(row[16]),
        fetched_at=datetime.fromisoformat(row[17]),
    )


def _row_to_history(row: tuple[Any, ...]) -> PriceHistoryEntry:
    return PriceHistoryEntry(
        id=row[0],
        product_id=row[1],
        retailer_id=row[2],
        price=row[3],
        currency=row[4],
        original_price=row[5],
        in_stock=bool(row[6]),
        shipping_cost=row[7],
        source=QuoteSource(row[8]),
        confidence=row[9],
        recorded_at=datetime.fromisoformat(row[10]),
    )


def _catalog_rows(
    catalog: dict[str, Any], section: str, filepath: Path,
) -> list[dict[str, Any]]:
    """Entries of one catalog section that are objects with an id."""
    entries = catalog.get(section) or []
    if not isinstance(entries, list):
        logger.warning("Catalog %s: '%s' is not a list", filepath.name, section)
        return []
    rows: list[dict[str, Any]] = []
    for index, row in enumerate(entries):
        if not isinstance(row, dict) or not row.get("id"):
            logger.warning(
                "Skipping %s[%d] in %s: not an object with an id",
                section, index, filepath.name,
            )
            continue
        rows.append(row)
    return rows


class PriceStore:
    """SQLite-backed store for products, retailers, quotes and history.

    History rows are insert-only: nothing in this class updates or
    deletes them.
    """

    def __init__(
        self, db_path: Path | None = None,
    ) -> None:
        path = db_path or Settings.PRICE_DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(path), check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        # One connection is shared by every to_thread worker
        self._lock = threading.Lock()
        logger.debug("PriceStore opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def _query(
        self, sql: str, params: tuple[Any, ...] = (),
    ) -> list[tuple[Any, ...]]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    # ── Catalog ──────────────────────────────────────────

    def upsert_product(self, product: Product) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO products (id, name, brand, category) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET name=excluded.name, "
                "brand=excluded.brand, category=excluded.category",
                (product.id, product.name, product.brand, product.category),
            )

    def get_product(self, product_id: str) -> Product | None:
        rows = self._query(
            "SELECT id, name, brand, category FROM products WHERE id = ?",
            (product_id,),
        )
        if not rows:
            return None
        r = rows[0]
        return Product(id=r[0], name=r[1], brand=r[2], category=r[3])

    def upsert_retailer(self, retailer: Retailer) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO retailers (id, name, domain, currency, "
                "has_api, has_scraper, is_active, trust_score, selectors) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET name=excluded.name, "
                "domain=excluded.domain, currency=excluded.currency, "
                "has_api=excluded.has_api, "
                "has_scraper=excluded.has_scraper, "
                "is_active=excluded.is_active, "
                "trust_score=excluded.trust_score, "
                "selectors=excluded.selectors",
                (
                    retailer.id,
                    retailer.name,
                    retailer.domain,
                    retailer.currency,
                    int(retailer.has_api),
                    int(retailer.has_scraper),
                    int(retailer.is_active),
                    retailer.trust_score,
                    json.dumps(retailer.selectors),
                ),
            )

    def get_retailer(self, retailer_id: str) -> Retailer | None:
        rows = self._query(
            f"SELECT {_RETAILER_COLUMNS} FROM retailers WHERE id = ?",
            (retailer_id,),
        )
        return _row_to_retailer(rows[0]) if rows else None

    def list_active_retailers(self) -> list[Retailer]:
        rows = self._query(
            f"SELECT {_RETAILER_COLUMNS} FROM retailers "
            "WHERE is_active = 1 ORDER BY id",
        )
        return [_row_to_retailer(r) for r in rows]

    def update_retailer_health(
        self,
        retailer_id: str,
        error_count: int,
        success_count: int,
        average_latency_ms: float,
        checked_at: datetime | None = None,
    ) -> None:
        """Overwrite a retailer's health counters."""
        stamp = (checked_at or datetime.now()).isoformat()
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE retailers SET error_count = ?, success_count = ?, "
                "average_latency_ms = ?, last_health_check = ? "
                "WHERE id = ?",
                (
                    error_count,
                    success_count,
                    average_latency_ms,
                    stamp,
                    retailer_id,
                ),
            )

    # ── Quotes ───────────────────────────────────────────

    def save_quotes(
        self,
        quotes: list[PriceQuote],
        recorded_at: datetime | None = None,
    ) -> int:
        """Upsert each live quote and append one history row per quote.

        Everything commits in one transaction.  Returns the number of
        quotes written.
        """
        if not quotes:
            return 0
        now = recorded_at or datetime.now()
        ts = now.isoformat()

        with self._lock, self._conn:
            for q in quotes:
                self._conn.execute(
                    _UPSERT_QUOTE,
                    (
                        q.product_id,
                        q.retailer_id,
                        q.price,
                        q.currency,
                        q.product_url,
                        int(q.in_stock),
                        q.stock_status.value,
                        q.availability_message,
                        q.original_price,
                        q.discount,
                        q.discount_percentage,
                        q.image_url,
                        q.shipping_cost,
                        q.estimated_delivery,
                        q.source.value,
                        q.confidence,
                        q.data_quality.value,
                        q.fetched_at.isoformat(),
                        ts,
                        ts,
                    ),
                )
                self._conn.execute(
                    _INSERT_HISTORY,
                    (
                        q.product_id,
                        q.retailer_id,
                        q.price,
                        q.currency,
                        q.original_price,
                        int(q.in_stock),
                        q.shipping_cost,
                        q.source.value,
                        q.confidence,
                        ts,
                    ),
                )

        logger.info("Saved %d price quotes at %s", len(quotes), ts)
        return len(quotes)

    def get_quote(
        self, product_id: str, retailer_id: str,
    ) -> PriceQuote | None:
        rows = self._query(
            f"SELECT {_QUOTE_COLUMNS} FROM price_quotes "
            "WHERE product_id = ? AND retailer_id = ?",
            (product_id, retailer_id),
        )
        return _row_to_quote(rows[0]) if rows else None

    def get_quotes_for_product(
        self, product_id: str,
    ) -> list[PriceQuote]:
        rows = self._query(
            f"SELECT {_QUOTE_COLUMNS} FROM price_quotes "
            "WHERE product_id = ? ORDER BY price ASC",
            (product_id,),
        )
        return [_row_to_quote(r) for r in rows]

    # ── History ──────────────────────────────────────────

    def get_price_history(
        self,
        product_id: str,
        retailer_id: str | None = None,
        since: datetime | None = None,
    ) -> list[PriceHistoryEntry]:
        """Return history rows for a product, newest first."""
        sql = (
            f"SELECT {_HISTORY_COLUMNS} FROM price_history "
            "WHERE product_id = ?"
        )
        params: list[Any] = [product_id]
        if retailer_id is not None:
            sql += " AND retailer_id = ?"
            params.append(retailer_id)
        if since is not None:
            sql += " AND recorded_at >= ?"
            params.append(since.isoformat())
        sql += " ORDER BY recorded_at DESC, id DESC"
        rows = self._query(sql, tuple(params))
        return [_row_to_history(r) for r in rows]

    def get_trend_summary(
        self, product_id: str, retailer_id: str,
    ) -> dict[str, object] | None:
        """Compute min / max / avg / latest price for one pair."""
        rows = self._query(
            "SELECT MIN(price), MAX(price), AVG(price), COUNT(id) "
            "FROM price_history WHERE product_id = ? AND retailer_id = ?",
            (product_id, retailer_id),
        )
        row = rows[0] if rows else None
        if row is None or row[3] == 0:
            return None
        latest = self._query(
            "SELECT price FROM price_history "
            "WHERE product_id = ? AND retailer_id = ? "
            "ORDER BY recorded_at DESC, id DESC LIMIT 1",
            (product_id, retailer_id),
        )
        return {
            "min": row[0],
            "max": row[1],
            "avg": round(row[2], 2),
            "count": row[3],
            "latest": latest[0][0] if latest else 0.0,
        }

    # ── Stats ────────────────────────────────────────────

    def counts(self) -> dict[str, int]:
        """Row counts for the monitoring view."""
        with self._lock:
            cur = self._conn.cursor()
            products = cur.execute(
                "SELECT COUNT(*) FROM products"
            ).fetchone()[0]
            active = cur.execute(
                "SELECT COUNT(*) FROM retailers WHERE is_active = 1"
            ).fetchone()[0]
            quotes = cur.execute(
                "SELECT COUNT(*) FROM price_quotes"
            ).fetchone()[0]
            history = cur.execute(
                "SELECT COUNT(*) FROM price_history"
            ).fetchone()[0]
        return {
            "products": products,
            "active_retailers": active,
            "quotes": quotes,
            "history": history,
        }

    # ── Catalog import ───────────────────────────────────

    def import_catalog(self, filepath: Path) -> tuple[int, int]:
        """Load products and retailers from a JSON catalog file.

        Expected shape: ``{"products": [...], "retailers": [...]}``.
        Returns ``(products, retailers)`` imported.
        """
        try:
            with open(filepath, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to read %s: %s", filepath.name, exc)
            return 0, 0

        if not isinstance(data, dict):
            logger.warning("Catalog %s is not a JSON object", filepath.name)
            return 0, 0

        catalog = cast(dict[str, Any], data)
        product_rows = _catalog_rows(catalog, "products", filepath)
        retailer_rows = _catalog_rows(catalog, "retailers", filepath)

        for row in product_rows:
            self.upsert_product(Product.from_dict(row))

        for row in retailer_rows:
            self.upsert_retailer(Retailer(
                id=str(row["id"]),
                name=str(row.get("name", row["id"])),
                domain=str(row.get("domain", "")),
                currency=str(row.get("currency", "USD")),
                has_api=bool(row.get("has_api", False)),
                has_scraper=bool(row.get("has_scraper", False)),
                is_active=bool(row.get("is_active", True)),
                trust_score=float(row.get("trust_score", 1.0)),
                selectors={
                    str(k): str(v)
                    for k, v in dict(row.get("selectors", {})).items()
                },
            ))

        logger.info(
            "Catalog import complete: %d products, %d retailers",
            len(product_rows),
            len(retailer_rows),
        )
        return len(product_rows), len(retailer_rows)
