# src/storage/cache_store.py

"""Key/value cache with per-key expiry, backed by SQLite.

The cache is an optimisation only.  Values are stored JSON-encoded so a
reader can never mutate what another reader will see, and so a bad
payload fails loudly as :class:`CacheError` instead of leaking out.

With a file path the entries are shared by every process that opens the
same file, so one CLI run can serve the next from cache.  Without one
the cache lives in memory for the life of the store.
"""

import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from src.config.settings import Settings
from src.models.comparison import ComparisonResult
from src.services.errors import CacheError

logger = logging.getLogger("price_engine.cache")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS cache_entries (
    key        TEXT PRIMARY KEY,
    payload    TEXT NOT NULL,
    expires_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cache_expires
    ON cache_entries(expires_at);
"""


def prices_key(product_id: str) -> str:
    return f"prices:{product_id}"


def retailer_health_key(retailer_id: str) -> str:
    return f"retailer_health:{retailer_id}"


@dataclass
class CacheEntry:
    """A serialised value and the wall-clock time it stops being valid."""

    key: str
    payload: str
    expires_at: float


class CacheStore:
    """TTL cache keyed by string.

    Expiry is passive: stale entries are dropped when read or when
    :meth:`purge_expired` runs.  Concurrent writers are last-writer-wins.
    Hit and miss counters are per store instance.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        db_path: Path | None = None,
    ) -> None:
        self.settings = settings or Settings()
        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(db_path) if db_path is not None else ":memory:",
            check_same_thread=False,
            timeout=30,
        )
        if db_path is not None:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _write(self, entry: CacheEntry) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO cache_entries (key, payload, expires_at) "
                "VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET "
                "payload = excluded.payload, "
                "expires_at = excluded.expires_at",
                (entry.key, entry.payload, entry.expires_at),
            )
            self._conn.commit()

    # ── Generic operations ───────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the decoded value or ``None`` on miss / expiry.

        Raises:
            CacheError: the stored payload cannot be decoded.
        """
        now = time.time()
        with self._lock:
            row = self._conn.execute(
                "SELECT payload, expires_at FROM cache_entries WHERE key = ?",
                (key,),
            ).fetchone()
            if row is not None and row[1] <= now:
                self._conn.execute(
                    "DELETE FROM cache_entries WHERE key = ? "
                    "AND expires_at <= ?",
                    (key, now),
                )
                self._conn.commit()
                row = None
            if row is None:
                self._misses += 1
                return None
            self._hits += 1
            payload = row[0]

        try:
            return json.loads(payload)
        except json.JSONDecodeError as exc:
            self.delete(key)
            raise CacheError(f"Corrupt cache entry for '{key}'") from exc

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store ``value`` for ``ttl_seconds``.

        Raises:
            CacheError: ``value`` is not JSON-serialisable.
        """
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise CacheError(
                f"Value for '{key}' is not serialisable"
            ) from exc

        self._write(CacheEntry(
            key=key,
            payload=payload,
            expires_at=time.time() + ttl_seconds,
        ))
        logger.debug("Cached '%s' for %ss", key, ttl_seconds)

    def delete(self, key: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM cache_entries WHERE key = ?", (key,),
            )
            self._conn.commit()
        return cur.rowcount > 0

    def clear(self) -> int:
        """Purge all entries. Returns how many were removed."""
        with self._lock:
            cur = self._conn.execute("DELETE FROM cache_entries")
            self._conn.commit()
        logger.info("Cache manually purged (%d entries removed)", cur.rowcount)
        return cur.rowcount

    def purge_expired(self) -> int:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM cache_entries WHERE expires_at <= ?",
                (time.time(),),
            )
            self._conn.commit()
        if cur.rowcount:
            logger.debug("Evicted %d expired cache entries", cur.rowcount)
        return cur.rowcount

    def stats(self) -> dict[str, int]:
        with self._lock:
            (entries,) = self._conn.execute(
                "SELECT COUNT(*) FROM cache_entries"
            ).fetchone()
            return {
                "entries": entries,
                "hits": self._hits,
                "misses": self._misses,
            }

    # ── Typed helpers ────────────────────────────────────

    def get_comparison(self, product_id: str) -> ComparisonResult | None:
        data = self.get(prices_key(product_id))
        if data is None:
            return None
        try:
            return ComparisonResult.from_dict(data)
        except (KeyError, TypeError, ValueError, IndexError) as exc:
            self.delete(prices_key(product_id))
            raise CacheError(
                f"Unreadable comparison cached for {product_id}"
            ) from exc

    def set_comparison(self, result: ComparisonResult) -> None:
        self.set(
            prices_key(result.product.id),
            result.to_dict(),
            self.settings.PRICE_CACHE_TTL,
        )

    def invalidate_comparison(self, product_id: str) -> bool:
        return self.delete(prices_key(product_id))

    def get_retailer_health(
        self, retailer_id: str,
    ) -> dict[str, Any] | None:
        data = self.get(retailer_health_key(retailer_id))
        return data if isinstance(data, dict) else None

    def set_retailer_health(
        self, retailer_id: str, health: dict[str, Any],
    ) -> None:
        self.set(
            retailer_health_key(retailer_id),
            health,
            self.settings.RETAILER_HEALTH_TTL,
        )
