# src/adapters/base_adapter.py

"""Abstract base class for every price source adapter."""

import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from urllib.parse import quote_plus, urlparse

from curl_cffi import requests as curl_requests

from src.config.settings import Settings
from src.models.price_quote import (
    DataQuality,
    PriceQuote,
    QuoteSource,
    StockStatus,
)
from src.models.product import Product
from src.models.retailer import Retailer
from src.services.errors import SourceError, SourceUnavailable


class Capability(str, Enum):
    """What kind of source an adapter talks to.

    The source resolver dispatches on this tag, and the declaration
    order below is the order of the scraping chain.
    """

    FETCH_BY_API = "api"
    SCRAPE_BY_MANAGED_CRAWLER = "managed_crawler"
    SCRAPE_BY_HEADLESS_BROWSER = "headless_browser"
    SCRAPE_BY_HTML = "html"


SCRAPING_ORDER: tuple[Capability, ...] = (
    Capability.SCRAPE_BY_MANAGED_CRAWLER,
    Capability.SCRAPE_BY_HEADLESS_BROWSER,
    Capability.SCRAPE_BY_HTML,
)

_OUT_OF_STOCK_KEYWORDS = (
    "out of stock",
    "unavailable",
    "sold out",
    "coming soon",
    "discontinued",
)
_IN_STOCK_KEYWORDS = (
    "in stock",
    "available",
    "add to cart",
    "buy now",
    "purchase",
)
_LIMITED_KEYWORDS = (
    "left in stock",
    "few left",
    "limited stock",
    "low stock",
)
_PRE_ORDER_KEYWORDS = ("pre-order", "preorder", "pre order")


def search_url(product: Product, retailer: Retailer) -> str | None:
    """Retailer search page for a product, or ``None`` without a domain."""
    if not retailer.domain:
        return None
    return (
        f"https://{retailer.domain}/search?q="
        f"{quote_plus(product.search_terms)}"
    )


@dataclass
class _HostState:
    """Circuit breaker and adaptive delay for one upstream host."""

    delay: float
    failures: int = 0
    circuit_open: bool = False
    opened_at: float = 0.0


@dataclass
class AdapterHealth:
    """Outcome of one adapter connectivity check."""

    adapter: str
    healthy: bool
    latency_ms: float
    message: str = ""
    checked_at: datetime = field(default_factory=datetime.now)


class BaseAdapter(ABC):
    """Common HTTP plumbing, resilience and parsing for adapters.

    Subclasses set ``capability``, ``confidence`` and ``data_quality``
    and implement :meth:`get_price`.  Contract for ``get_price``:

    * returns ``None`` when the source has no listing for the product,
    * raises :class:`SourceUnavailable` when the adapter is not
      configured,
    * raises :class:`SourceError` on network, HTTP or parse failure.
    """

    capability: Capability = Capability.FETCH_BY_API
    source: QuoteSource = QuoteSource.SCRAPER
    confidence: float = 0.75
    data_quality: DataQuality = DataQuality.MEDIUM

    # Cloudflare challenge page markers (checked before keyword scan)
    _CF_CHALLENGE_MARKERS: tuple[str, ...] = (
        "challenges.cloudflare.com",
        "cdn-cgi/challenge-platform",
        "just a moment",
        "cf-turnstile",
        "cf_chl_opt",
    )

    def __init__(
        self,
        adapter_name: str,
        settings: Settings | None = None,
    ) -> None:
        self.adapter_name = adapter_name
        self.logger = logging.getLogger(
            f"price_engine.adapters.{adapter_name}"
        )
        self.settings = settings or Settings()
        self.session = curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        # Breaker and delay state, keyed by lower-cased netloc
        self._hosts: dict[str, _HostState] = {}
        self._hosts_lock = threading.Lock()
        self._request_timeout: int = self.settings.REQUEST_TIMEOUT

    # ── Contract ─────────────────────────────────────────

    @abstractmethod
    def get_price(
        self,
        product: Product,
        retailer: Retailer,
        product_url: str | None = None,
    ) -> PriceQuote | None:
        """Fetch the current price of ``product`` at ``retailer``."""
        ...

    def is_configured(self) -> bool:
        """Whether credentials / tooling needed by this adapter exist."""
        return True

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise SourceUnavailable(
                f"{self.adapter_name} adapter is not configured"
            )

    def health_check(self) -> AdapterHealth:
        """Hit the source once; never raises."""
        if not self.is_configured():
            return AdapterHealth(
                adapter=self.adapter_name,
                healthy=False,
                latency_ms=0.0,
                message="not configured",
            )
        start = time.monotonic()
        try:
            resp = self.session.get(
                self._health_url(),
                headers=self._health_headers(),
                timeout=self.settings.HEALTH_TIMEOUT,
            )
        except Exception as exc:
            return AdapterHealth(
                adapter=self.adapter_name,
                healthy=False,
                latency_ms=(time.monotonic() - start) * 1000,
                message=str(exc)[:80],
            )
        elapsed_ms = (time.monotonic() - start) * 1000
        if resp.status_code >= 500:
            return AdapterHealth(
                adapter=self.adapter_name,
                healthy=False,
                latency_ms=elapsed_ms,
                message=f"HTTP {resp.status_code}",
            )
        message = ""
        if elapsed_ms > self.settings.HEALTH_SLOW_MS:
            message = "High latency"
        return AdapterHealth(
            adapter=self.adapter_name,
            healthy=True,
            latency_ms=elapsed_ms,
            message=message,
        )

    def _health_url(self) -> str:
        return "https://httpbin.org/html"

    def _health_headers(self) -> dict[str, str]:
        return dict(self.settings.DEFAULT_HEADERS)

    # ── Resilience ───────────────────────────────────────

    def _validate_response(
        self, resp: curl_requests.Response,
    ) -> bool:
        """Reject Cloudflare challenge pages and CAPTCHA walls."""
        text = resp.text
        if text.lstrip().startswith(("{", "[")):
            return True
        lower = text.lower()

        for marker in self._CF_CHALLENGE_MARKERS:
            if marker in lower:
                self.logger.warning(
                    "[%s] Cloudflare challenge detected (marker: '%s')",
                    self.adapter_name,
                    marker,
                )
                return False

        # Long pages with a body are real content, not a CAPTCHA wall
        if "<body" in lower and len(text) > 5000:
            return True
        for keyword in self.settings.CAPTCHA_KEYWORDS:
            if keyword in lower:
                self.logger.warning(
                    "[%s] CAPTCHA keyword '%s' detected",
                    self.adapter_name,
                    keyword,
                )
                return False
        return True

    def _host_state(self, url: str) -> _HostState:
        """Breaker and delay state for the host serving ``url``."""
        host = urlparse(url).netloc.lower()
        with self._hosts_lock:
            state = self._hosts.get(host)
            if state is None:
                state = _HostState(delay=self.settings.REQUEST_DELAY)
                self._hosts[host] = state
            return state

    def _current_delay(self, url: str) -> float:
        return self._host_state(url).delay

    def _check_circuit(self, url: str) -> bool:
        """Return True while the breaker for ``url``'s host blocks requests.

        After ``CIRCUIT_BREAKER_COOLDOWN`` seconds the breaker goes
        half-open and lets one trial request through.
        """
        state = self._host_state(url)
        with self._hosts_lock:
            if not state.circuit_open:
                return False
            elapsed = time.time() - state.opened_at
            if elapsed < self.settings.CIRCUIT_BREAKER_COOLDOWN:
                return True
            state.circuit_open = False
        self.logger.info(
            "[%s] Circuit breaker for %s half-open after %.0fs",
            self.adapter_name,
            urlparse(url).netloc,
            elapsed,
        )
        return False

    def _record_success(self, url: str) -> None:
        state = self._host_state(url)
        with self._hosts_lock:
            state.failures = 0
            state.circuit_open = False
            state.opened_at = 0.0
            state.delay = self.settings.REQUEST_DELAY

    def _record_failure(self, url: str) -> None:
        state = self._host_state(url)
        with self._hosts_lock:
            state.failures += 1
            failures = state.failures
            opened = failures >= self.settings.CIRCUIT_BREAKER_THRESHOLD
            if opened:
                state.circuit_open = True
                state.opened_at = time.time()
        if opened:
            self.logger.error(
                "[%s] Circuit breaker for %s opened after %d consecutive "
                "failures",
                self.adapter_name,
                urlparse(url).netloc,
                failures,
            )

    def _escalate_delay(self, url: str) -> float:
        """Double the host's delay, capped at the configured multiple."""
        ceiling = (
            self.settings.REQUEST_DELAY * self.settings.MAX_DELAY_MULTIPLIER
        )
        state = self._host_state(url)
        with self._hosts_lock:
            state.delay = min(state.delay * 2, ceiling)
            delay = state.delay
        self.logger.warning(
            "[%s] Rate-limited by %s, delay escalated to %.1fs",
            self.adapter_name,
            urlparse(url).netloc,
            delay,
        )
        return delay

    # ── HTTP ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        **kwargs: Any,
    ) -> curl_requests.Response | None:
        """Send with retries, adaptive delay and the circuit breaker.

        Returns ``None`` once every attempt has failed or while the
        breaker for the URL's host is open.
        """
        if self._check_circuit(url):
            self.logger.debug(
                "[%s] Circuit open, skipping %s", self.adapter_name, url,
            )
            return None
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = self.session.request(
                    method,
                    url,
                    headers=headers,
                    timeout=self._request_timeout,
                    **kwargs,
                )
            except Exception as exc:
                self.logger.warning(
                    "[%s] Request error on attempt %d: %s",
                    self.adapter_name,
                    attempt + 1,
                    exc,
                    exc_info=True,
                )
                time.sleep(self._current_delay(url) * (attempt + 1))
                continue

            if resp.status_code in (200, 201):
                if not self._validate_response(resp):
                    time.sleep(self._escalate_delay(url))
                    continue
                self._record_success(url)
                return resp
            if resp.status_code == 404:
                # Definitive answer; retrying will not change it
                self._record_success(url)
                return resp

            self.logger.warning(
                "[%s] HTTP %d on attempt %d",
                self.adapter_name,
                resp.status_code,
                attempt + 1,
            )
            if resp.status_code in (429, 403):
                time.sleep(self._escalate_delay(url))
        self._record_failure(url)
        return None

    def _fetch_get(
        self,
        url: str,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
    ) -> curl_requests.Response | None:
        return self._request("GET", url, headers, params=params)

    def _fetch_json(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        **kwargs: Any,
    ) -> Any | None:
        """Decode a JSON response body.

        Returns ``None`` on 404.

        Raises:
            SourceError: every attempt failed or the body is not JSON.
        """
        resp = self._request(method, url, headers, **kwargs)
        if resp is None:
            raise SourceError(
                f"{self.adapter_name}: request to {url} failed"
            )
        if resp.status_code == 404:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise SourceError(
                f"{self.adapter_name}: invalid JSON from {url}"
            ) from exc

    # ── Parsing helpers ──────────────────────────────────

    @staticmethod
    def extract_price(text: Any) -> float | None:
        """Pull the first number out of text like ``'$1,299.00'``."""
        if text is None or isinstance(text, bool):
            return None
        if isinstance(text, (int, float)):
            return float(text)
        cleaned = str(text).replace(",", "")
        match = re.search(r"\d+(?:\.\d+)?", cleaned)
        return float(match.group(0)) if match else None

    @staticmethod
    def determine_stock_status(text: Any) -> tuple[bool, StockStatus]:
        """Map free-form availability text to ``(in_stock, status)``.

        Out-of-stock phrases win over in-stock ones.  Unknown or empty
        text is treated as out of stock.
        """
        if isinstance(text, bool):
            return text, (
                StockStatus.IN_STOCK if text else StockStatus.OUT_OF_STOCK
            )
        if not text:
            return False, StockStatus.OUT_OF_STOCK
        lower = str(text).lower()
        if any(k in lower for k in _PRE_ORDER_KEYWORDS):
            return False, StockStatus.PRE_ORDER
        if any(k in lower for k in _OUT_OF_STOCK_KEYWORDS):
            return False, StockStatus.OUT_OF_STOCK
        if any(k in lower for k in _LIMITED_KEYWORDS):
            return True, StockStatus.LIMITED
        if any(k in lower for k in _IN_STOCK_KEYWORDS):
            return True, StockStatus.IN_STOCK
        return False, StockStatus.OUT_OF_STOCK

    def _build_quote(
        self,
        product: Product,
        retailer: Retailer,
        price: float,
        *,
        product_url: str = "",
        currency: str | None = None,
        in_stock: bool = True,
        stock_status: StockStatus | None = None,
        availability_message: str = "",
        original_price: float | None = None,
        image_url: str = "",
        shipping_cost: float | None = None,
        estimated_delivery: str = "",
    ) -> PriceQuote:
        """Assemble a quote with this adapter's provenance fields.

        Discount fields are derived only when ``original_price`` is
        above ``price``.
        """
        discount: float | None = None
        discount_pct: float | None = None
        if original_price and original_price > price:
            discount = round(original_price - price, 2)
            discount_pct = round(discount / original_price * 100, 2)
        if stock_status is None:
            stock_status = (
                StockStatus.IN_STOCK if in_stock
                else StockStatus.OUT_OF_STOCK
            )
        return PriceQuote(
            product_id=product.id,
            retailer_id=retailer.id,
            price=price,
            currency=currency or retailer.currency,
            product_url=product_url,
            in_stock=in_stock,
            stock_status=stock_status,
            availability_message=availability_message,
            original_price=original_price,
            discount=discount,
            discount_percentage=discount_pct,
            image_url=image_url,
            shipping_cost=shipping_cost,
            estimated_delivery=estimated_delivery,
            source=self.source,
            confidence=self.confidence,
            data_quality=self.data_quality,
        )
