# src/config/settings.py

"""Central configuration for the price_engine service."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the price_engine service."""

    # --- HTTP ---
    REQUEST_DELAY: float = 1.0          # Seconds between requests
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out
    MAX_RETRIES: int = 3                # Retry count on transient failures

    # --- Resilience ---
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures to trip
    CIRCUIT_BREAKER_COOLDOWN: float = 300.0  # Seconds before half-open
    MAX_DELAY_MULTIPLIER: int = 8       # Cap for adaptive backoff
    CAPTCHA_KEYWORDS: list[str] = [
        "captcha",
        "verify you are human",
        "unusual traffic",
        "automated requests",
    ]
    HEALTH_TIMEOUT: int = 10            # Seconds per adapter health check
    HEALTH_SLOW_MS: float = 5000.0

    # --- Aggregation ---
    PRICE_CACHE_TTL: int = 600          # prices:{productId}
    RETAILER_HEALTH_TTL: int = 300      # retailer_health:{retailerId}
    FANOUT_CONCURRENCY: int = 12        # Concurrent adapter calls per product
    HISTORY_DEFAULT_DAYS: int = 30

    # --- Queue workers ---
    WORKER_POLL_INTERVAL: float = 1.0
    JOB_LEASE_SECONDS: float = 900.0    # Active jobs past this are requeued

    # --- Managed crawler (Apify) ---
    APIFY_BASE_URL: str = "https://api.apify.com/v2"
    APIFY_POLL_INTERVAL: float = 10.0
    APIFY_MAX_POLLS: int = 30           # ~5 minutes at 10s
    APIFY_ACTORS: dict[str, str] = {
        "amazon": "apify~web-scraper",
        "walmart": "apify~web-scraper",
        "ebay": "apify~web-scraper",
        "bestbuy": "apify~web-scraper",
        "zalando": "apify~web-scraper",
        "farfetch": "apify~web-scraper",
    }

    # --- Headless browser ---
    BROWSER_NAV_TIMEOUT_MS: int = 30_000
    BROWSER_SETTLE_MS: int = 2_000

    # --- Credentials (.env) ---
    AMAZON_ACCESS_KEY: str = os.getenv("AMAZON_ACCESS_KEY", "")
    AMAZON_SECRET_KEY: str = os.getenv("AMAZON_SECRET_KEY", "")
    AMAZON_ASSOCIATE_TAG: str = os.getenv("AMAZON_ASSOCIATE_TAG", "")
    WALMART_API_KEY: str = os.getenv("WALMART_API_KEY", "")
    EBAY_APP_ID: str = os.getenv("EBAY_APP_ID", "")
    BESTBUY_API_KEY: str = os.getenv("BESTBUY_API_KEY", "")
    APIFY_API_TOKEN: str = os.getenv("APIFY_API_TOKEN", "")

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": "en-US,en;q=0.9",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "none",
        "sec-fetch-user": "?1",
        "Upgrade-Insecure-Requests": "1",
    }

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    PRICE_DB_PATH: Path = DATA_DIR / "prices.db"
    JOB_DB_PATH: Path = DATA_DIR / "jobs.db"
    CACHE_DB_PATH: Path = DATA_DIR / "cache.db"
    LOGS_DIR: Path = BASE_DIR / "logs"

    # --- Adapter registries ---
    # API adapters are keyed by the lower-cased retailer name.
    API_ADAPTERS: list[dict[str, str]] = [
        {
            "retailer": "amazon",
            "adapter": "src.adapters.amazon_api.AmazonApiAdapter",
        },
        {
            "retailer": "walmart",
            "adapter": "src.adapters.walmart_api.WalmartApiAdapter",
        },
        {
            "retailer": "ebay",
            "adapter": "src.adapters.ebay_api.EbayApiAdapter",
        },
        {
            "retailer": "bestbuy",
            "adapter": "src.adapters.bestbuy_api.BestBuyApiAdapter",
        },
    ]
    SCRAPING_ADAPTERS: list[str] = [
        "src.adapters.managed_crawler.ManagedCrawlerAdapter",
        "src.adapters.headless_browser.HeadlessBrowserAdapter",
        "src.adapters.html_scraper.HtmlScraperAdapter",
    ]
