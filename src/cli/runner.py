# src/cli/runner.py

"""Headless CLI commands wired onto the price engine and job queues."""

import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.table import Table

from src.adapters.registry import AdapterRegistry
from src.config.settings import Settings
from src.models.comparison import ComparisonResult
from src.models.price_quote import PriceHistoryEntry
from src.services.errors import ProductNotFound, RetailerNotFound
from src.services.health_checker import HealthChecker
from src.services.health_tracker import RetailerHealthTracker
from src.services.job_handlers import JobHandlers
from src.services.job_queue import JobQueue
from src.services.price_engine import PriceEngine
from src.services.queue_worker import WorkerPool
from src.services.source_resolver import SourceResolver
from src.storage.cache_store import CacheStore
from src.storage.job_store import JobStore
from src.storage.price_store import PriceStore

logger = logging.getLogger("price_engine.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)


@dataclass
class Services:
    """Every long-lived collaborator, built once per CLI invocation."""

    settings: Settings
    store: PriceStore
    job_store: JobStore
    cache: CacheStore
    tracker: RetailerHealthTracker
    registry: AdapterRegistry
    engine: PriceEngine
    job_queue: JobQueue

    def close(self) -> None:
        self.store.close()
        self.job_store.close()
        self.cache.close()


def build_services(
    settings: Settings | None = None,
    registry: AdapterRegistry | None = None,
) -> Services:
    cfg = settings or Settings()
    store = PriceStore(cfg.PRICE_DB_PATH)
    job_store = JobStore(cfg.JOB_DB_PATH)
    cache = CacheStore(cfg, cfg.CACHE_DB_PATH)
    tracker = RetailerHealthTracker()
    adapters = registry or AdapterRegistry.from_settings(cfg)
    resolver = SourceResolver(adapters, tracker)
    engine = PriceEngine(store, resolver, cache, cfg)
    return Services(
        settings=cfg,
        store=store,
        job_store=job_store,
        cache=cache,
        tracker=tracker,
        registry=adapters,
        engine=engine,
        job_queue=JobQueue(job_store),
    )


# ── Rendering ────────────────────────────────────────────


def _print_comparison(result: ComparisonResult) -> None:
    """Render a Rich table of quotes, cheapest first."""
    table = Table(
        title=f"Prices for {result.product.name}",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("#", style="dim", width=4)
    table.add_column("Retailer", style="magenta")
    table.add_column("Price", justify="right", style="green")
    table.add_column("Was", justify="right", style="dim")
    table.add_column("Stock", justify="center")
    table.add_column("Source")
    table.add_column("URL", overflow="fold", style="dim")

    for idx, q in enumerate(sorted(result.prices, key=lambda q: q.price), 1):
        table.add_row(
            str(idx),
            q.retailer_id,
            f"{q.currency} {q.price:,.2f}",
            f"{q.original_price:,.2f}" if q.is_on_sale and q.original_price else "-",
            "[green]yes[/green]" if q.in_stock else "[red]no[/red]",
            f"{q.source.value} ({q.confidence:.2f})",
            q.product_url,
        )
    Console().print(table)

    if result.average_price is not None:
        _err.print(
            f"[dim]average {result.average_price:,.2f} over "
            f"{result.total_retailers} retailers[/dim]"
        )


def _history_rows(entries: list[PriceHistoryEntry]) -> list[dict[str, object]]:
    return [
        {
            "retailer_id": e.retailer_id,
            "price": e.price,
            "currency": e.currency,
            "in_stock": e.in_stock,
            "source": e.source.value,
            "recorded_at": e.recorded_at.isoformat(),
        }
        for e in entries
    ]


def _dump_json(data: object) -> None:
    json.dump(data, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")


# ── Commands ─────────────────────────────────────────────


async def cli_compare(
    services: Services, product_id: str, output_format: str,
) -> int:
    """Compare one product across retailers (0=ok, 1=fail)."""
    _err.print(f"[bold]Comparing prices:[/bold] {product_id}")
    try:
        result = await services.engine.get_comparison(product_id)
    except ProductNotFound as exc:
        _err.print(f"[red]{exc}[/red]")
        return 1

    if not result.prices:
        _err.print("[yellow]No retailer returned a price.[/yellow]")
        return 1

    lowest = result.lowest_price
    if lowest is not None:
        _err.print(
            f"[green]✓ {result.total_retailers} prices, lowest "
            f"{lowest.currency} {lowest.price:,.2f} at {lowest.retailer_id}"
            "[/green]"
        )

    if output_format == "table":
        _print_comparison(result)
    else:
        _dump_json(result.to_dict())
    return 0


async def run_scrape(
    services: Services, retailer_id: str, url: str, product_id: str,
) -> int:
    try:
        quote = await services.engine.scrape_one(retailer_id, url, product_id)
    except (ProductNotFound, RetailerNotFound) as exc:
        _err.print(f"[red]{exc}[/red]")
        return 1
    if quote is None:
        _err.print(f"[yellow]No price found at {url}[/yellow]")
        return 1
    _dump_json(quote.to_dict())
    return 0


def run_refresh(services: Services, product_id: str, priority: str) -> int:
    """Queue one price-update job per active retailer."""
    if services.store.get_product(product_id) is None:
        _err.print(f"[red]Product not found: {product_id}[/red]")
        return 1
    retailer_ids = [r.id for r in services.store.list_active_retailers()]
    jobs = services.job_queue.enqueue_product_refresh(
        product_id, retailer_ids, priority,
    )
    fresh = sum(1 for j in jobs if not j.coalesced)
    _err.print(
        f"[green]✓ Queued {fresh} price updates "
        f"({len(jobs) - fresh} already pending)[/green]"
    )
    return 0


async def run_worker(services: Services, size: int) -> int:
    """Run the queue workers until interrupted."""
    JobHandlers(services.engine).register(services.job_queue)
    stop = asyncio.Event()
    pool = WorkerPool(services.job_queue, size, services.settings)
    _err.print(
        f"[bold]Running {size} workers on "
        f"{', '.join(services.job_queue.registered_queues())}[/bold] "
        "[dim](Ctrl+C to stop)[/dim]"
    )
    try:
        await pool.run(stop)
    except asyncio.CancelledError:
        stop.set()
    logger.info("Worker pool shut down")
    return 0


async def run_health_check(services: Services) -> int:
    """Health-check every adapter and roll up retailer health."""
    _err.print("[bold]Running adapter health check...[/bold]")
    checker = HealthChecker(
        services.registry, services.store, services.tracker, services.cache,
    )
    results = await checker.check_all()
    await checker.refresh_retailer_health()

    table = Table(
        title="Adapter Health Check",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Adapter", style="bold")
    table.add_column("Status", justify="center")
    table.add_column("Latency", justify="right")
    table.add_column("Notes", style="dim")

    any_down = False
    for r in results:
        if not r.healthy:
            status = "[red]DOWN[/red]"
            any_down = True
        elif r.message:
            status = "[yellow]SLOW[/yellow]"
        else:
            status = "[green]OK[/green]"
        latency = f"{r.latency_ms:.0f}ms" if r.latency_ms > 0 else "-"
        table.add_row(r.adapter, status, latency, r.message)

    Console().print(table)
    return 1 if any_down else 0


async def run_stats(services: Services) -> int:
    engine_stats = await services.engine.get_engine_stats()
    queue_stats = services.job_queue.get_stats()
    _dump_json({"engine": engine_stats, "queues": queue_stats})
    return 0


async def run_history(
    services: Services,
    product_id: str,
    retailer_id: str | None,
    days: int,
    output_format: str,
) -> int:
    entries = await services.engine.get_price_history(
        product_id, retailer_id, days,
    )
    if not entries:
        _err.print("[yellow]No price history in that window.[/yellow]")
        return 1
    if output_format != "table":
        _dump_json(_history_rows(entries))
        return 0

    table = Table(
        title=f"Price history for {product_id} ({days} days)",
        title_style="bold cyan",
    )
    table.add_column("Recorded", style="dim")
    table.add_column("Retailer", style="magenta")
    table.add_column("Price", justify="right", style="green")
    table.add_column("Stock", justify="center")
    for e in entries:
        table.add_row(
            e.recorded_at.strftime("%Y-%m-%d %H:%M"),
            e.retailer_id,
            f"{e.currency} {e.price:,.2f}",
            "yes" if e.in_stock else "no",
        )
    Console().print(table)
    return 0


def run_import_catalog(services: Services, filepath: str) -> int:
    path = Path(filepath)
    if not path.exists():
        _err.print(f"[red]Catalog file not found: {path}[/red]")
        return 1
    products, retailers = services.store.import_catalog(path)
    if not products and not retailers:
        _err.print("[yellow]Nothing imported.[/yellow]")
        return 1
    _err.print(
        f"[green]✓ Imported {products} products and "
        f"{retailers} retailers[/green]"
    )
    return 0


def run_clean_jobs(services: Services) -> int:
    removed = services.job_queue.clean_completed()
    _err.print(
        f"[green]✓ Removed {sum(removed.values())} settled jobs[/green]"
    )
    return 0
