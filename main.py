# main.py

"""Entry point for the price_engine command-line interface."""

import argparse
import asyncio
import logging
import sys

from src.config.logging_config import setup_logging
from src.config.settings import Settings
from src.services.job_queue import PRICE_UPDATE_PRIORITIES

logger = logging.getLogger("price_engine.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="price_engine",
        description="Cross-retailer price aggregation engine.",
    )
    parser.add_argument(
        "product_id",
        nargs="?",
        default=None,
        help="Product to compare across all active retailers.",
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="json",
        dest="output_format",
        help="Output format (default: json).",
    )
    parser.add_argument(
        "--scrape",
        nargs=3,
        metavar=("RETAILER_ID", "URL", "PRODUCT_ID"),
        default=None,
        help="Scrape one product page and store the quote.",
    )
    parser.add_argument(
        "--refresh",
        metavar="PRODUCT_ID",
        default=None,
        help="Queue a price update for every active retailer.",
    )
    parser.add_argument(
        "--priority",
        choices=list(PRICE_UPDATE_PRIORITIES),
        default="medium",
        help="Priority for --refresh jobs (default: medium).",
    )
    parser.add_argument(
        "--worker",
        action="store_true",
        default=False,
        help="Run the background queue workers until interrupted.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=4,
        help="Worker count for --worker (default: 4).",
    )
    parser.add_argument(
        "--history",
        metavar="PRODUCT_ID",
        default=None,
        help="Show recorded price history for a product.",
    )
    parser.add_argument(
        "--retailer",
        default=None,
        help="Restrict --history to one retailer.",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=Settings.HISTORY_DEFAULT_DAYS,
        help=f"History window in days (default: {Settings.HISTORY_DEFAULT_DAYS}).",
    )
    parser.add_argument(
        "--import-catalog",
        metavar="FILE",
        default=None,
        dest="import_catalog",
        help="Load products and retailers from a JSON catalog file.",
    )
    parser.add_argument(
        "--health",
        action="store_true",
        default=False,
        help="Run a connectivity health check on all adapters.",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        default=False,
        help="Print engine and queue statistics as JSON.",
    )
    parser.add_argument(
        "--clean-jobs",
        action="store_true",
        default=False,
        dest="clean_jobs",
        help="Delete completed jobs past their retention window.",
    )
    return parser


def _dispatch(args: argparse.Namespace) -> int:
    """Run the selected command and return its exit code."""
    from src.cli import runner

    services = runner.build_services()
    try:
        if args.import_catalog:
            return runner.run_import_catalog(services, args.import_catalog)
        if args.health:
            return asyncio.run(runner.run_health_check(services))
        if args.stats:
            return asyncio.run(runner.run_stats(services))
        if args.clean_jobs:
            return runner.run_clean_jobs(services)
        if args.worker:
            return asyncio.run(runner.run_worker(services, args.workers))
        if args.refresh:
            return runner.run_refresh(services, args.refresh, args.priority)
        if args.scrape:
            retailer_id, url, product_id = args.scrape
            return asyncio.run(
                runner.run_scrape(services, retailer_id, url, product_id)
            )
        if args.history:
            return asyncio.run(runner.run_history(
                services,
                args.history,
                args.retailer,
                args.days,
                args.output_format,
            ))
        return asyncio.run(
            runner.cli_compare(services, args.product_id, args.output_format)
        )
    finally:
        services.close()


def main() -> None:
    """Parse arguments, set up logging and route to a command."""
    parser = _build_parser()
    args = parser.parse_args()

    commands = (
        args.product_id, args.scrape, args.refresh, args.worker,
        args.history, args.import_catalog, args.health, args.stats,
        args.clean_jobs,
    )
    if not any(commands):
        parser.print_help(sys.stderr)
        sys.exit(2)

    log_file = setup_logging()
    logger.info("price_engine starting, log file: %s", log_file)

    try:
        exit_code = _dispatch(args)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        exit_code = 130
    except Exception:
        logger.critical("Fatal error during CLI run", exc_info=True)
        raise
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
