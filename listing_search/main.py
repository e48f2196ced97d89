"""
Main entry point and CLI for listing search.

Runs one search against the configured index and database and prints the
page, formatted for the console or as JSON.
"""

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

import asyncio
import argparse
import json
import logging
import sys
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from listing_search.config import get_search_settings
from listing_search.db import close_db, get_http_session, get_pg_pool, init_db
from listing_search.error_handling import InvalidCriteria, SearchUnavailable
from listing_search.models import (
    DEFAULT_LIMIT,
    SearchCriteria,
    SearchPage,
    SearchResultRow,
    SortMode,
)
from listing_search.service import build_orchestrator


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNAVAILABLE = 1
EXIT_INVALID = 2


def format_row(row: SearchResultRow) -> str:
    """
    Format one result row for console output.

    Args:
        row: SearchResultRow to format

    Returns:
        Multi-line string for the row
    """
    lines = [f"📌 {row.title}", f"   ID: {row.id}"]

    if row.price is not None:
        lines.append(f"   Price: ${row.price}")
    else:
        lines.append("   Price: Free")

    if row.location_name:
        location = row.location_name
        if row.distance is not None:
            location += f" ({row.distance:.1f} away)"
        lines.append(f"   Location: {location}")

    lines.append(f"   Listed: {row.created_at.isoformat()}")
    lines.append(f"   Images: {row.image_count}")

    if row.description:
        lines.append(f"   {row.description}")

    lines.append("")
    return "\n".join(lines)


def format_page(page: SearchPage) -> str:
    """Format a page of results for console output."""
    if not page.results:
        return "No listings found matching your criteria.\n"

    output = [
        f"\n{'='*60}",
        f"Showing {len(page.results)} of {page.total_count} listing(s) "
        f"(page {page.current_page} of {page.total_pages})",
        f"{'='*60}\n",
    ]
    for row in page.results:
        output.append(format_row(row))
    output.append(f"{'='*60}\n")

    return "\n".join(output)


def page_to_json(page: SearchPage) -> str:
    return json.dumps({
        "results": [row.to_dict() for row in page.results],
        "total_count": page.total_count,
        "offset": page.offset,
        "limit": page.limit,
        "has_more": page.has_more,
        "current_page": page.current_page,
        "total_pages": page.total_pages,
    }, indent=2)


async def run_search(criteria: SearchCriteria, as_json: bool = False, verbose: bool = False) -> int:
    """
    Execute one search and print the page.

    Args:
        criteria: Search criteria
        as_json: Print JSON instead of formatted text
        verbose: Enable verbose logging output

    Returns:
        Exit code (0 success, 1 unavailable or error, 2 invalid criteria)
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled")

    settings = get_search_settings()
    settings.cache.enabled = False

    try:
        criteria.validate(settings.window.max_page_size)
    except InvalidCriteria as e:
        logger.error(f"Invalid search criteria: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INVALID

    try:
        await init_db(settings)
        orchestrator = build_orchestrator(settings, get_pg_pool(), get_http_session())

        start_time = datetime.now()
        page = await orchestrator.search_page(criteria)
        elapsed_time = (datetime.now() - start_time).total_seconds()

        if as_json:
            print(page_to_json(page))
        else:
            print(format_page(page))
            print(f"✅ Search completed in {elapsed_time:.2f} seconds")

        logger.info(f"Search completed in {elapsed_time:.2f} seconds")
        return EXIT_OK

    except InvalidCriteria as e:
        logger.error(f"Invalid search criteria: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INVALID

    except SearchUnavailable as e:
        logger.error(f"Search unavailable: {e}")
        print(f"\n❌ {e}", file=sys.stderr)
        return EXIT_UNAVAILABLE

    except Exception as e:
        logger.exception(f"Search failed with error: {str(e)}")
        print(f"\n❌ Error: {str(e)}", file=sys.stderr)
        return EXIT_UNAVAILABLE

    finally:
        await close_db()


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid price: {value!r}")


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="listing-search",
        description="Search active marketplace listings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Free-text search
  python -m listing_search.main "mountain bike"

  # Price range, cheapest first
  python -m listing_search.main "desk" --min-price 50 --max-price 200 --sort price_asc

  # Within 25 miles of a location, nearest first
  python -m listing_search.main "couch" --location 4821 --radius 25 --sort distance

  # Second page as JSON
  python -m listing_search.main "camera" --offset 25 --limit 25 --json
        """
    )

    parser.add_argument(
        "query",
        nargs="?",
        default=None,
        help="Search keywords matched against title and description"
    )
    parser.add_argument("--category", default=None, help="Category id filter")
    parser.add_argument("--min-price", type=_decimal, default=None, help="Minimum price, inclusive")
    parser.add_argument("--max-price", type=_decimal, default=None, help="Maximum price, inclusive")
    parser.add_argument(
        "--location",
        type=int,
        default=None,
        help="Center location id for radius search"
    )
    parser.add_argument(
        "--radius",
        type=int,
        default=None,
        help="Radius around the location: 5, 10, 25, 50, 100 or 250"
    )
    parser.add_argument(
        "--sort",
        choices=[mode.value for mode in SortMode],
        default=SortMode.NEWEST.value,
        help="Result ordering (default: newest)"
    )
    parser.add_argument("--offset", type=int, default=0, help="Pagination offset")
    parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT, help="Page size (1-100)")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging output"
    )

    return parser


def criteria_from_args(args: argparse.Namespace) -> SearchCriteria:
    """Build search criteria from parsed CLI arguments."""
    return SearchCriteria(
        query=args.query,
        category_id=args.category,
        min_price=args.min_price,
        max_price=args.max_price,
        location_id=args.location,
        radius=args.radius,
        sort_by=SortMode(args.sort),
        offset=args.offset,
        limit=args.limit,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI application.

    Returns:
        Exit code
    """
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        return asyncio.run(
            run_search(criteria_from_args(args), as_json=args.json, verbose=args.verbose)
        )
    except KeyboardInterrupt:
        logger.info("Search interrupted by user")
        print("\n\n⚠️  Search interrupted by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
