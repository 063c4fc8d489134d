"""CLI job to fetch Google Places results into a scraped-candidate file."""

import argparse
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from poi_catalog.core.config import ConfigError, Settings, get_settings
from poi_catalog.core.storage import WriteError, atomic_write_json
from poi_catalog.jobs.run_merge import build_places_client
from poi_catalog.vendors.google_places import EnrichmentAPIError

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 3
NEXT_PAGE_DELAY_SECONDS = 2.5


def run_scrape_job(
    *,
    query: str,
    output_path: str,
    max_pages: int = DEFAULT_MAX_PAGES,
    settings: Optional[Settings] = None,
) -> List[Dict[str, Any]]:
    query = (query or "").strip()
    if not query:
        raise ValueError("Query must not be empty")

    settings = settings or get_settings()
    client = build_places_client(settings)
    logger.info("Running Places text search for query=%s", query)

    places: List[Dict[str, Any]] = []
    seen = set()
    page_token = None
    processed_pages = 0

    while processed_pages < max_pages:
        response = client.search(query, pagetoken=page_token)
        results = response.get("results", [])
        logger.info("Fetched %d results on page %d", len(results), processed_pages + 1)

        for result in results:
            place_id = result.get("place_id")
            if not place_id or place_id in seen:
                logger.debug("Skipping result without new place_id: %s", result.get("name"))
                continue
            seen.add(place_id)
            try:
                details = client.details(place_id)
            except EnrichmentAPIError as exc:
                logger.warning("Failed to fetch details for %s: %s", place_id, exc)
                details = {}
            places.append(dict(result, **details))

        processed_pages += 1
        page_token = response.get("next_page_token")
        if not page_token:
            break
        # The next-page token only becomes valid after a short delay.
        time.sleep(NEXT_PAGE_DELAY_SECONDS)

    atomic_write_json(output_path, {"query": query, "results": places})
    logger.info("Completed run: pages_processed=%d places=%d output=%s", processed_pages, len(places), output_path)
    return places


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scrape Google Places results for a query")
    parser.add_argument("--query", required=True, help="Text search query, e.g. 'dive shops Grand Cayman'")
    parser.add_argument("--output", required=True, help="Scraped candidate JSON file to write")
    parser.add_argument(
        "--max-pages",
        dest="max_pages",
        type=int,
        default=DEFAULT_MAX_PAGES,
        help="Maximum number of result pages to fetch",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        run_scrape_job(query=args.query, output_path=args.output, max_pages=args.max_pages, settings=settings)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 2
    except (EnrichmentAPIError, WriteError, ValueError) as exc:
        logger.error("Scrape aborted: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
