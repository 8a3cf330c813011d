"""CLI job that ranks the live profile catalog the way the agent search endpoint does."""

import argparse
import json
import logging
from dataclasses import asdict
from typing import List, Optional

from experience_index.core.config import get_settings
from experience_index.core.search import DEFAULT_LIMIT, search, use_system_collation
from experience_index.etl.aggregate import ProfileCatalog
from experience_index.vendors.airtable import AirtableClient

logger = logging.getLogger(__name__)


def run_search_job(*, query: str, location: Optional[str], limit: int) -> List[dict]:
    settings = get_settings()
    if not settings.airtable_configured:
        raise RuntimeError("AIRTABLE_API_KEY and AIRTABLE_BASE_ID are required")

    query = query.strip()
    if not query:
        raise ValueError("Query is empty")

    catalog = ProfileCatalog(AirtableClient.from_settings(settings), settings)
    results = search(catalog, query, location, limit)
    logger.info("Search query=%s location=%s returned %d result(s)", query, location, len(results))
    return [asdict(result) for result in results]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rank experience profiles for a keyword query")
    parser.add_argument("query", help="Keywords, e.g. 'boiler repair'")
    parser.add_argument("--location", dest="location", help="Area the customer is in")
    parser.add_argument("--limit", dest="limit", type=int, default=DEFAULT_LIMIT, help="Maximum results (1-50)")
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    use_system_collation()
    parser = build_parser()
    args = parser.parse_args()

    results = run_search_job(query=args.query, location=args.location, limit=args.limit)
    print(json.dumps(results, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
