"""
Import analysis data from MySQL into MongoDB.

Runs the same import the daily scheduler runs, for any dataset.

Usage (from backend/):
  python -m scripts.import_from_mysql stocks
  python -m scripts.import_from_mysql news faqs wikis
  python -m scripts.import_from_mysql --all
"""

import asyncio
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import get_db_context
from services.stock_import import DATASETS, run_import
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def import_datasets(names) -> int:
    """Returns the total number of failed rows across datasets."""
    failed = 0
    async with get_db_context() as db:
        for name in names:
            result = await run_import(name, db=db)
            logger.info(
                "%s: %s/%s imported, %s errors, %ss",
                name, result["success"], result["total"], result["errors"], result["duration"],
            )
            failed += result["errors"]
    return failed


def main():
    parser = argparse.ArgumentParser(description="Import MySQL analysis tables into MongoDB")
    parser.add_argument("datasets", nargs="*", choices=sorted(DATASETS), help="Datasets to import")
    parser.add_argument("--all", action="store_true", help="Import every dataset")
    args = parser.parse_args()

    names = sorted(DATASETS) if args.all else args.datasets
    if not names:
        parser.error("Provide at least one dataset or --all")
        return 1

    failed = asyncio.run(import_datasets(names))
    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
