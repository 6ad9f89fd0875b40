"""
Purge Script - removes jobs, bids, escrow, conversations and reviews.

Usage:
    docker-compose exec backend python scripts/purge_marketplace_data.py --yes
    docker-compose exec backend python scripts/purge_marketplace_data.py --job <uuid> --job <uuid>
"""
import argparse
import asyncio
import os
import sys
import uuid

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.core.database import async_session_maker, close_db  # noqa: E402
from src.core.logging import configure_logging  # noqa: E402
from src.modules.jobs.teardown import purge_jobs  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete marketplace data")
    parser.add_argument("--job", action="append", type=uuid.UUID, dest="jobs", help="Job id to purge (repeatable)")
    parser.add_argument("--yes", action="store_true", help="Required to purge every job")
    return parser.parse_args()


async def run_purge(job_ids: list[uuid.UUID] | None) -> None:
    try:
        async with async_session_maker() as session:
            counts = await purge_jobs(session, job_ids)
    finally:
        await close_db()

    print("\n" + "=" * 50)
    print("Marketplace data purged")
    print("=" * 50)
    for table, count in counts.items():
        print(f"  {table:<16} {count}")
    print()


if __name__ == "__main__":
    configure_logging()
    args = parse_args()
    if not args.jobs and not args.yes:
        sys.exit("Refusing to purge every job without --yes")
    asyncio.run(run_purge(args.jobs))
