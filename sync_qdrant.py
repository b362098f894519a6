"""
Sync Script: Reconcile Qdrant with the course_materials table
Deletes vectors of materials that no longer exist and re-indexes materials
that have no vectors.

Usage:
    python sync_qdrant.py            # repair
    python sync_qdrant.py --dry-run  # only report the drift
"""

import argparse
import asyncio
import logging

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from config import get_settings
from database.database import SessionLocal
from services.container import build_services
from services.errors import UpstreamServiceError

log = logging.getLogger("sync_qdrant")


async def sync_qdrant(dry_run: bool = False) -> int:
    settings = get_settings()
    services = build_services(settings)
    db = SessionLocal()
    try:
        if not services.vector_index.enabled:
            log.warning("QDRANT_ENABLED is false; nothing to sync")
            return 0

        await services.vector_index.ensure_collection()
        report = await services.indexer.reconcile(db, dry_run=dry_run)

        print("=" * 70)
        print("QDRANT SYNC" + (" [DRY RUN]" if dry_run else ""))
        print("=" * 70)
        print(f"Materials in database: {report.record_material_count}")
        print(f"Materials in index:    {report.index_material_count}")
        print(f"Orphaned (deleted):    {report.orphaned or '-'}")
        print(f"Missing (re-indexed):  {report.missing or '-'}")
        if not dry_run:
            print(f"✓ Re-indexed: {len(report.reindexed)}")
            if report.failed:
                print(f"✗ Failed: {report.failed}")
        return 1 if report.failed else 0
    except UpstreamServiceError as e:
        log.error("Sync failed: %s", e)
        return 2
    finally:
        db.close()
        await services.aclose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reconcile Qdrant with the relational store")
    parser.add_argument("--dry-run", "-d", action="store_true", help="Only report, change nothing")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(levelname)s  %(message)s")
    raise SystemExit(asyncio.run(sync_qdrant(dry_run=args.dry_run)))
