# scripts/sync_registrations.py
"""
Migrate Training.attendees into training_registrations (one row per
training/user), then re-derive trainings.registered from the row count.

Safe to re-run: rows are upserted on (trainingId, userId).

Usage:
    python scripts/sync_registrations.py --ensure-indexes
    python scripts/sync_registrations.py --refresh           # refresh userData from personnel
    python scripts/sync_registrations.py --rebuild-cache     # then rewrite attendees from the rows
    python scripts/sync_registrations.py --limit 5
"""
# --- path bootstrap so `from db import col` works when run as a script ---
import os, sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
# -------------------------------------------------------------------------

import argparse

from pymongo.errors import PyMongoError

from db import col
from utils.bootstrap_indexes import ensure_indexes
from utils.logging_config import configure
from utils.migrate import migrate_all, rebuild_all_caches
from utils.personnel import PersonnelResolver


def main(argv=None):
    ap = argparse.ArgumentParser(description="Migrate embedded training attendees → training_registrations")
    ap.add_argument("--limit", type=int, default=None, help="Only process N trainings (for testing)")
    ap.add_argument("--refresh", action="store_true", help="Refresh userData from personnel records while migrating")
    ap.add_argument("--rebuild-cache", action="store_true",
                    help="Afterwards rewrite each training's attendees array from training_registrations")
    ap.add_argument("--ensure-indexes", action="store_true", help="Create indexes first (safe to repeat)")
    args = ap.parse_args(argv)
    configure()

    print("=== Training Registration Synchronization ===", flush=True)
    try:
        if args.ensure_indexes:
            ensure_indexes()
            print("Indexes ensured.", flush=True)

        resolver = PersonnelResolver.from_db() if args.refresh else None
        totals = migrate_all(resolver=resolver, limit=args.limit)

        for s in totals["trainings"]:
            print(f'  "{s["title"]}": valid={s["valid"]} removed={s["removed"]} '
                  f'created={s["created"]} registered {s["registered_before"]} -> {s["registered_after"]}',
                  flush=True)

        rebuilt = 0
        if args.rebuild_cache:
            ids = [s["trainingId"] for s in totals["trainings"]]
            rebuilt = rebuild_all_caches(ids)

        in_db = col("training_registrations").count_documents({})
    except PyMongoError as e:
        print(f"Database error: {e}", flush=True)
        return 1

    print("\nMigration Summary:")
    print(f"- Total trainings processed: {totals['processed']}")
    print(f"- Total trainings updated: {totals['updated']}")
    print(f"- Total registrations migrated: {totals['migrated']}")
    print(f"- Registrations created: {totals['created']}")
    print(f"- Attendees skipped (invalid/duplicate): {totals['removed']}")
    if args.refresh:
        print(f"- Personnel not found: {totals['missing_personnel']}")
    print(f"- Upsert errors: {totals['errors']}")
    if totals["failed_trainings"]:
        print(f"- Trainings that failed: {totals['failed_trainings']}")
    if args.rebuild_cache:
        print(f"- Attendee caches rebuilt: {rebuilt}")
    print(f"- Registration records in database: {in_db}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
