# scripts/sync_training_counts.py
"""
Recompute trainings.registered from its canonical source and fix drift.

Usage (from project root or scripts/):
  Dry-run:
    python scripts/sync_training_counts.py
  Commit, counting validated embedded attendees instead of registration rows:
    python scripts/sync_training_counts.py --source attendees --commit
"""
# --- path bootstrap so `from db import col` works when run as a script ---
import os, sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
# -------------------------------------------------------------------------

import argparse

from pymongo.errors import PyMongoError

from config import COUNT_SOURCE, COUNT_SOURCES
from utils.logging_config import configure
from utils.reconcile import reconcile_all


def main(argv=None):
    ap = argparse.ArgumentParser(description="Synchronize trainings.registered with actual registrations.")
    ap.add_argument("--source", choices=COUNT_SOURCES, default=COUNT_SOURCE,
                    help=f"Where the count comes from. Default: {COUNT_SOURCE} (COUNT_SOURCE).")
    ap.add_argument("--commit", action="store_true", help="Actually write updates. Default: dry-run.")
    args = ap.parse_args(argv)
    configure()

    print(f"=== Training registration count sync (source={args.source}) ===", flush=True)
    try:
        res = reconcile_all(source=args.source, commit=args.commit)
    except PyMongoError as e:
        print(f"Database error: {e}", flush=True)
        return 1

    for c in res["changes"]:
        print(f'  "{c["title"]}": registered {c["before"]} -> {c["after"]}', flush=True)

    print("\nSummary:")
    print(f"  training records: {res['processed']}")
    print(f"  counts out of sync: {len(res['changes'])}")
    if res["unmigrated"]:
        print(f"  skipped (not migrated yet): {len(res['unmigrated'])} -> run scripts/sync_registrations.py")
    if args.commit:
        print(f"  updated records: {res['updated']}")
    else:
        print("  (dry-run; pass --commit to apply changes)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
