# scripts/fix_training_attendees.py
"""
Fix attendee snapshots embedded in trainings.

For each attendee: find the personnel record (userId → email → military/
service id → full name), rewrite userData from it, or clean up what we have
(placeholders blanked, names guessed from first.last emails).

Usage:
  Dry-run:
    python scripts/fix_training_attendees.py
  Commit, also dropping invalid/duplicate attendees:
    python scripts/fix_training_attendees.py --prune --commit
  Ignore name-only matches:
    python scripts/fix_training_attendees.py --min-confidence medium --commit
"""
# --- path bootstrap so `from db import col` works when run as a script ---
import os, sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
# -------------------------------------------------------------------------

import argparse

from pymongo.errors import PyMongoError

from utils.cleanup import cleanup_all
from utils.logging_config import configure
from utils.personnel import CONFIDENCE_RANK, PersonnelResolver


def main(argv=None):
    ap = argparse.ArgumentParser(description="Refresh userData of training attendees from personnel records.")
    ap.add_argument("--prune", action="store_true", help="Drop attendees without userId, with bad status, duplicates, or no name.")
    ap.add_argument("--min-confidence", choices=sorted(CONFIDENCE_RANK, key=CONFIDENCE_RANK.get), default=None,
                    help="Lowest personnel match confidence to accept (default: any).")
    ap.add_argument("--commit", action="store_true", help="Actually write updates. Default: dry-run.")
    args = ap.parse_args(argv)
    configure()

    print("Loading personnel...", flush=True)
    try:
        resolver = PersonnelResolver.from_db()
        print(f"personnel indexed: {resolver.size}", flush=True)
        totals = cleanup_all(resolver, prune=args.prune, min_confidence=args.min_confidence,
                             commit=args.commit)
    except PyMongoError as e:
        print(f"Database error: {e}", flush=True)
        return 1

    for s in totals["trainings"]:
        if s["changed"]:
            print(f'  "{s["title"]}": attendees updated={s["attendees_updated"]} '
                  f'removed={s["removed"]} missing personnel={s["missing_personnel"]}', flush=True)

    print("\nTraining Attendees Update Summary:")
    print("--------------------------------")
    print(f"Total training records: {totals['processed']}")
    print(f"Training records updated: {totals['updated']}")
    print(f"Attendee records updated: {totals['attendees_updated']}")
    print(f"Missing personnel references: {totals['missing_personnel']}")
    print(f"Invalid attendees{' removed' if args.prune else ' found'}: {totals['removed']}")
    for reason, n in sorted(totals["reasons"].items()):
        print(f"  {reason}: {n}")
    if not args.commit:
        print("(dry-run; pass --commit to apply changes)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
