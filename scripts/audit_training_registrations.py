# scripts/audit_training_registrations.py
# Read-only: compare embedded attendees with training_registrations per training.
# --- path bootstrap so `from db import col` works when run as a script ---
import os, sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
# -------------------------------------------------------------------------

import argparse
import csv
from collections import defaultdict
from datetime import datetime, timezone

from pymongo.errors import PyMongoError

from db import col
from utils.attendees import removal_reasons, user_key, validate_attendees


def audit():
    rows_by_training = defaultdict(set)
    for r in col("training_registrations").find({}, {"trainingId": 1, "userId": 1}):
        rows_by_training[user_key(r.get("trainingId"))].add(user_key(r.get("userId")))

    report = []
    for t in col("trainings").find({}, {"title": 1, "registered": 1, "attendees": 1, "registrationsMigrated": 1}):
        tid = user_key(t["_id"])
        result = validate_attendees(t.get("attendees"))
        embedded = {user_key(a.get("userId")) for a in result["valid"]}
        rows = rows_by_training.get(tid, set())
        report.append({
            "trainingId": tid,
            "title": t.get("title", ""),
            "registered": t.get("registered"),
            "attendees_raw": len(t.get("attendees") or []),
            "attendees_valid": len(embedded),
            "registrations": len(rows),
            "only_embedded": len(embedded - rows),
            "only_registrations": len(rows - embedded),
            "migrated": bool(t.get("registrationsMigrated")),
            "reasons": removal_reasons(result["removed"]),
        })
    return report


def main(argv=None):
    ap = argparse.ArgumentParser(description="Audit embedded attendees vs training_registrations.")
    ap.add_argument("--csv", action="store_true", help="Write the per-training report to a CSV file.")
    args = ap.parse_args(argv)

    try:
        report = audit()
    except PyMongoError as e:
        print(f"Database error: {e}", flush=True)
        return 1

    drift = [r for r in report if r["registered"] != r["registrations"] or r["only_embedded"] or r["only_registrations"]]

    print("==== AUDIT SUMMARY ====")
    print(f"trainings total: {len(report)}")
    print(f"trainings not migrated: {sum(1 for r in report if not r['migrated'])}")
    print(f"trainings with drift: {len(drift)}")
    print(f"invalid embedded attendees: {sum(r['attendees_raw'] - r['attendees_valid'] for r in report)}")
    print()
    for r in drift:
        print(f'  "{r["title"]}": registered={r["registered"]} valid_attendees={r["attendees_valid"]} '
              f'registrations={r["registrations"]} only_embedded={r["only_embedded"]} '
              f'only_registrations={r["only_registrations"]}')

    if args.csv and report:
        now = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        path = f"training_registration_audit_{now}.csv"
        fields = ["trainingId", "title", "registered", "attendees_raw", "attendees_valid",
                  "registrations", "only_embedded", "only_registrations", "migrated"]
        with open(path, "w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=fields, extrasaction="ignore")
            w.writeheader()
            w.writerows(report)
        print("wrote:", path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
