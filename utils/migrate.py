# utils/migrate.py
"""
Copy embedded training attendees into the normalized
`training_registrations` collection, one row per (trainingId, userId).

training_registrations is the source of truth going forward; the embedded
array is rebuilt from it (rebuild_attendee_cache) by the live
register/cancel path.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pymongo.errors import PyMongoError

from config import MAX_WRITE_RETRIES
from db import col
from utils.attendees import normalize_id, attendee_status, validate_attendees
from utils.errors import ConcurrentUpdateError, NotMigratedError, TrainingNotFound
from utils.logging_config import get_logger
from utils.personnel import PersonnelResolver, refresh_user_data
from utils.reconcile import reconcile_registered_count

logger = get_logger(__name__)

CACHE_FIELDS = ("userId", "status", "registrationDate", "attendanceDate", "completionDate", "userData")


def _now():
    return datetime.now(tz=timezone.utc)


def build_registration(training_id, attendee: dict) -> dict:
    """Registration row for one validated attendee (registrationDate may be absent)."""
    doc = {
        "trainingId": training_id,
        "userId": normalize_id(attendee.get("userId")),
        "status": attendee_status(attendee),
        "userData": dict(attendee.get("userData") or {}),
    }
    if attendee.get("registrationDate"):
        doc["registrationDate"] = attendee["registrationDate"]
    for k in ("attendanceDate", "completionDate"):
        if attendee.get(k):
            doc[k] = attendee[k]
    return doc


def upsert_registration(doc: dict) -> bool:
    """
    Upsert on (trainingId, userId). Returns True when a new row was created.
    Timestamps only go in on insert so a re-run leaves rows unchanged.
    """
    now = _now()
    on_insert = {"createdAt": now}
    if "registrationDate" not in doc:
        on_insert["registrationDate"] = now
    res = col("training_registrations").update_one(
        {"trainingId": doc["trainingId"], "userId": doc["userId"]},
        {"$set": doc, "$setOnInsert": on_insert},
        upsert=True,
    )
    return res.upserted_id is not None


def migrate_training(training: dict, resolver: Optional[PersonnelResolver] = None) -> Dict:
    """
    Validate one training's attendees and upsert the valid ones.

    A failed upsert is logged and skipped; the rest of the training still
    goes through. Only when every row went in is the training marked
    migrated and `registered` re-derived from the row count.
    """
    tid = training["_id"]
    title = training.get("title", "")
    result = validate_attendees(training.get("attendees"))
    summary = {
        "trainingId": tid, "title": title,
        "valid": len(result["valid"]), "removed": len(result["removed"]),
        "migrated": 0, "created": 0, "missing_personnel": 0, "errors": 0,
        "registered_before": training.get("registered"), "registered_after": None,
        "updated": False,
    }

    for attendee in result["valid"]:
        if resolver is not None:
            match = resolver.resolve(attendee)
            if match is None:
                summary["missing_personnel"] += 1
            attendee = {**attendee, "userData": refresh_user_data(attendee, match.record if match else None)}
        doc = build_registration(tid, attendee)
        try:
            if upsert_registration(doc):
                summary["created"] += 1
            summary["migrated"] += 1
        except PyMongoError as e:
            summary["errors"] += 1
            logger.error('training "%s": failed to upsert registration for user %s: %s',
                         title, doc["userId"], e)

    if summary["errors"]:
        # rows incomplete; the next run retries the failed attendees
        logger.warning('training "%s": %d registrations failed; not marked migrated', title, summary["errors"])
        summary["registered_after"] = training.get("registered")
        return summary

    col("trainings").update_one({"_id": tid}, {"$set": {"registrationsMigrated": True}})

    rc = reconcile_registered_count(training, "registrations")
    summary["registered_after"] = rc["after"]
    summary["updated"] = rc["written"]
    return summary


def migrate_all(resolver: Optional[PersonnelResolver] = None, limit: Optional[int] = None,
                progress_every: int = 25) -> Dict:
    """Run migrate_training over every training, one at a time."""
    totals = {
        "processed": 0, "updated": 0, "migrated": 0, "created": 0,
        "removed": 0, "missing_personnel": 0, "errors": 0, "failed_trainings": 0,
        "trainings": [],
    }
    projection = {"title": 1, "registered": 1, "attendees": 1}
    for training in col("trainings").find({}, projection):
        totals["processed"] += 1
        try:
            s = migrate_training(training, resolver=resolver)
        except PyMongoError as e:
            totals["failed_trainings"] += 1
            logger.error('training "%s" (%s) not migrated: %s', training.get("title"), training["_id"], e)
        else:
            totals["trainings"].append(s)
            totals["updated"] += int(s["updated"])
            for k in ("migrated", "created", "removed", "missing_personnel", "errors"):
                totals[k] += s[k]

        if progress_every and totals["processed"] % progress_every == 0:
            logger.info("processed %d trainings; migrated ~%d registrations",
                        totals["processed"], totals["migrated"])
        if limit and totals["processed"] >= limit:
            break
    return totals


def _cache_entry(row: dict) -> dict:
    return {k: row[k] for k in CACHE_FIELDS if k in row}


def rebuild_attendee_cache(training_id) -> Dict:
    """
    Rewrite `attendees` and `registered` from training_registrations.

    Only for migrated trainings (NotMigratedError otherwise). Guarded by a
    compare-and-set on updatedAt; retried on conflict.
    """
    for attempt in range(MAX_WRITE_RETRIES + 1):
        training = col("trainings").find_one({"_id": training_id},
                                             {"updatedAt": 1, "title": 1, "registrationsMigrated": 1})
        if training is None:
            raise TrainingNotFound(training_id)
        if not training.get("registrationsMigrated"):
            raise NotMigratedError(training_id)
        rows = list(col("training_registrations")
                    .find({"trainingId": training_id})
                    .sort([("registrationDate", 1), ("_id", 1)]))
        attendees = [_cache_entry(r) for r in rows]
        res = col("trainings").update_one(
            {"_id": training_id, "updatedAt": training.get("updatedAt")},
            {"$set": {"attendees": attendees, "registered": len(attendees),
                      "updatedAt": _now()}},
        )
        if res.matched_count:
            return {"trainingId": training_id, "registered": len(attendees), "attendees": attendees}
        logger.warning("training %s modified during cache rebuild (attempt %d)", training_id, attempt + 1)

    raise ConcurrentUpdateError(f"gave up rebuilding attendees for training {training_id}")


def rebuild_all_caches(training_ids: Optional[List] = None) -> int:
    ids = training_ids if training_ids is not None else col("trainings").distinct("_id")
    n = 0
    for tid in ids:
        try:
            rebuild_attendee_cache(tid)
        except NotMigratedError:
            logger.warning("training %s not fully migrated; attendee cache left as is", tid)
            continue
        n += 1
    return n
