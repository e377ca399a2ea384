# utils/reconcile.py
"""
Keep `trainings.registered` in step with its canonical source.

Two sources exist and a deployment picks one (config.COUNT_SOURCE):
  - "registrations": rows in training_registrations for the training
  - "attendees":     the validated, de-duplicated embedded attendee array

The write is a compare-and-set on the stored value, so a live register or
cancel landing between our read and write is not overwritten; we re-read
and try again instead.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from config import COUNT_SOURCE, COUNT_SOURCES, MAX_WRITE_RETRIES
from db import col
from utils.attendees import count_valid_attendees
from utils.errors import ConcurrentUpdateError, TrainingNotFound
from utils.logging_config import get_logger

logger = get_logger(__name__)


def _source(source: Optional[str]) -> str:
    s = (source or COUNT_SOURCE).lower()
    if s not in COUNT_SOURCES:
        raise ValueError(f"Unknown count source {s!r}; expected one of {', '.join(COUNT_SOURCES)}")
    return s


def count_registrations(training_id) -> int:
    return col("training_registrations").count_documents({"trainingId": training_id})


def compute_registered_count(training: dict, source: Optional[str] = None) -> int:
    if _source(source) == "attendees":
        return count_valid_attendees(training.get("attendees"))
    return count_registrations(training["_id"])


def _stored(training: dict):
    return training.get("registered")


def reconcile_registered_count(training: dict, source: Optional[str] = None,
                               commit: bool = True) -> Dict:
    """
    Recompute `registered` and write it only when it differs.

    Returns {"trainingId", "title", "before", "after", "written"}.
    """
    src = _source(source)
    tid = training["_id"]
    before = _stored(training)

    for attempt in range(MAX_WRITE_RETRIES + 1):
        stored = _stored(training)
        after = compute_registered_count(training, src)
        if stored == after:
            return {"trainingId": tid, "title": training.get("title"),
                    "before": before, "after": after, "written": False}
        if not commit:
            return {"trainingId": tid, "title": training.get("title"),
                    "before": before, "after": after, "written": False}

        # missing field matches a None filter, same as an explicit null
        res = col("trainings").update_one(
            {"_id": tid, "registered": stored},
            {"$set": {"registered": after}},
        )
        if res.matched_count:
            logger.info('training "%s": registered %s -> %s', training.get("title"), stored, after)
            return {"trainingId": tid, "title": training.get("title"),
                    "before": before, "after": after, "written": True}

        logger.warning("registered for %s changed underneath us (attempt %d); re-reading", tid, attempt + 1)
        fresh = col("trainings").find_one({"_id": tid})
        if fresh is None:
            raise TrainingNotFound(tid)
        training = fresh

    raise ConcurrentUpdateError(f"gave up updating registered for training {tid} "
                                f"after {MAX_WRITE_RETRIES + 1} attempts")


def reconcile_all(source: Optional[str] = None, commit: bool = True) -> Dict:
    """
    Sequential pass over every training.

    Returns {"source", "processed", "updated", "unmigrated", "changes"} where
    changes lists the per-training results whose count differed. With the
    registrations source, trainings whose attendees were never migrated are
    skipped (their row count would read as zero).
    """
    src = _source(source)
    processed = 0
    unmigrated: List = []
    changes: List[Dict] = []
    projection = {"title": 1, "registered": 1, "attendees": 1, "registrationsMigrated": 1}
    for t in col("trainings").find({}, projection):
        processed += 1
        if src == "registrations" and not t.get("registrationsMigrated"):
            unmigrated.append(t["_id"])
            continue
        r = reconcile_registered_count(t, src, commit=commit)
        if r["before"] != r["after"]:
            changes.append(r)
    if unmigrated:
        logger.warning("%d trainings skipped: attendees not migrated to training_registrations yet",
                       len(unmigrated))
    updated = sum(1 for c in changes if c["written"])
    return {"source": src, "processed": processed, "updated": updated,
            "unmigrated": unmigrated, "changes": changes}
