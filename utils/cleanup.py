# utils/cleanup.py
"""
Repair embedded attendee arrays in place: fill and refresh userData
snapshots from personnel, optionally drop invalid/duplicate entries.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from config import MAX_WRITE_RETRIES
from db import col
from utils.attendees import removal_reasons, validate_attendees
from utils.errors import ConcurrentUpdateError, TrainingNotFound
from utils.logging_config import get_logger
from utils.personnel import PersonnelResolver, hydrate_user_data, refresh_attendees

logger = get_logger(__name__)


def clean_attendees(attendees: Optional[List[dict]], resolver: PersonnelResolver,
                    prune: bool = False, min_confidence: Optional[str] = None) -> Dict:
    """
    Pure part of the cleanup. Returns {"attendees", "removed", "stats"}.

    Without prune, removed entries stay where they are (only their userData
    may have been filled in); valid ones get refreshed snapshots.
    """
    hydrated = [hydrate_user_data(a or {}, resolver) for a in (attendees or [])]
    result = validate_attendees(hydrated)
    refreshed, stats = refresh_attendees(result["valid"], resolver, min_confidence=min_confidence)

    if prune:
        out = refreshed
    else:
        by_obj = {id(old): new for old, new in zip(result["valid"], refreshed)}
        out = [by_obj.get(id(a), a) for a in hydrated]
    return {"attendees": out, "removed": result["removed"], "stats": stats}


def cleanup_training(training: dict, resolver: PersonnelResolver, prune: bool = False,
                     min_confidence: Optional[str] = None, commit: bool = True) -> Dict:
    tid = training["_id"]
    for attempt in range(MAX_WRITE_RETRIES + 1):
        cleaned = clean_attendees(training.get("attendees"), resolver, prune, min_confidence)
        changed = cleaned["attendees"] != (training.get("attendees") or [])
        summary = {
            "trainingId": tid, "title": training.get("title", ""),
            "attendees_updated": cleaned["stats"]["updated"],
            "missing_personnel": cleaned["stats"]["missing_personnel"],
            "removed": len(cleaned["removed"]),
            "reasons": removal_reasons(cleaned["removed"]),
            "changed": changed, "written": False,
        }
        if not (changed and commit):
            return summary

        res = col("trainings").update_one(
            {"_id": tid, "updatedAt": training.get("updatedAt")},
            {"$set": {"attendees": cleaned["attendees"], "updatedAt": datetime.now(tz=timezone.utc)}},
        )
        if res.matched_count:
            summary["written"] = True
            return summary

        logger.warning("training %s changed during cleanup (attempt %d); re-reading", tid, attempt + 1)
        training = col("trainings").find_one({"_id": tid})
        if training is None:
            raise TrainingNotFound(tid)

    raise ConcurrentUpdateError(f"gave up cleaning attendees for training {tid}")


def cleanup_all(resolver: Optional[PersonnelResolver] = None, prune: bool = False,
                min_confidence: Optional[str] = None, commit: bool = True) -> Dict:
    resolver = resolver or PersonnelResolver.from_db()
    totals = {
        "processed": 0, "updated": 0, "attendees_updated": 0,
        "missing_personnel": 0, "removed": 0, "reasons": {}, "trainings": [],
    }
    projection = {"title": 1, "attendees": 1, "updatedAt": 1}
    for training in col("trainings").find({}, projection):
        totals["processed"] += 1
        if not training.get("attendees"):
            continue
        s = cleanup_training(training, resolver, prune=prune, min_confidence=min_confidence, commit=commit)
        totals["trainings"].append(s)
        totals["updated"] += int(s["written"])
        for k in ("attendees_updated", "missing_personnel", "removed"):
            totals[k] += s[k]
        for reason, n in s["reasons"].items():
            totals["reasons"][reason] = totals["reasons"].get(reason, 0) + n
    return totals
