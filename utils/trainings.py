# utils/trainings.py
"""
Request-scoped training registration handlers used by the pages.

Every handler takes the signed-in `user` ({"_id", "email", "name", "role"})
and checks it before touching the database.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from config import COUNT_SOURCE, RECONCILE_ROLES
from db import col
from utils.attendees import count_valid_attendees, normalize_id, validate_attendees
from utils.cleanup import cleanup_all
from utils.errors import AuthorizationError, NotMigratedError, RegistrationError, TrainingNotFound
from utils.guards import check_role
from utils.logging_config import get_logger
from utils.migrate import migrate_all, migrate_training, rebuild_attendee_cache
from utils.personnel import PersonnelResolver, refresh_attendees, snapshot_from_record
from utils.reconcile import reconcile_all, reconcile_registered_count

logger = get_logger(__name__)

CLOSED_STATUSES = ("completed", "cancelled")


def _get_training(training_id) -> dict:
    tid = normalize_id(training_id)
    training = col("trainings").find_one({"_id": tid}) if tid is not None else None
    if training is None:
        raise TrainingNotFound(training_id)
    return training


def _is_reconciler(user: dict) -> bool:
    try:
        check_role(user, *RECONCILE_ROLES)
    except AuthorizationError:
        return False
    return True


def _ensure_migrated(user: dict, training: dict, source: str) -> dict:
    """Migrate an unmigrated training on read, but only for RECONCILE_ROLES callers."""
    if source == "registrations" and not training.get("registrationsMigrated") and _is_reconciler(user):
        logger.info('migrating attendees of "%s" before counting', training.get("title"))
        migrate_training(training)
        training = col("trainings").find_one({"_id": training["_id"]})
    return training


def _count(training: dict, source: str):
    """(registered, corrected). Unmigrated trainings are counted from the embedded array, read-only."""
    if source == "registrations" and not training.get("registrationsMigrated"):
        return count_valid_attendees(training.get("attendees")), False
    rc = reconcile_registered_count(training, source)
    return rc["after"], rc["written"]


def _migrate_for_write(training: dict):
    # the live path rewrites the embedded cache from rows, so every row must exist first
    if training.get("registrationsMigrated"):
        return
    logger.info('migrating attendees of "%s" before a live write', training.get("title"))
    if migrate_training(training)["errors"]:
        raise NotMigratedError(training["_id"])


def percentage(count: int, capacity: Optional[int]) -> int:
    if not capacity:
        return 0
    return int(math.floor(count * 100.0 / capacity + 0.5))


# ---------------- reads (self-correcting) ----------------
def get_training_attendees(user: dict, training_id, source: Optional[str] = None) -> Dict[str, Any]:
    """
    Validated, de-duplicated, name-refreshed attendee list. Fixes the stored
    `registered` counter when it has drifted. Snapshots are not persisted.
    """
    check_role(user)
    source = source or COUNT_SOURCE
    training = _ensure_migrated(user, _get_training(training_id), source)

    result = validate_attendees(training.get("attendees"))
    resolver = PersonnelResolver.from_db()
    attendees, stats = refresh_attendees(result["valid"], resolver)

    registered, corrected = _count(training, source)
    return {
        "trainingId": training["_id"],
        "title": training.get("title", ""),
        "attendees": attendees,
        "removed": [{k: r[k] for k in ("index", "userId", "reason")} for r in result["removed"]],
        "registered": registered,
        "corrected": corrected,
        "missing_personnel": stats["missing_personnel"],
    }


def get_registration_counts(user: dict, training_id=None, source: Optional[str] = None):
    """
    One training -> {"count", "capacity", "percentage"}.
    All trainings -> list of {"trainingId", "title", "registered", "capacity", "percentage"}.
    """
    check_role(user)
    source = source or COUNT_SOURCE

    if training_id is not None:
        training = _ensure_migrated(user, _get_training(training_id), source)
        n, _ = _count(training, source)
        capacity = training.get("capacity") or 0
        return {"count": n, "capacity": capacity, "percentage": percentage(n, capacity)}

    out: List[Dict[str, Any]] = []
    for training in list(col("trainings").find({}).sort("startDate", 1)):
        training = _ensure_migrated(user, training, source)
        n, _ = _count(training, source)
        capacity = training.get("capacity") or 0
        out.append({
            "trainingId": training["_id"],
            "title": training.get("title", ""),
            "registered": n,
            "capacity": capacity,
            "percentage": percentage(n, capacity),
        })
    return out


# ---------------- live register / cancel ----------------
def register_for_training(user: dict, training_id) -> Dict[str, Any]:
    check_role(user)
    training = _get_training(training_id)
    tid = training["_id"]
    uid = normalize_id(user.get("_id"))

    if (training.get("status") or "").lower() in CLOSED_STATUSES:
        raise RegistrationError("Cannot register for completed or cancelled trainings")

    _migrate_for_write(training)
    regs = col("training_registrations")
    if regs.find_one({"trainingId": tid, "userId": uid}, {"_id": 1}):
        raise RegistrationError("You are already registered for this training")

    capacity = training.get("capacity")
    if capacity and regs.count_documents({"trainingId": tid}) >= capacity:
        raise RegistrationError("Training has reached maximum capacity")

    person = col("users").find_one({"_id": uid})
    if person is None:
        raise RegistrationError("User not found")

    now = datetime.now(tz=timezone.utc)
    doc = {
        "trainingId": tid,
        "userId": uid,
        "status": "registered",
        "registrationDate": now,
        "userData": snapshot_from_record(person),
        "createdAt": now,
    }
    try:
        regs.insert_one(doc)
    except DuplicateKeyError:
        raise RegistrationError("You are already registered for this training")

    cache = rebuild_attendee_cache(tid)
    logger.info('%s registered for "%s" (%d registered)', user.get("email"), training.get("title"), cache["registered"])
    return {"registration": doc, "registered": cache["registered"]}


def cancel_registration(user: dict, training_id) -> Dict[str, Any]:
    check_role(user)
    training = _get_training(training_id)
    tid = training["_id"]
    uid = normalize_id(user.get("_id"))

    _migrate_for_write(training)
    res = col("training_registrations").delete_one({"trainingId": tid, "userId": uid})
    if not res.deleted_count:
        raise RegistrationError("You are not registered for this training")

    cache = rebuild_attendee_cache(tid)
    logger.info('%s cancelled registration for "%s" (%d registered)', user.get("email"), training.get("title"), cache["registered"])
    return {"registered": cache["registered"]}


# ---------------- admin batch triggers ----------------
def run_registration_migration(user: dict, refresh: bool = True, limit: Optional[int] = None) -> Dict[str, Any]:
    check_role(user, *RECONCILE_ROLES)
    resolver = PersonnelResolver.from_db() if refresh else None
    totals = migrate_all(resolver=resolver, limit=limit)
    logger.info("migration by %s: %d processed, %d updated, %d migrated, %d created",
                user.get("email"), totals["processed"], totals["updated"], totals["migrated"], totals["created"])
    return totals


def run_attendee_cleanup(user: dict, prune: bool = False, commit: bool = True) -> Dict[str, Any]:
    check_role(user, *RECONCILE_ROLES)
    return cleanup_all(prune=prune, commit=commit)


def run_count_sync(user: dict, commit: bool = True, source: Optional[str] = None) -> Dict[str, Any]:
    check_role(user, *RECONCILE_ROLES)
    return reconcile_all(source=source, commit=commit)
