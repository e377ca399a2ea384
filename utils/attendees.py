# utils/attendees.py
"""
Attendee validation for the embedded `trainings.attendees` arrays.

An attendee entry looks like:
    {"userId": ObjectId(...), "status": "registered",
     "registrationDate": datetime, "userData": {"firstName": ..., ...}}

Older documents carry userId as a hex string, as extended JSON
({"$oid": "..."}) or as a populated user document, and some have no status.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId

from utils.logging_config import get_logger

logger = get_logger(__name__)

ATTENDEE_STATUSES = ("registered", "attended", "completed", "absent", "excused")
DEFAULT_STATUS = "registered"

REASON_MISSING_USER = "missing userId"
REASON_DUPLICATE = "duplicate userId"
REASON_MISSING_DATA = "missing user data"


def normalize_id(ref: Any):
    """
    Normalize a user/training reference to an ObjectId when it looks like one.
    Returns None for empty references; non-hex strings are kept as strings.
    """
    if ref is None or ref == "":
        return None
    if isinstance(ref, ObjectId):
        return ref
    if isinstance(ref, dict):
        if "$oid" in ref:
            return normalize_id(ref["$oid"])
        if "_id" in ref:  # populated user document
            return normalize_id(ref["_id"])
        return None
    s = str(ref).strip()
    if not s:
        return None
    try:
        return ObjectId(s)
    except (InvalidId, TypeError):
        return s


def user_key(ref: Any) -> Optional[str]:
    """String key used to compare user references."""
    uid = normalize_id(ref)
    return str(uid) if uid is not None else None


def attendee_status(attendee: dict) -> str:
    return (attendee or {}).get("status") or DEFAULT_STATUS


def has_display_name(user_data: Optional[dict]) -> bool:
    ud = user_data or {}
    for k in ("firstName", "lastName", "fullName"):
        v = ud.get(k)
        if isinstance(v, str) and v.strip():
            return True
    return False


def _rejection(attendee: dict, key: Optional[str], seen: set) -> Optional[str]:
    if key is None:
        return REASON_MISSING_USER
    status = attendee.get("status")
    if status and status not in ATTENDEE_STATUSES:
        return f"invalid status: {status}"
    if key in seen:
        return REASON_DUPLICATE
    if not has_display_name(attendee.get("userData")):
        return REASON_MISSING_DATA
    return None


def validate_attendees(attendees: Optional[Iterable[dict]]) -> Dict[str, List[dict]]:
    """
    Split an attendee list into `valid` and `removed`.

    Order is preserved. For a repeated user the first acceptable entry is
    kept; later ones are removed as duplicates. Entries without a status
    count as "registered".

    removed items: {"index", "userId", "reason", "attendee"}
    """
    valid: List[dict] = []
    removed: List[dict] = []
    seen: set = set()

    for i, attendee in enumerate(attendees or []):
        attendee = attendee or {}
        key = user_key(attendee.get("userId"))
        reason = _rejection(attendee, key, seen)
        if reason:
            logger.debug("attendee #%d (%s) removed: %s", i, key, reason)
            removed.append({"index": i, "userId": key, "reason": reason, "attendee": attendee})
            continue
        seen.add(key)
        valid.append(attendee)

    return {"valid": valid, "removed": removed}


def count_valid_attendees(attendees: Optional[Iterable[dict]]) -> int:
    return len(validate_attendees(attendees)["valid"])


def removal_reasons(removed: List[dict]) -> Dict[str, int]:
    """Reason -> count, with all invalid statuses grouped together."""
    out: Dict[str, int] = {}
    for r in removed:
        reason = r["reason"]
        if reason.startswith("invalid status"):
            reason = "invalid status"
        out[reason] = out.get(reason, 0) + 1
    return out
