# utils/personnel.py
"""
Resolve attendee references to authoritative personnel records and rebuild
the denormalized `userData` snapshot carried by each attendee.

Lookup order (first hit wins):
  1) userId      vs personnel _id                  -> high
  2) email       case-insensitive                  -> high
  3) militaryId / serviceId / serviceNumber        -> medium
  4) "first last" case-insensitive                 -> low
"""
from __future__ import annotations

from collections import namedtuple
from typing import Dict, Iterable, List, Optional, Tuple

from config import PERSONNEL_COLLECTIONS
from db import col
from utils.attendees import user_key
from utils.logging_config import get_logger

logger = get_logger(__name__)

Match = namedtuple("Match", ["record", "method", "confidence"])

CONFIDENCE_RANK = {"low": 1, "medium": 2, "high": 3}
PLACEHOLDERS = ("N/A", "Unassigned")
SERVICE_ID_FIELDS = ("militaryId", "serviceId", "serviceNumber")

PERSONNEL_FIELDS = {
    "firstName": 1, "lastName": 1, "name": 1, "fullName": 1,
    "rank": 1, "company": 1, "email": 1,
    "militaryId": 1, "serviceId": 1, "serviceNumber": 1,
}


def _s(v) -> str:
    return v.strip() if isinstance(v, str) else ""


def _nemail(e) -> str:
    return _s(e).lower()


def _nname(n) -> str:
    return " ".join(_s(n).lower().split())


def split_full_name(full_name: str) -> Tuple[str, str]:
    parts = _s(full_name).split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def name_from_email(email: str) -> Optional[Tuple[str, str]]:
    """'juan.delacruz@mail.com' -> ('Juan', 'Delacruz'); None if no dot."""
    local = _s(email).split("@")[0]
    parts = local.split(".")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    cap = lambda p: p[:1].upper() + p[1:]
    return cap(parts[0]), cap(parts[1])


def record_names(record: dict) -> Tuple[str, str, str]:
    """(first, last, full) for a personnel record."""
    first = _s(record.get("firstName"))
    last = _s(record.get("lastName"))
    single = _s(record.get("fullName")) or _s(record.get("name"))
    if (not first or not last) and single:
        f, l = split_full_name(single)
        first = first or f
        last = last or l
    full = single or f"{first} {last}".strip()
    return first, last, full


class PersonnelResolver:
    """In-memory index over personnel records, built once per batch run."""

    def __init__(self, records: Iterable[dict] = ()):
        self.by_id: Dict[str, dict] = {}
        self.by_email: Dict[str, dict] = {}
        self.by_service_id: Dict[str, dict] = {}
        self.by_name: Dict[str, dict] = {}
        self.size = 0
        for r in records:
            self.add(r)
        self.strategies = [
            ("id", "high", self._by_id),
            ("email", "high", self._by_email),
            ("service_id", "medium", self._by_service_id),
            ("name", "low", self._by_name),
        ]

    @classmethod
    def from_db(cls, collections: Iterable[str] = PERSONNEL_COLLECTIONS) -> "PersonnelResolver":
        resolver = cls()
        for name in collections:
            for r in col(name).find({}, PERSONNEL_FIELDS):
                resolver.add(r)
        logger.info("personnel index: %d records, %d emails, %d service ids",
                    resolver.size, len(resolver.by_email), len(resolver.by_service_id))
        return resolver

    def add(self, record: dict):
        # earlier records win, so collections are searched in the given order
        self.size += 1
        key = user_key(record.get("_id"))
        if key:
            self.by_id.setdefault(key, record)
        em = _nemail(record.get("email"))
        if em:
            self.by_email.setdefault(em, record)
        for f in SERVICE_ID_FIELDS:
            sid = _s(record.get(f))
            if sid:
                self.by_service_id.setdefault(sid, record)
        first, last, full = record_names(record)
        for n in (f"{first} {last}", full):
            n = _nname(n)
            if n:
                self.by_name.setdefault(n, record)

    # ---- strategies ----
    def _by_id(self, attendee: dict):
        key = user_key(attendee.get("userId"))
        return self.by_id.get(key) if key else None

    def _by_email(self, attendee: dict):
        em = _nemail((attendee.get("userData") or {}).get("email"))
        return self.by_email.get(em) if em else None

    def _by_service_id(self, attendee: dict):
        ud = attendee.get("userData") or {}
        for f in SERVICE_ID_FIELDS:
            sid = _s(ud.get(f))
            if sid and sid in self.by_service_id:
                return self.by_service_id[sid]
        return None

    def _by_name(self, attendee: dict):
        ud = attendee.get("userData") or {}
        first, last = _s(ud.get("firstName")), _s(ud.get("lastName"))
        n = _nname(f"{first} {last}") if (first or last) else _nname(ud.get("fullName"))
        return self.by_name.get(n) if n else None

    def resolve(self, attendee: dict, min_confidence: Optional[str] = None) -> Optional[Match]:
        floor = CONFIDENCE_RANK.get(min_confidence or "low", 1)
        for method, confidence, strategy in self.strategies:
            if CONFIDENCE_RANK[confidence] < floor:
                continue
            record = strategy(attendee or {})
            if record is not None:
                return Match(record, method, confidence)
        return None

    def get(self, user_ref) -> Optional[dict]:
        key = user_key(user_ref)
        return self.by_id.get(key) if key else None


def snapshot_from_record(record: dict) -> dict:
    """userData snapshot built purely from a personnel record."""
    first, last, full = record_names(record)
    military = _s(record.get("serviceNumber")) or _s(record.get("militaryId")) or _s(record.get("serviceId"))
    service = _s(record.get("serviceNumber")) or _s(record.get("serviceId")) or _s(record.get("militaryId"))
    return {
        "firstName": first,
        "lastName": last,
        "fullName": full,
        "rank": _s(record.get("rank")),
        "company": _s(record.get("company")),
        "email": _s(record.get("email")),
        "militaryId": military,
        "serviceId": service,
    }


def refresh_user_data(attendee: dict, record: Optional[dict]) -> dict:
    """
    Return a corrected userData for one attendee. Pure; the caller persists.

    With a record: authoritative fields overwrite, other keys are kept.
    Without: keep what is there, blank placeholders, and guess the name
    from a first.last email local part.
    """
    current = dict((attendee or {}).get("userData") or {})

    if record is not None:
        fresh = snapshot_from_record(record)
        if not fresh["email"]:
            fresh["email"] = _s(current.get("email"))
        current.update(fresh)
        return current

    for k in ("firstName", "lastName", "fullName", "rank", "company"):
        if current.get(k) in PLACEHOLDERS:
            current[k] = ""

    first, last = _s(current.get("firstName")), _s(current.get("lastName"))
    if not first or not last:
        guessed = name_from_email(current.get("email"))
        if guessed:
            first = first or guessed[0]
            last = last or guessed[1]
    if first:
        current["firstName"] = first
    if last:
        current["lastName"] = last
    if not _s(current.get("fullName")) and (first or last):
        current["fullName"] = f"{first} {last}".strip()
    return current


def hydrate_user_data(attendee: dict, resolver: PersonnelResolver) -> dict:
    """
    Fill userData for an attendee that has no display name but whose userId
    points at a known record. Anything else is returned untouched.
    """
    ud = (attendee or {}).get("userData") or {}
    if any(_s(ud.get(k)) for k in ("firstName", "lastName", "fullName")):
        return attendee
    record = resolver.get(attendee.get("userId"))
    if record is None:
        return attendee
    out = dict(attendee)
    out["userData"] = {**ud, **snapshot_from_record(record)}
    return out


def refresh_attendees(attendees: List[dict], resolver: PersonnelResolver,
                      min_confidence: Optional[str] = None) -> Tuple[List[dict], Dict[str, int]]:
    """
    Refresh every attendee's snapshot. Returns (attendees, stats) where stats
    has `updated`, `missing_personnel` and a count per lookup method.
    """
    out: List[dict] = []
    stats: Dict[str, int] = {"updated": 0, "missing_personnel": 0}
    for a in attendees:
        match = resolver.resolve(a, min_confidence=min_confidence)
        if match is None:
            stats["missing_personnel"] += 1
        else:
            stats[f"by_{match.method}"] = stats.get(f"by_{match.method}", 0) + 1
        new_ud = refresh_user_data(a, match.record if match else None)
        if new_ud != (a.get("userData") or {}):
            stats["updated"] += 1
            a = {**a, "userData": new_ud}
        out.append(a)
    return out, stats
