# utils/mongo_df.py
from bson import ObjectId
import pandas as pd

ATTENDEE_COLUMNS = ["rank", "fullName", "company", "email", "militaryId", "status", "registrationDate", "userId"]


def _cell(v):
    if isinstance(v, ObjectId):
        return str(v)
    if isinstance(v, list):
        return len(v)  # embedded arrays show as a count
    return v


def docs_to_df(docs, drop_fields=None, columns=None):
    drop_fields = set(drop_fields or [])
    rows = [{k: _cell(v) for k, v in d.items() if k not in drop_fields} for d in docs]
    return pd.DataFrame(rows, columns=columns)


def attendees_to_df(attendees):
    """One row per attendee with the userData snapshot flattened."""
    rows = []
    for a in attendees or []:
        ud = a.get("userData") or {}
        rows.append({
            "rank": ud.get("rank", ""),
            "fullName": ud.get("fullName") or f"{ud.get('firstName', '')} {ud.get('lastName', '')}".strip(),
            "company": ud.get("company", ""),
            "email": ud.get("email", ""),
            "militaryId": ud.get("militaryId", ""),
            "status": a.get("status") or "registered",
            "registrationDate": a.get("registrationDate"),
            "userId": str(a.get("userId", "")),
        })
    return docs_to_df(rows, columns=ATTENDEE_COLUMNS)
