# utils/auth.py
from __future__ import annotations
from typing import Optional
from datetime import datetime, timezone

import bcrypt
from bson import ObjectId
from db import col
from utils.guards import guard_role

ROLES = ("reservist", "enlisted", "staff", "administrator", "director")
INACTIVE_STATUSES = ("deactivated", "retired")

# ---------------- core helpers ----------------
def _users():
    return col("users")

def _now():
    return datetime.now(tz=timezone.utc)

def _nemail(e: str) -> str:
    return (e or "").strip().lower()

def _hash(pw: str) -> str:
    return bcrypt.hashpw(pw.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

def _check_pw(pw: str, stored) -> bool:
    """Accept string or bytes hashes."""
    if not stored:
        return False
    if isinstance(stored, str):
        stored = stored.encode("utf-8")
    try:
        return bcrypt.checkpw(pw.encode("utf-8"), stored)
    except ValueError:  # not a bcrypt hash
        return False

def _public(u: dict) -> dict:
    if not u: return {}
    out = dict(u)
    out.pop("password", None)
    if isinstance(out.get("_id"), ObjectId):
        out["_id"] = str(out["_id"])
    return out

def display_name(u: dict) -> str:
    u = u or {}
    name = f"{u.get('firstName', '')} {u.get('lastName', '')}".strip()
    return name or u.get("email", "")

# ---------------- lookups ----------------
def get_user(email: str) -> Optional[dict]:
    return _users().find_one({"email": _nemail(email)})

def create_user(email: str, first_name: str, last_name: str, role: str, password: str, **extra) -> dict:
    email = _nemail(email)
    role = (role or "").strip().lower()
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role!r}")
    if (u := get_user(email)):
        return _public(u)
    doc = {
        "email": email, "firstName": first_name, "lastName": last_name,
        "role": role, "status": "active",
        "password": _hash(password),
        "createdAt": _now(), "updatedAt": _now(), **(extra or {})
    }
    _users().insert_one(doc)
    return _public(doc)

def verify_login(email: str, password: str) -> Optional[dict]:
    u = get_user(email)
    if not u or (u.get("status") or "active") in INACTIVE_STATUSES:
        return None
    if not _check_pw(password, u.get("password")):
        return None
    _users().update_one({"_id": u["_id"]}, {"$set": {"lastLogin": _now()}})
    return u

# ---------------- session ----------------
def session_user(u: dict) -> dict:
    """What we keep in st.session_state.user."""
    return {
        "_id": str(u["_id"]),
        "email": u.get("email", ""),
        "name": display_name(u),
        "role": (u.get("role") or "").lower(),
    }

def require_role(*roles):
    return guard_role(*roles)

def render_logout_sidebar():
    import streamlit as st
    u = st.session_state.get("user") or {}
    with st.sidebar:
        st.caption(f"Signed in as **{u.get('name', '')}** ({u.get('role', '')})")
        if st.button("Log out", use_container_width=True):
            st.session_state.pop("user", None)
            st.switch_page("app.py")
