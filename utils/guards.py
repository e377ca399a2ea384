import streamlit as st

from utils.errors import AuthorizationError


def _role(u) -> str:
    return ((u or {}).get("role") or "").strip().lower()


def check_role(user, *roles):
    """Raise AuthorizationError unless `user` is signed in (and has one of `roles`)."""
    if not user:
        raise AuthorizationError("Not signed in.")
    if roles and _role(user) not in {r.lower() for r in roles}:
        raise AuthorizationError(f"Access restricted to: {', '.join(roles)}")
    return user


def guard_role(*roles):
    u = st.session_state.get("user")
    try:
        return check_role(u, *roles)
    except AuthorizationError as e:
        if not u:
            st.error("Please log in from the home page.")
        else:
            st.warning(str(e))
        st.stop()
