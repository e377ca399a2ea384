# app.py
# Entry page: sign in, make sure indexes exist, then hand off to
# pages/1_Trainings.py (everyone) or pages/9_Admin_Trainings.py (RECONCILE_ROLES).

import streamlit as st
from pymongo.errors import PyMongoError

from config import RECONCILE_ROLES
from utils.auth import verify_login, session_user
from utils.bootstrap_indexes import ensure_indexes
from utils.logging_config import configure

configure()

st.set_page_config(
    page_title="AFP Personnel Records",
    page_icon="🎖️",
    layout="centered",
    initial_sidebar_state="collapsed",
)

st.markdown(
    """
    <style>
      #MainMenu, footer {visibility: hidden;}
      .signin-note {color: #6b7280; font-size: 0.85rem;}
    </style>
    """,
    unsafe_allow_html=True,
)


@st.cache_resource(show_spinner=False)
def _bootstrap():
    ensure_indexes()
    return True


def go_to_role_home(role: str):
    role = (role or "").lower()
    if role in {r.lower() for r in RECONCILE_ROLES}:
        st.switch_page("pages/9_Admin_Trainings.py")
    else:
        st.switch_page("pages/1_Trainings.py")


def login_view():
    st.markdown("### 🎖️ AFP Personnel Records")
    st.markdown("<div class='signin-note'>Use your AFP email and PMS password.</div>", unsafe_allow_html=True)

    email = st.text_input("Email", key="login_email", value="", placeholder="you@afp.mil.ph")
    password = st.text_input("Password", type="password", key="login_pw")
    do_login = st.button("Login", use_container_width=True)

    if do_login:
        try:
            user = verify_login(email, password)
        except PyMongoError as e:
            st.error(f"Database unavailable: {e}")
            st.stop()
        if not user:
            st.error("Invalid credentials or inactive account.")
            st.stop()

        st.session_state.user = session_user(user)
        go_to_role_home(st.session_state.user["role"])


def auto_route_if_logged_in():
    u = st.session_state.get("user")
    if u and u.get("role"):
        go_to_role_home(u["role"])


if __name__ == "__main__":
    try:
        _bootstrap()
    except PyMongoError as e:
        st.error(f"Could not connect to MongoDB: {e}")
        st.stop()
    auto_route_if_logged_in()
    login_view()
