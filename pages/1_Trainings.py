# pages/1_Trainings.py
from __future__ import annotations

from typing import Any, Dict, List

import streamlit as st
from pymongo.errors import PyMongoError

from utils.auth import require_role, render_logout_sidebar
from utils.errors import ReconcileError
from utils.mongo_df import attendees_to_df, docs_to_df
from utils.trainings import (
    cancel_registration,
    get_registration_counts,
    get_training_attendees,
    register_for_training,
)

user = require_role()
render_logout_sidebar()

st.title("📋 Trainings")


def _counts() -> List[Dict[str, Any]]:
    try:
        return get_registration_counts(user)
    except (ReconcileError, PyMongoError) as e:
        st.error(str(e))
        st.stop()


counts = _counts()
if not counts:
    st.info("No trainings scheduled.")
    st.stop()

df = docs_to_df(counts)
st.dataframe(
    df[["title", "registered", "capacity", "percentage"]],
    use_container_width=True,
    hide_index=True,
    column_config={"percentage": st.column_config.ProgressColumn("filled %", min_value=0, max_value=100)},
)

labels = {f"{c['title']} ({c['registered']}/{c['capacity'] or '∞'})": c["trainingId"] for c in counts}
choice = st.selectbox("Training", list(labels))
training_id = labels[choice]

b1, b2 = st.columns(2)
with b1:
    if st.button("Register", type="primary", use_container_width=True):
        try:
            res = register_for_training(user, training_id)
            st.success(f"Registered. {res['registered']} registered now.")
        except (ReconcileError, PyMongoError) as e:
            st.error(str(e))
with b2:
    if st.button("Cancel my registration", use_container_width=True):
        try:
            res = cancel_registration(user, training_id)
            st.success(f"Registration cancelled. {res['registered']} registered now.")
        except (ReconcileError, PyMongoError) as e:
            st.error(str(e))

st.subheader("Attendees")
try:
    data = get_training_attendees(user, training_id)
except (ReconcileError, PyMongoError) as e:
    st.error(str(e))
    st.stop()

if data["corrected"]:
    st.caption(f"Registered count corrected to {data['registered']}.")
adf = attendees_to_df(data["attendees"])
if adf.empty:
    st.info("Nobody registered yet.")
else:
    st.dataframe(adf.drop(columns=["userId"]), use_container_width=True, hide_index=True)
    st.download_button(
        "Download CSV",
        adf.to_csv(index=False).encode("utf-8"),
        f"attendees_{training_id}.csv",
        "text/csv",
    )
