# pages/9_Admin_Trainings.py

from __future__ import annotations

import pandas as pd
import streamlit as st
from pymongo.errors import PyMongoError

from config import COUNT_SOURCE, RECONCILE_ROLES
from utils.auth import require_role, render_logout_sidebar
from utils.errors import ReconcileError
from utils.mongo_df import attendees_to_df, docs_to_df
from utils.trainings import (
    get_training_attendees,
    run_attendee_cleanup,
    run_count_sync,
    run_registration_migration,
)

# ---- auth gate (administrative roles only) ----
user = require_role(*RECONCILE_ROLES)
render_logout_sidebar()

st.title("🛠️ Admin: Training Registrations")
st.caption(f"Registered counts are taken from **{COUNT_SOURCE}**.")

tabs = st.tabs(
    [
        "Sync Counts",
        "Fix Attendees",
        "Migrate Registrations",
        "Inspect Training",
    ]
)

# -------------------------------
# 1) Count reconciliation
# -------------------------------
with tabs[0]:
    st.subheader("Synchronize registered counts")
    commit = st.checkbox("Write changes", value=False, key="sync_commit")
    if st.button("Run", key="sync_run", type="primary"):
        try:
            res = run_count_sync(user, commit=commit)
        except (ReconcileError, PyMongoError) as e:
            st.error(str(e))
        else:
            st.success(f"Processed {res['processed']}. Out of sync: {len(res['changes'])}. Updated: {res['updated']}.")
            if res["unmigrated"]:
                st.warning(f"{len(res['unmigrated'])} trainings are not migrated yet; run the migration first.")
            if res["changes"]:
                st.dataframe(docs_to_df(res["changes"]), use_container_width=True, hide_index=True)

# -------------------------------
# 2) Attendee cleanup
# -------------------------------
with tabs[1]:
    st.subheader("Refresh attendee snapshots from personnel")
    prune = st.checkbox("Drop invalid / duplicate attendees", value=False)
    commit = st.checkbox("Write changes", value=False, key="fix_commit")
    if st.button("Run", key="fix_run", type="primary"):
        try:
            res = run_attendee_cleanup(user, prune=prune, commit=commit)
        except (ReconcileError, PyMongoError) as e:
            st.error(str(e))
        else:
            c1, c2, c3, c4 = st.columns(4)
            c1.metric("Trainings", res["processed"])
            c2.metric("Trainings updated", res["updated"])
            c3.metric("Attendees updated", res["attendees_updated"])
            c4.metric("Personnel not found", res["missing_personnel"])
            if res["reasons"]:
                st.write("Invalid attendees by reason")
                st.dataframe(pd.DataFrame(sorted(res["reasons"].items()), columns=["reason", "count"]),
                             hide_index=True)

# -------------------------------
# 3) Migration
# -------------------------------
with tabs[2]:
    st.subheader("Migrate embedded attendees → training_registrations")
    refresh = st.checkbox("Refresh userData from personnel while migrating", value=True)
    if st.button("Migrate", type="primary"):
        try:
            res = run_registration_migration(user, refresh=refresh)
        except (ReconcileError, PyMongoError) as e:
            st.error(str(e))
        else:
            c1, c2, c3, c4, c5 = st.columns(5)
            c1.metric("Processed", res["processed"])
            c2.metric("Updated", res["updated"])
            c3.metric("Migrated", res["migrated"])
            c4.metric("Created", res["created"])
            c5.metric("Personnel not found", res["missing_personnel"])
            if res["errors"] or res["failed_trainings"]:
                st.warning(f"{res['errors']} registrations and {res['failed_trainings']} trainings failed; see logs.")
            st.dataframe(docs_to_df(res["trainings"]), use_container_width=True, hide_index=True)

# -------------------------------
# 4) Inspect one training
# -------------------------------
with tabs[3]:
    st.subheader("Validated attendee list")
    training_id = st.text_input("Training ID")
    if st.button("Load", key="inspect") and training_id:
        try:
            data = get_training_attendees(user, training_id.strip())
        except (ReconcileError, PyMongoError) as e:
            st.error(str(e))
        else:
            st.write(f"**{data['title']}** — registered: {data['registered']}"
                     + (" (corrected)" if data["corrected"] else ""))
            if data["removed"]:
                st.write("Excluded entries")
                st.dataframe(docs_to_df(data["removed"]), hide_index=True)
            st.dataframe(attendees_to_df(data["attendees"]), use_container_width=True, hide_index=True)
