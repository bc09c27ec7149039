from __future__ import annotations
import streamlit as st
from questa_app.config import ADMIN_TITLE
from questa_app.ui.state import init_session_state, get_repository, refresh_data
from questa_app.ui.admin_sections import (
    overview, tasks, verifications, withdrawals, users, quest_limits, settings_form,
)

st.set_page_config(page_title=ADMIN_TITLE, layout="wide")
st.title(ADMIN_TITLE)

init_session_state()

with st.sidebar:
    st.header("Admin")
    uid = st.text_input("Admin user ID", value=st.session_state.uid).strip()
    st.session_state.uid = uid
    st.button("Refresh data", width="stretch", on_click=refresh_data)

user = get_repository().get_user(uid) if uid else None
if user is None or not user.is_admin:
    st.warning("Admin access only.")
    st.caption("Grant the first admin with `questa-setup-admin --email you@example.com`.")
    st.stop()

tabs = st.tabs(["Overview", "Tasks", "Verifications", "Withdrawals", "Users", "Quest limits", "Settings"])
with tabs[0]:
    overview()
with tabs[1]:
    tasks()
with tabs[2]:
    verifications()
with tabs[3]:
    withdrawals()
with tabs[4]:
    users()
with tabs[5]:
    quest_limits()
with tabs[6]:
    settings_form()
