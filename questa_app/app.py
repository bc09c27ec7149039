from __future__ import annotations
import streamlit as st
from questa_app.config import APP_TITLE
from questa_app.ui.state import init_session_state, get_repository, refresh_data
from questa_app.ui.sections import (
    wallet_header, countdown_strip, task_cards, withdrawal_form, notifications, history, sign_up_form,
)

st.set_page_config(page_title=APP_TITLE, layout="wide")
st.title(APP_TITLE)

init_session_state()

with st.sidebar:
    st.header("Account")
    # sign-in happens upstream; the panel only needs the resolved user id
    uid = st.text_input("User ID", value=st.session_state.uid).strip()
    st.session_state.uid = uid
    st.button("Refresh", width="stretch", on_click=refresh_data)

if not uid:
    st.caption("Enter your user ID in the sidebar to see your quests.")
    st.stop()

if get_repository().get_user(uid) is None:
    sign_up_form(uid)
    st.stop()

wallet_header(uid)
countdown_strip(uid)

tab_tasks, tab_wallet, tab_notes, tab_history = st.tabs(["Quests", "Withdraw", "Notifications", "History"])
with tab_tasks:
    task_cards(uid)
with tab_wallet:
    withdrawal_form(uid)
with tab_notes:
    notifications(uid)
with tab_history:
    history(uid)
