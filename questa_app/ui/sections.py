from __future__ import annotations
from datetime import timedelta
from typing import List

import pandas as pd
import streamlit as st

from questa_app.config import settings
from questa_app.deadlines import ResolvedStatus, format_time_limit
from questa_app.errors import QuestaError
from questa_app.formatting import format_peso, format_when
from questa_app.models import ProgressStatus, ReviewStatus, VerificationPhase
from questa_app.services.user_actions import TaskCard
from questa_app.ui.state import get_repository, user_actions

BADGE_COLORS = {"ended": "red", "warning": "orange", "active": "green", "unknown": "gray"}

STATUS_BADGES = {
    ReviewStatus.PENDING: ("⏳", "Pending", "orange"),
    ReviewStatus.APPROVED: ("✅", "Approved", "green"),
    ReviewStatus.REJECTED: ("❌", "Rejected", "red"),
}

PROGRESS_LABELS = {
    ProgressStatus.AVAILABLE: "Available",
    ProgressStatus.PENDING: "Waiting for review",
    ProgressStatus.UNLOCKED: "Unlocked: submit final proof",
    ProgressStatus.REJECTED: "Rejected: restart the task",
    ProgressStatus.REJECTED_RESUBMISSION: "Rejected: resubmit final proof",
    ProgressStatus.COMPLETE: "Completed",
}

def toast(msg: str) -> None:
    st.toast(msg)

def deadline_badge(status: ResolvedStatus, icon: str = "⏰") -> str:
    color = BADGE_COLORS[status.badge]
    return f":{color}[{icon} {status.display_string}]"

def status_badge(status: ReviewStatus) -> str:
    icon, label, color = STATUS_BADGES.get(status, ("•", str(status), "gray"))
    return f":{color}[{icon} {label}]"

def status_label(status: ReviewStatus) -> str:
    icon, label, _ = STATUS_BADGES.get(status, ("•", str(status), "gray"))
    return f"{icon} {label}"

def wallet_header(uid: str) -> None:
    repo = get_repository()
    user = repo.get_user(uid)
    completions, earned = repo.user_completion_stats(uid)
    c1, c2, c3 = st.columns(3)
    c1.metric("Wallet balance", format_peso(user.wallet_balance if user else 0))
    c2.metric("Quests completed", completions)
    c3.metric("Total earned", format_peso(earned))
    if user and user.is_disabled:
        st.error("Your account is disabled. Contact support.")

@st.fragment(run_every=timedelta(seconds=settings.countdown_refresh_seconds))
def countdown_strip(uid: str) -> None:
    """Re-resolves every visible deadline on each tick; the resolver itself keeps no state."""
    cards = user_actions().task_board(uid)
    running = [c for c in cards if c.progress.is_started]
    if not running:
        return
    st.caption("Your running tasks")
    cols = st.columns(min(len(running), 4))
    for col, card in zip(cols, running):
        with col:
            st.markdown(f"**{card.task.title}**")
            st.markdown(deadline_badge(card.timer, icon="⌛"))

def _start(uid: str, task_id: str) -> None:
    try:
        progress = user_actions().start_task(uid, task_id)
    except QuestaError as e:
        st.error(str(e))
        return
    toast(f"Task started! Reference: {progress.reference_number}")
    st.rerun()

def verification_form(uid: str, card: TaskCard) -> None:
    status = card.progress.status
    if status == ProgressStatus.PENDING and card.progress.verification_id:
        st.info("Your verification is waiting for admin review.")
        return
    if status == ProgressStatus.PENDING:
        phase = VerificationPhase.INITIAL
    elif status in (ProgressStatus.UNLOCKED, ProgressStatus.REJECTED_RESUBMISSION):
        phase = VerificationPhase.FINAL
    else:
        return

    tid = card.task.id
    with st.form(f"verify_{tid}", clear_on_submit=True):
        st.markdown(f"**{phase.capitalize()} verification**")
        game_id = st.text_input("Game ID", key=f"game_id_{tid}")
        upload = st.file_uploader("Screenshot", type=["png", "jpg", "jpeg", "webp", "gif"], key=f"shot_{tid}")
        sent = st.form_submit_button("Submit verification", type="primary")
    if not sent:
        return
    if upload is None:
        st.error("Please upload a screenshot.")
        return
    try:
        user_actions().submit_verification(uid, tid, phase, game_id=game_id,
                                           image=upload.getvalue(), file_name=upload.name)
    except QuestaError as e:
        st.error(str(e))
        return
    toast("Verification submitted.")
    st.rerun()

def task_cards(uid: str) -> None:
    cards: List[TaskCard] = user_actions().task_board(uid)
    if not cards:
        st.caption("No quests available right now.")
        return
    for card in cards:
        task = card.task
        with st.container(border=True):
            head_l, head_r = st.columns([0.7, 0.3])
            with head_l:
                st.markdown(f"### {task.title}")
                if task.banner:
                    st.image(task.banner, width="stretch")
                st.write(task.description or "(no description)")
            with head_r:
                st.metric("Reward", format_peso(task.reward))
                st.markdown(deadline_badge(card.deadline))
                st.caption(f"Time limit: {format_time_limit(task.user_time_limit_hours)}")
                if task.max_completions is not None:
                    st.caption(f"Completions: {card.completions} / {task.max_completions}")

            st.caption(f"Status: {PROGRESS_LABELS[card.progress.status]}")
            if card.progress.is_started:
                st.markdown(f"Your time left: {deadline_badge(card.timer, icon='⌛')}")
                if card.progress.reference_number:
                    st.caption(f"Reference: {card.progress.reference_number}")

            if card.can_start:
                label = "Start task" if card.progress.status == ProgressStatus.AVAILABLE else "Restart task"
                if st.button(label, key=f"start_{task.id}"):
                    _start(uid, task.id)
            elif card.is_full and not card.progress.is_started:
                st.warning("This quest is full.")
            verification_form(uid, card)

def sign_up_form(uid: str) -> None:
    st.info("No account found for this user ID. Create one to start questing.")
    with st.form("sign_up"):
        email = st.text_input("Email")
        sent = st.form_submit_button("Create account", type="primary")
    if not sent:
        return
    try:
        user_actions().register(uid, email)
    except QuestaError as e:
        st.error(str(e))
        return
    toast("Account created!")
    st.rerun()

def withdrawal_form(uid: str) -> None:
    with st.form("withdrawal", clear_on_submit=True):
        amount = st.number_input("Amount", min_value=0.0, step=50.0)
        method = st.selectbox("Method", ["gcash", "paymaya", "bank"])
        account = st.text_input("Account number / name")
        sent = st.form_submit_button("Submit request", type="primary")
    if not sent:
        return
    try:
        wd = user_actions().request_withdrawal(uid, float(amount), method, account.strip())
    except QuestaError as e:
        st.error(str(e))
        return
    st.success(f"Withdrawal request submitted. Reference: {wd.reference_number}")

def history(uid: str) -> None:
    repo = get_repository()
    rows = []
    for w in repo.list_withdrawals(user_id=uid):
        rows.append({"When": format_when(w.created_at), "Type": "Withdrawal",
                     "Detail": f"{w.method.upper()} - {w.account}", "Amount": f"-{format_peso(w.amount)}",
                     "Status": status_label(w.status), "Reference": w.reference_number or "",
                     "Note": w.rejection_reason or ""})
    for v in repo.list_verifications(user_id=uid):
        task = repo.get_task(v.task_id)
        rows.append({"When": format_when(v.created_at), "Type": f"{v.phase.capitalize()} verification",
                     "Detail": task.title if task else v.task_id, "Amount": "",
                     "Status": status_label(v.status), "Reference": v.reference_number or "",
                     "Note": v.rejection_reason or ""})
    if not rows:
        st.caption("No activity yet.")
        return
    df = pd.DataFrame(rows).sort_values("When", ascending=False)
    st.dataframe(df, width="stretch", hide_index=True)

def notifications(uid: str) -> None:
    repo = get_repository()
    notes = repo.list_notifications(uid, limit=20)
    if not notes:
        st.caption("No notifications.")
        return
    for note in notes:
        with st.container(border=True):
            title = note.title if note.is_read else f"**{note.title}**"
            st.markdown(f"{title} · {format_when(note.created_at)}")
            st.write(note.message)
            if not note.is_read and st.button("Mark as read", key=f"read_{note.id}"):
                repo.mark_notification_read(note.id)
                st.rerun()
