from __future__ import annotations
from dataclasses import replace
from datetime import datetime, time as dtime, timezone
from typing import Optional

import pandas as pd
import streamlit as st

from questa_app.deadlines import format_time_limit, resolve
from questa_app.errors import QuestaError
from questa_app.formatting import format_peso, format_when, short_user_id, truncate
from questa_app.models import AppSettings, ReviewStatus, Task, TaskState
from questa_app.ui.sections import deadline_badge, status_badge, status_label, toast
from questa_app.ui.state import admin_actions, get_repository, get_storage

LIMIT_UNITS = {"minutes": 1 / 60, "hours": 1.0, "days": 24.0}

def _run(action, success: str) -> bool:
    try:
        action()
    except QuestaError as e:
        st.error(str(e))
        return False
    toast(success)
    return True

def overview() -> None:
    stats = admin_actions().overview_stats()
    c = st.columns(4)
    c[0].metric("Users", stats["users"], help=f"{stats['active_users']} active")
    c[1].metric("Active tasks", stats["active_tasks"], help=f"{stats['tasks']} total")
    c[2].metric("Pending verifications", stats["pending_verifications"])
    c[3].metric("Pending withdrawals", stats["pending_withdrawals"])
    c = st.columns(2)
    c[0].metric("Quest completions", stats["completions"])
    c[1].metric("Wallets total", format_peso(stats["wallet_total"]))

def _split_limit(hours: Optional[float]):
    if not hours:
        return "days", 1.0
    if hours < 1:
        return "minutes", round(hours * 60)
    if hours < 24:
        return "hours", round(hours, 2)
    return "days", round(hours / 24, 2)

def task_form(task: Optional[Task] = None) -> None:
    editing = task is not None
    key = f"task_form_{task.id if editing else 'new'}"
    deadline = task.deadline if editing and task.deadline else None
    unit, amount = _split_limit(task.user_time_limit_hours if editing else None)
    with st.form(key):
        title = st.text_input("Title", value=task.title if editing else "")
        description = st.text_area("Description", value=task.description if editing else "")
        c1, c2, c3 = st.columns(3)
        reward = c1.number_input("Reward", min_value=0.0, value=float(task.reward) if editing else 0.0, step=10.0)
        difficulty = c2.selectbox("Difficulty", ["easy", "medium", "hard", "expert"],
                                  index=["easy", "medium", "hard", "expert"].index(task.difficulty) if editing and task.difficulty in ("easy", "medium", "hard", "expert") else 1)
        state = c3.selectbox("Status", [s.value for s in TaskState],
                             index=[s.value for s in TaskState].index(task.status) if editing else 0)
        c1, c2 = st.columns(2)
        limit_amount = c1.number_input("User time limit", min_value=0.0, value=float(amount), step=1.0)
        limit_unit = c2.selectbox("Unit", list(LIMIT_UNITS), index=list(LIMIT_UNITS).index(unit))
        c1, c2 = st.columns(2)
        d_date = c1.date_input("Deadline date", value=deadline.date() if deadline else None)
        d_time = c2.time_input("Deadline time (UTC)", value=deadline.time() if deadline else dtime(23, 59))
        max_completions = st.number_input("Max completions (0 = unlimited)", min_value=0, step=1,
                                          value=int(task.max_completions or 0) if editing else 0)
        banner = st.text_input("Banner URL", value=(task.banner or "") if editing else "")
        banner_file = st.file_uploader("…or upload a banner", type=["png", "jpg", "jpeg", "webp", "gif"])
        sent = st.form_submit_button("Save task" if editing else "Create task", type="primary")
    if not sent:
        return

    new_deadline = datetime.combine(d_date, d_time, tzinfo=timezone.utc) if d_date else None
    draft = Task(
        id=task.id if editing else "",
        title=title.strip(),
        description=description.strip(),
        reward=float(reward),
        status=TaskState(state),
        difficulty=difficulty,
        banner=banner.strip() or None,
        deadline=new_deadline,
        created_at=task.created_at if editing else None,
        task_deadline_hours=task.task_deadline_hours if editing else None,
        user_time_limit_hours=(limit_amount * LIMIT_UNITS[limit_unit]) or None,
        max_completions=int(max_completions) or None,
    )
    try:
        saved = admin_actions().save_task(draft)
        if banner_file is not None:
            storage = get_storage()
            if storage is None:
                st.warning("Image uploads are not configured; banner skipped.")
            else:
                url = storage.upload_task_banner(banner_file.getvalue(), banner_file.name, saved.id)
                admin_actions().save_task(replace(saved, banner=url))
    except QuestaError as e:
        st.error(str(e))
        return
    toast("Task saved")
    st.session_state.edit_task = None
    st.rerun()

def delete_confirmation_widget(tid: str) -> None:
    with st.container(border=True):
        st.warning(f"Delete task {tid}? This can't be undone.")
        c1, c2 = st.columns(2)
        with c1:
            if st.button("Yes, delete", type="primary", key=f"confirm_del_{tid}"):
                _run(lambda: admin_actions().delete_task(tid), f"Task {tid} deleted")
                st.session_state.confirm_delete_task = None
                st.rerun()
        with c2:
            if st.button("Cancel", key=f"cancel_del_{tid}"):
                st.session_state.confirm_delete_task = None
                st.rerun()

def tasks() -> None:
    repo = get_repository()
    with st.expander("Add task", expanded=False):
        task_form()
    for task in repo.list_tasks():
        status = resolve(task.deadline_spec)
        with st.container(border=True):
            head_l, head_r = st.columns([0.75, 0.25])
            with head_l:
                st.markdown(f"**{task.title}** · {format_peso(task.reward)} · {task.status}")
                st.markdown(f"{deadline_badge(status)} · limit {format_time_limit(task.user_time_limit_hours)}"
                            f" · {repo.completion_count(task.id)} / {task.max_completions or '∞'} completions")
            with head_r:
                flip = TaskState.INACTIVE if task.is_active else TaskState.ACTIVE
                if st.button("Deactivate" if task.is_active else "Activate", key=f"state_{task.id}"):
                    if _run(lambda: admin_actions().set_task_state(task.id, flip), f"Task is now {flip}"):
                        st.rerun()
                if st.button("Edit", key=f"edit_{task.id}"):
                    st.session_state.edit_task = task.id
                if st.button("Delete", key=f"delete_{task.id}"):
                    st.session_state.confirm_delete_task = task.id
            if st.session_state.get("confirm_delete_task") == task.id:
                delete_confirmation_widget(task.id)
            if st.session_state.get("edit_task") == task.id:
                task_form(task)

def verifications() -> None:
    repo = get_repository()
    pending = repo.list_verifications(status=ReviewStatus.PENDING)
    st.caption(f"{len(pending)} waiting for review")
    for ver in pending:
        task = repo.get_task(ver.task_id)
        with st.container(border=True):
            st.markdown(f"**{task.title if task else ver.task_id}** · {ver.phase} · "
                        f"user `{short_user_id(ver.user_id)}` · {status_badge(ver.status)}")
            st.caption(f"Game ID: {ver.game_id or '—'} · Ref: {ver.reference_number or '—'} · "
                       f"{format_when(ver.created_at)}")
            for url in ver.image_urls:
                st.image(url, width=320)
            reason = st.text_input("Rejection reason", key=f"ver_reason_{ver.id}")
            c1, c2 = st.columns(2)
            if c1.button("Approve", type="primary", key=f"ver_ok_{ver.id}"):
                if _run(lambda: admin_actions().approve_verification(ver.id), "Verification processed"):
                    st.rerun()
            if c2.button("Reject", key=f"ver_no_{ver.id}"):
                if _run(lambda: admin_actions().reject_verification(ver.id, reason.strip()), "Verification rejected"):
                    st.rerun()

    done = [v for v in repo.list_verifications() if v.status != ReviewStatus.PENDING]
    if done:
        st.subheader("Reviewed")
        st.dataframe(pd.DataFrame([{
            "When": format_when(v.created_at), "User": short_user_id(v.user_id), "Task": v.task_id,
            "Phase": v.phase, "Status": status_label(v.status), "Reason": v.rejection_reason or "",
        } for v in done]), width="stretch", hide_index=True)

def withdrawals() -> None:
    repo = get_repository()
    status_filter = st.selectbox("Show", ["pending", "approved", "rejected", "all"])
    status = None if status_filter == "all" else ReviewStatus(status_filter)
    items = repo.list_withdrawals(status=status)
    if not items:
        st.caption("Nothing here.")
    for wd in items:
        with st.container(border=True):
            st.markdown(f"**{format_peso(wd.amount)}** via {wd.method} · `{wd.account}` · "
                        f"user `{short_user_id(wd.user_id)}` · {status_badge(wd.status)}")
            st.caption(f"Ref: {wd.reference_number or '—'} · {format_when(wd.created_at)}")
            if wd.status != ReviewStatus.PENDING:
                if wd.rejection_reason:
                    st.caption(f"Reason: {wd.rejection_reason}")
                continue
            c1, c2 = st.columns(2)
            if c1.button("Mark as paid", type="primary", key=f"wd_ok_{wd.id}"):
                if _run(lambda: admin_actions().approve_withdrawal(wd.id), "Withdrawal marked as paid"):
                    st.rerun()
            if c2.button("Reject", key=f"wd_no_{wd.id}"):
                st.session_state.reject_withdrawal = wd.id
            if st.session_state.get("reject_withdrawal") == wd.id:
                reason = st.text_input("Reason", key=f"wd_reason_{wd.id}")
                if st.button("Reject and refund", key=f"wd_refund_{wd.id}"):
                    if _run(lambda: admin_actions().reject_withdrawal(wd.id, reason), "Withdrawal rejected and refunded"):
                        st.session_state.reject_withdrawal = None
                        st.rerun()

def users() -> None:
    repo = get_repository()
    people = repo.list_users()
    st.dataframe(pd.DataFrame([{
        "ID": short_user_id(u.id), "Email": u.email, "Balance": format_peso(u.wallet_balance),
        "Status": u.status, "Admin": u.is_admin, "Joined": format_when(u.created_at),
    } for u in people]), width="stretch", hide_index=True)
    if not people:
        return

    labels = {f"{short_user_id(u.id)} · {u.email}": u.id for u in people}
    picked = labels[st.selectbox("User", list(labels))]
    with st.form("balance"):
        c1, c2 = st.columns(2)
        action = c1.selectbox("Action", ["add", "subtract", "set"])
        amount = c2.number_input("Amount", min_value=0.0, step=10.0)
        reason = st.text_input("Reason")
        sent = st.form_submit_button("Update balance", type="primary")
    if sent and _run(lambda: admin_actions().adjust_balance(picked, action, float(amount), reason), "Balance updated"):
        st.rerun()
    if st.button("Enable / disable account"):
        if _run(lambda: admin_actions().toggle_user_status(picked), "User status changed"):
            st.rerun()

    is_admin = next(u.is_admin for u in people if u.id == picked)
    if st.button("Revoke admin" if is_admin else "Grant admin"):
        if _run(lambda: admin_actions().set_admin(picked, not is_admin), "Admin access updated"):
            st.rerun()

    st.subheader("Running timers")
    timers = admin_actions().user_timers(picked)
    if not timers:
        st.caption("No tasks in progress.")
    for t in timers:
        c1, c2 = st.columns([0.8, 0.2])
        c1.markdown(f"**{t.task_title}** · {t.status} · started {format_when(t.started_at)} · "
                    f"{deadline_badge(t.timer, icon='⌛')}")
        if c2.button("Restart", key=f"restart_{picked}_{t.task_id}"):
            if _run(lambda: admin_actions().restart_task(picked, t.task_id), "Task restarted"):
                st.rerun()

def quest_limits() -> None:
    repo = get_repository()
    for task in repo.list_active_tasks():
        count = repo.completion_count(task.id)
        with st.container(border=True):
            st.markdown(f"**{truncate(task.title, 60)}** · {count} / {task.max_completions or '∞'} completions")
            c1, c2 = st.columns([0.7, 0.3])
            limit = c1.number_input("Limit", min_value=1, step=1, value=int(task.max_completions or max(count, 1)),
                                    key=f"limit_{task.id}", label_visibility="collapsed")
            if c2.button("Update", key=f"limit_btn_{task.id}"):
                if _run(lambda: admin_actions().update_quest_limit(task.id, limit), f"Quest limit updated to {limit}"):
                    st.rerun()

def settings_form() -> None:
    current = get_repository().load_settings()
    with st.form("settings"):
        site_name = st.text_input("Site name", value=current.site_name)
        site_url = st.text_input("Site URL", value=current.site_url)
        support_email = st.text_input("Support email", value=current.support_email)
        admin_email = st.text_input("Admin email", value=current.admin_email)
        cooldown = st.number_input("Withdrawal cooldown (seconds)", value=int(current.withdrawal_cooldown), step=30)
        max_wd = st.number_input("Max withdrawal", value=float(current.max_withdrawal), step=100.0)
        sent = st.form_submit_button("Save settings", type="primary")
    if sent:
        new = AppSettings(support_email=support_email.strip(), admin_email=admin_email.strip(),
                          site_name=site_name.strip() or "Questa", site_url=site_url.strip(),
                          withdrawal_cooldown=int(cooldown), max_withdrawal=float(max_wd))
        _run(lambda: admin_actions().save_settings(new), "Settings saved")
