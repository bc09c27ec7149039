import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.responses import JSONResponse

from questa_app.cache import TTLCache
from questa_app.config import settings
from questa_app.deadlines import ResolvedStatus, resolve
from questa_app.documents import DocumentStore
from questa_app.errors import ActionRejected, DocumentNotFound
from questa_app.logging_setup import setup_logging
from questa_app.repository import QuestaRepository
from questa_app.services.admin_actions import AdminActions
from questa_app.services.notifier import Notifier
from questa_app.services.security import keys_match

from .schemas import (
    NotificationOut, RejectIn, ResolvedStatusOut, ReviewOut, TaskOut, TimerOut,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Questa API", version="1.0.0")

@lru_cache(maxsize=1)
def _repository() -> QuestaRepository:
    setup_logging(level=settings.log_level, log_dir=settings.log_dir)
    store = DocumentStore.from_url(settings.database_url)
    return QuestaRepository(store, cache=TTLCache(ttl_seconds=settings.cache_ttl_seconds))

def get_repo() -> QuestaRepository:
    return _repository()

def get_notifier() -> Notifier:
    return Notifier.from_settings()

def require_admin(x_admin_key: Optional[str] = Header(default=None)) -> None:
    if not keys_match(settings.admin_api_key, x_admin_key):
        raise HTTPException(status_code=403, detail="Admin key required")

def get_admin(
    repo: QuestaRepository = Depends(get_repo),
    notifier: Notifier = Depends(get_notifier),
    _: None = Depends(require_admin),
) -> AdminActions:
    return AdminActions(repo, notifier=notifier)

@app.exception_handler(DocumentNotFound)
async def _not_found(request: Request, exc: DocumentNotFound):
    return JSONResponse({"detail": str(exc)}, status_code=404)

@app.exception_handler(ActionRejected)
async def _rejected(request: Request, exc: ActionRejected):
    return JSONResponse({"detail": str(exc)}, status_code=409)

def _status_out(status: ResolvedStatus) -> ResolvedStatusOut:
    return ResolvedStatusOut(
        is_ended=status.is_ended,
        is_warning=status.is_warning,
        hours_remaining=status.hours_remaining,
        display_string=status.display_string,
        badge=status.badge,
    )

@app.get("/healthz")
def healthz():
    return {"status": "ok"}

@app.get("/v1/tasks", response_model=List[TaskOut])
def list_tasks(now: Optional[str] = None, repo: QuestaRepository = Depends(get_repo)):
    out = []
    for task in repo.list_active_tasks():
        out.append(TaskOut(
            id=task.id,
            title=task.title,
            reward=task.reward,
            status=task.status,
            deadline=task.deadline,
            user_time_limit_hours=task.user_time_limit_hours,
            max_completions=task.max_completions,
            completions=repo.completion_count(task.id),
            resolved=_status_out(resolve(task.deadline_spec, now)),
        ))
    return out

# `now` is optional so clients can ask "how will this look at time X"
@app.get("/v1/tasks/{task_id}/deadline", response_model=ResolvedStatusOut)
def task_deadline(task_id: str, now: Optional[str] = None, repo: QuestaRepository = Depends(get_repo)):
    task = repo.require_task(task_id)
    return _status_out(resolve(task.deadline_spec, now))

@app.get("/v1/users/{user_id}/timers", response_model=List[TimerOut])
def user_timers(user_id: str, repo: QuestaRepository = Depends(get_repo)):
    repo.require_user(user_id)
    return [
        TimerOut(
            task_id=t.task_id,
            task_title=t.task_title,
            status=t.status,
            started_at=t.started_at,
            time_limit_hours=t.time_limit_hours,
            timer=_status_out(t.timer),
        )
        for t in AdminActions(repo).user_timers(user_id)
    ]

@app.get("/v1/users/{user_id}/notifications", response_model=List[NotificationOut])
def user_notifications(user_id: str, limit: int = 50, repo: QuestaRepository = Depends(get_repo)):
    return [
        NotificationOut(id=n.id, type=n.type, title=n.title, message=n.message,
                        data=n.data, is_read=n.is_read, created_at=n.created_at)
        for n in repo.list_notifications(user_id, limit=limit)
    ]

@app.post("/v1/notifications/{notification_id}/read")
def mark_read(notification_id: str, repo: QuestaRepository = Depends(get_repo)):
    repo.mark_notification_read(notification_id)
    return {"id": notification_id, "is_read": True}

@app.post("/v1/admin/verifications/{verification_id}/approve", response_model=ReviewOut)
def approve_verification(verification_id: str, admin: AdminActions = Depends(get_admin)):
    ver = admin.approve_verification(verification_id)
    return ReviewOut(id=ver.id, status=ver.status, rejection_reason=ver.rejection_reason)

@app.post("/v1/admin/verifications/{verification_id}/reject", response_model=ReviewOut)
def reject_verification(verification_id: str, body: RejectIn, admin: AdminActions = Depends(get_admin)):
    ver = admin.reject_verification(verification_id, body.reason.strip())
    return ReviewOut(id=ver.id, status=ver.status, rejection_reason=ver.rejection_reason)

@app.post("/v1/admin/withdrawals/{withdrawal_id}/approve", response_model=ReviewOut)
def approve_withdrawal(withdrawal_id: str, admin: AdminActions = Depends(get_admin)):
    wd = admin.approve_withdrawal(withdrawal_id)
    return ReviewOut(id=wd.id, status=wd.status, rejection_reason=wd.rejection_reason)

@app.post("/v1/admin/withdrawals/{withdrawal_id}/reject", response_model=ReviewOut)
def reject_withdrawal(withdrawal_id: str, body: RejectIn, admin: AdminActions = Depends(get_admin)):
    wd = admin.reject_withdrawal(withdrawal_id, body.reason)
    logger.info("withdrawal %s rejected via api", withdrawal_id)
    return ReviewOut(id=wd.id, status=wd.status, rejection_reason=wd.rejection_reason)
