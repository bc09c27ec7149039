from __future__ import annotations
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .cache import TTLCache, ensure_cache
from .documents import DocumentStore, new_doc_id
from .errors import ActionRejected, BelowMinimum, DocumentNotFound
from .models import (
    AppSettings, Notification, ProgressStatus, QuestCompletion, ReviewStatus, Task,
    TaskProgress, User, UserStatus, Verification, VerificationPhase, Withdrawal,
)
from .timestamps import utc_now

logger = logging.getLogger(__name__)

USERS = "users"
TASKS = "tasks"
VERIFICATIONS = "verifications"
WITHDRAWALS = "withdrawals"
NOTIFICATIONS = "notifications"
TASK_PROGRESS = "task_progress"
QUEST_COMPLETIONS = "quest_completions"
SETTINGS = "settings"


class QuestaRepository:
    """
    Typed access to the document store.

    Documents are turned into model objects here, which is also where their
    timestamps get normalized. Collection listings are served from the
    injected cache; each write drops exactly the keys it makes stale.
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: Optional[TTLCache] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.cache = ensure_cache(cache)
        self.clock = clock

    # ---- users ----

    def create_user(self, uid: str, email: str, is_admin: bool = False) -> User:
        user = User(id=uid, email=email, wallet_balance=0.0, is_admin=is_admin,
                    status=UserStatus.ACTIVE, created_at=self.clock())
        self.store.set(USERS, uid, user.to_doc())
        self.cache.invalidate("users")
        logger.info("user created uid=%s admin=%s", uid, is_admin)
        return user

    def get_user(self, uid: str) -> Optional[User]:
        doc = self.store.get(USERS, uid)
        return User.from_doc(doc) if doc else None

    def require_user(self, uid: str) -> User:
        user = self.get_user(uid)
        if user is None:
            raise DocumentNotFound(USERS, uid)
        return user

    def list_users(self, force: bool = False) -> List[User]:
        return self.cache.get_or_load(
            "users",
            lambda: [User.from_doc(d) for d in self.store.query(USERS, order_by="created_at", descending=True)],
            force=force,
        )

    def find_user_by_email(self, email: str) -> Optional[User]:
        wanted = email.strip().lower()
        return next((u for u in self.list_users(force=True) if u.email.lower() == wanted), None)

    def update_user_status(self, uid: str, status: UserStatus) -> None:
        self.store.update(USERS, uid, {"status": status, "updated_at": self.clock()})
        self.cache.invalidate("users")

    def adjust_wallet(self, uid: str, amount: float, floor: Optional[float] = None) -> float:
        """Change the balance by ``amount``; with ``floor`` set, refuse to go below it."""
        try:
            new_balance = self.store.increment(USERS, uid, "wallet_balance", amount, minimum=floor)
        except BelowMinimum:
            raise ActionRejected("Insufficient balance.") from None
        self.cache.invalidate("users")
        logger.info("wallet uid=%s delta=%s balance=%s", uid, amount, new_balance)
        return new_balance

    def set_wallet(self, uid: str, balance: float) -> float:
        """Overwrite the balance; returns the balance it replaced."""
        before, _ = self.store.modify(USERS, uid, lambda doc: {**doc, "wallet_balance": balance})
        self.cache.invalidate("users")
        old = float(before.get("wallet_balance") or 0)
        logger.info("wallet uid=%s set %s -> %s", uid, old, balance)
        return old

    def set_admin(self, uid: str, is_admin: bool) -> None:
        self.store.update(USERS, uid, {"is_admin": is_admin, "updated_at": self.clock()})
        self.cache.invalidate("users")

    # ---- notifications ----

    def create_notification(
        self, user_id: str, type: str, title: str, message: str, data: Optional[Dict[str, Any]] = None
    ) -> Notification:
        note = Notification(id=new_doc_id(), user_id=user_id, type=type, title=title,
                            message=message, data=data or {}, is_read=False, created_at=self.clock())
        self.store.set(NOTIFICATIONS, note.id, note.to_doc())
        self.cache.invalidate(f"notifications:{user_id}")
        return note

    def list_notifications(self, user_id: str, limit: Optional[int] = None) -> List[Notification]:
        notes = self.cache.get_or_load(
            f"notifications:{user_id}",
            lambda: [Notification.from_doc(d) for d in self.store.query(
                NOTIFICATIONS, where={"user_id": user_id}, order_by="created_at", descending=True)],
        )
        return notes[:limit] if limit is not None else notes

    def mark_notification_read(self, notification_id: str) -> None:
        doc = self.store.get(NOTIFICATIONS, notification_id)
        if doc is None:
            raise DocumentNotFound(NOTIFICATIONS, notification_id)
        self.store.update(NOTIFICATIONS, notification_id, {"is_read": True})
        self.cache.invalidate(f"notifications:{doc.get('user_id')}")

    # ---- tasks ----

    def upsert_task(self, task: Task) -> Task:
        now = self.clock()
        task = replace(task, id=task.id or new_doc_id(), created_at=task.created_at or now, updated_at=now)
        self.store.set(TASKS, task.id, task.to_doc())
        self.cache.invalidate("tasks")
        return task

    def delete_task(self, task_id: str) -> None:
        self.store.delete(TASKS, task_id)
        self.cache.invalidate("tasks")

    def get_task(self, task_id: str) -> Optional[Task]:
        doc = self.store.get(TASKS, task_id)
        return Task.from_doc(doc) if doc else None

    def require_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise DocumentNotFound(TASKS, task_id)
        return task

    def list_tasks(self, force: bool = False) -> List[Task]:
        return self.cache.get_or_load(
            "tasks",
            lambda: [Task.from_doc(d) for d in self.store.query(TASKS, order_by="created_at", descending=True)],
            force=force,
        )

    def list_active_tasks(self) -> List[Task]:
        return [t for t in self.list_tasks() if t.is_active]

    def update_task_max_completions(self, task_id: str, max_completions: int) -> None:
        self.store.update(TASKS, task_id, {"max_completions": max_completions, "updated_at": self.clock()})
        self.cache.invalidate("tasks")

    # ---- verifications ----

    def create_verification(
        self,
        user_id: str,
        task_id: str,
        phase: VerificationPhase,
        game_id: Optional[str] = None,
        image_urls: Optional[List[str]] = None,
        reference_number: Optional[str] = None,
    ) -> Verification:
        ver = Verification(id=new_doc_id(), user_id=user_id, task_id=task_id, phase=phase,
                           status=ReviewStatus.PENDING, game_id=game_id, image_urls=image_urls or [],
                           reference_number=reference_number, created_at=self.clock())
        self.store.set(VERIFICATIONS, ver.id, ver.to_doc())
        self.cache.invalidate("verifications")
        return ver

    def update_verification(self, verification_id: str, **fields: Any) -> None:
        self.store.update(VERIFICATIONS, verification_id, fields)
        self.cache.invalidate("verifications")

    def delete_verification(self, verification_id: str) -> None:
        self.store.delete(VERIFICATIONS, verification_id)
        self.cache.invalidate("verifications")

    def get_verification(self, verification_id: str) -> Optional[Verification]:
        doc = self.store.get(VERIFICATIONS, verification_id)
        return Verification.from_doc(doc) if doc else None

    def require_verification(self, verification_id: str) -> Verification:
        ver = self.get_verification(verification_id)
        if ver is None:
            raise DocumentNotFound(VERIFICATIONS, verification_id)
        return ver

    def list_verifications(
        self,
        user_id: Optional[str] = None,
        task_id: Optional[str] = None,
        status: Optional[ReviewStatus] = None,
    ) -> List[Verification]:
        items: List[Verification] = self.cache.get_or_load(
            "verifications",
            lambda: [Verification.from_doc(d) for d in self.store.query(
                VERIFICATIONS, order_by="created_at", descending=True)],
        )
        return [
            v for v in items
            if (user_id is None or v.user_id == user_id)
            and (task_id is None or v.task_id == task_id)
            and (status is None or v.status == status)
        ]

    # ---- withdrawals ----

    def create_withdrawal(
        self, user_id: str, amount: float, method: str, account: str, reference_number: Optional[str] = None
    ) -> Withdrawal:
        wd = Withdrawal(id=new_doc_id(), user_id=user_id, amount=amount, method=method, account=account,
                        status=ReviewStatus.PENDING, reference_number=reference_number, created_at=self.clock())
        self.store.set(WITHDRAWALS, wd.id, wd.to_doc())
        self.cache.invalidate("withdrawals")
        return wd

    def update_withdrawal(self, withdrawal_id: str, **fields: Any) -> None:
        self.store.update(WITHDRAWALS, withdrawal_id, fields)
        self.cache.invalidate("withdrawals")

    def get_withdrawal(self, withdrawal_id: str) -> Optional[Withdrawal]:
        doc = self.store.get(WITHDRAWALS, withdrawal_id)
        return Withdrawal.from_doc(doc) if doc else None

    def require_withdrawal(self, withdrawal_id: str) -> Withdrawal:
        wd = self.get_withdrawal(withdrawal_id)
        if wd is None:
            raise DocumentNotFound(WITHDRAWALS, withdrawal_id)
        return wd

    def list_withdrawals(
        self, user_id: Optional[str] = None, status: Optional[ReviewStatus] = None
    ) -> List[Withdrawal]:
        items: List[Withdrawal] = self.cache.get_or_load(
            "withdrawals",
            lambda: [Withdrawal.from_doc(d) for d in self.store.query(
                WITHDRAWALS, order_by="created_at", descending=True)],
        )
        return [
            w for w in items
            if (user_id is None or w.user_id == user_id) and (status is None or w.status == status)
        ]

    def last_withdrawal_at(self, user_id: str) -> Optional[datetime]:
        stamps = [w.created_at for w in self.list_withdrawals(user_id=user_id) if w.created_at]
        return max(stamps) if stamps else None

    # ---- per-user task progress ----

    @staticmethod
    def _progress_id(user_id: str, task_id: str) -> str:
        return f"{user_id}_{task_id}"

    def get_progress(self, user_id: str, task_id: str) -> TaskProgress:
        doc = self.store.get(TASK_PROGRESS, self._progress_id(user_id, task_id))
        if doc is None:
            return TaskProgress(user_id=user_id, task_id=task_id, status=ProgressStatus.AVAILABLE)
        return TaskProgress.from_doc(doc)

    def list_progress(self, user_id: str) -> List[TaskProgress]:
        return [TaskProgress.from_doc(d) for d in self.store.query(TASK_PROGRESS, where={"user_id": user_id})]

    def update_progress(
        self,
        user_id: str,
        task_id: str,
        status: ProgressStatus,
        *,
        start: bool = False,
        phase: Optional[str] = None,
        verification_id: Optional[str] = None,
        reference_number: Optional[str] = None,
    ) -> TaskProgress:
        """
        Merge a status change into the user's progress document.

        ``start=True`` stamps a fresh ``started_at`` (a new attempt); going
        back to ``available`` or reaching ``complete`` clears it so the task can
        be started again.
        """
        now = self.clock()
        data: Dict[str, Any] = {"user_id": user_id, "task_id": task_id, "status": status, "updated_at": now}
        if start:
            data["started_at"] = now
        if status in (ProgressStatus.AVAILABLE, ProgressStatus.COMPLETE):
            data["started_at"] = None
        if phase is not None:
            data["phase"] = phase
        if verification_id is not None:
            data["verification_id"] = verification_id
        if reference_number is not None:
            data["reference_number"] = reference_number
        self.store.set(TASK_PROGRESS, self._progress_id(user_id, task_id), data, merge=True)
        logger.debug("progress uid=%s task=%s -> %s", user_id, task_id, status)
        return self.get_progress(user_id, task_id)

    # ---- quest completions ----

    def record_completion(
        self,
        user_id: str,
        task_id: str,
        reward: float,
        verification_id: Optional[str] = None,
        completed_by: Optional[str] = None,
    ) -> QuestCompletion:
        comp = QuestCompletion(id=new_doc_id(), user_id=user_id, task_id=task_id, reward=reward,
                               verification_id=verification_id, completed_at=self.clock(),
                               completed_by=completed_by)
        self.store.set(QUEST_COMPLETIONS, comp.id, {k: v for k, v in comp.__dict__.items() if k != "id"})
        self.cache.invalidate("completions")
        return comp

    def list_completions(self) -> List[QuestCompletion]:
        return self.cache.get_or_load(
            "completions",
            lambda: [QuestCompletion.from_doc(d) for d in self.store.query(
                QUEST_COMPLETIONS, order_by="completed_at", descending=True)],
        )

    def completion_count(self, task_id: str) -> int:
        return sum(1 for c in self.list_completions() if c.task_id == task_id)

    def user_completion_count(self, user_id: str, task_id: str) -> int:
        return sum(1 for c in self.list_completions() if c.user_id == user_id and c.task_id == task_id)

    def user_completion_stats(self, user_id: str) -> Tuple[int, float]:
        mine = [c for c in self.list_completions() if c.user_id == user_id]
        return len(mine), sum(c.reward for c in mine)

    # ---- app settings ----

    def load_settings(self) -> AppSettings:
        return AppSettings.from_doc(self.store.get(SETTINGS, "app"))

    def save_settings(self, app_settings: AppSettings) -> None:
        self.store.set(SETTINGS, "app", {**app_settings.to_doc(), "updated_at": self.clock()})
